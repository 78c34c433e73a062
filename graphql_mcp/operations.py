"""
Operation compiler: turns .graphql operation files into typed tool descriptors.

Each operation definition in a file becomes one OperationDescriptor. The
descriptor carries the raw file text (shared by every definition of the
file), a variable schema derived from the declared variable types, and a
description taken from ``# @description`` comments or synthesized from the
operation kind and name.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Optional, Union

from graphql import GraphQLError, parse
from graphql.language import (
    ListTypeNode,
    NamedTypeNode,
    NonNullTypeNode,
    OperationDefinitionNode,
    TypeNode,
    VariableDefinitionNode,
)
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, create_model

from graphql_mcp.errors import OperationLoadError

logger = logging.getLogger(__name__)

OPERATION_EXTENSIONS = (".graphql", ".gql")
DEFAULT_SEPARATOR = "@description"
COMMENT_MARKER = "#"

KIND_SCALAR = "scalar"
KIND_LIST = "list"
KIND_OBJECT = "object"

SCALAR_TYPES = {
    "String": "string",
    "ID": "string",
    "Int": "number",
    "Float": "number",
    "Boolean": "boolean",
}
OBJECT_SUFFIXES = ("Input", "Type")


@dataclass(frozen=True)
class TypeSpec:
    """Validator shape for one declared variable type."""

    kind: str
    required: bool = False
    scalar: str | None = None  # "string" | "number" | "boolean" when kind == scalar
    item: TypeSpec | None = None
    type_name: str | None = None

    def json_schema(self) -> dict[str, Any]:
        """JSON schema fragment used in the tool's inputSchema."""
        if self.kind == KIND_LIST:
            assert self.item is not None
            return {"type": "array", "items": self.item.json_schema()}
        if self.kind == KIND_OBJECT:
            return {
                "type": "object",
                "additionalProperties": True,
                "description": f"{self.type_name} object",
            }
        return {"type": self.scalar or "string"}

    def python_type(self) -> Any:
        """Annotation used to build the pydantic argument model."""
        if self.kind == KIND_LIST:
            assert self.item is not None
            return list[self.item.python_type()]  # type: ignore[misc]
        if self.kind == KIND_OBJECT:
            return dict[str, Any]
        if self.scalar == "number":
            return Union[StrictInt, StrictFloat]
        if self.scalar == "boolean":
            return StrictBool
        return StrictStr


def _named_spec(type_name: str, required: bool) -> TypeSpec:
    scalar = SCALAR_TYPES.get(type_name)
    if scalar is not None:
        return TypeSpec(kind=KIND_SCALAR, required=required, scalar=scalar, type_name=type_name)
    if type_name.endswith(OBJECT_SUFFIXES):
        return TypeSpec(kind=KIND_OBJECT, required=required, type_name=type_name)
    # Custom scalars and enums travel as strings
    return TypeSpec(kind=KIND_SCALAR, required=required, scalar="string", type_name=type_name)


def _spec_for_node(node: TypeNode, required: bool) -> TypeSpec:
    if isinstance(node, NonNullTypeNode):
        return _spec_for_node(node.type, required)
    if isinstance(node, ListTypeNode):
        inner = node.type
        item = _spec_for_node(inner, isinstance(inner, NonNullTypeNode))
        return TypeSpec(kind=KIND_LIST, required=required, item=item)
    if isinstance(node, NamedTypeNode):
        return _named_spec(node.name.value, required)
    raise OperationLoadError(f"Unsupported type node: {node.kind}")


def type_spec_for(type_node: TypeNode, has_default: bool = False) -> TypeSpec:
    """
    Derive the TypeSpec of a declared variable type.

    Only the outermost NonNull wrapper decides whether the variable is
    required, and a default value always makes it optional.
    """
    required = isinstance(type_node, NonNullTypeNode) and not has_default
    return _spec_for_node(type_node, required)


def variable_schema_for(definitions: Sequence[VariableDefinitionNode]) -> dict[str, TypeSpec]:
    schema: dict[str, TypeSpec] = {}
    for var_def in definitions:
        name = var_def.variable.name.value
        schema[name] = type_spec_for(var_def.type, has_default=var_def.default_value is not None)
    return schema


def extract_description(
    lines: Sequence[str],
    separator: str = DEFAULT_SEPARATOR,
    comment_marker: str = COMMENT_MARKER,
) -> str | None:
    """
    Extract a description from the comment block following the separator.

    The first line containing ``separator`` opens the block. Text after the
    separator on that line counts as the first fragment. Following comment
    lines are collected (blank lines skipped) until the first line that is
    neither blank nor a comment.

    Returns:
        The fragments joined with single spaces, or None when no separator
        line exists or nothing was collected.
    """
    fragments: list[str] = []
    in_block = False

    for line in lines:
        stripped = line.strip()
        if not in_block:
            if separator in stripped:
                in_block = True
                inline = stripped.split(separator, 1)[1].lstrip(":").strip()
                fragments.append(inline)
            continue
        if not stripped:
            continue
        if not stripped.startswith(comment_marker):
            break
        fragments.append(stripped[len(comment_marker) :].strip())

    description = " ".join(f for f in fragments if f)
    return description or None


@dataclass(frozen=True)
class OperationDescriptor:
    """Compiled form of one operation definition."""

    name: str
    query_text: str
    variable_schema: dict[str, TypeSpec]
    description: str
    operation_type: str = "query"
    operation_name: str | None = None
    source_path: Path | None = None
    sibling_count: int = 1

    @property
    def is_mutation(self) -> bool:
        return self.operation_type == "mutation"

    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the tool arguments, mirroring variable_schema."""
        return {
            "type": "object",
            "properties": {name: spec.json_schema() for name, spec in self.variable_schema.items()},
            "required": [name for name, spec in self.variable_schema.items() if spec.required],
            "additionalProperties": False,
        }


def build_arguments_model(name: str, variable_schema: dict[str, TypeSpec]) -> type[BaseModel]:
    """
    Build a pydantic model validating tool arguments against a variable schema.

    Fields are aliased so that variable names never clash with BaseModel
    attributes. Unknown arguments are rejected.
    """
    fields: dict[str, Any] = {}
    for index, (var_name, spec) in enumerate(variable_schema.items()):
        annotation = spec.python_type()
        if spec.required:
            fields[f"v{index}"] = (annotation, Field(..., alias=var_name))
        else:
            fields[f"v{index}"] = (Optional[annotation], Field(None, alias=var_name))
    model_name = "".join(ch for ch in name if ch.isalnum() or ch == "_") or "Operation"
    return create_model(
        f"{model_name}Arguments",
        __config__=ConfigDict(extra="forbid"),
        **fields,
    )


def compile_document(
    text: str,
    fallback_name: str,
    separator: str = DEFAULT_SEPARATOR,
    source_path: Path | None = None,
) -> list[OperationDescriptor]:
    """
    Compile GraphQL document text into operation descriptors.

    Raises:
        OperationLoadError: if the document does not parse.
    """
    description = extract_description(text.splitlines(), separator)

    try:
        document = parse(text)
    except GraphQLError as e:
        raise OperationLoadError(f"Failed to parse {source_path or fallback_name}: {e}") from e

    definitions = [d for d in document.definitions if isinstance(d, OperationDefinitionNode)]
    descriptors = []
    for definition in definitions:
        operation_name = definition.name.value if definition.name else None
        name = operation_name or fallback_name
        operation_type = definition.operation.value
        descriptors.append(
            OperationDescriptor(
                name=name,
                # Every definition of the file carries the whole file text
                query_text=text,
                variable_schema=variable_schema_for(definition.variable_definitions or ()),
                description=description or f"Execute {operation_type} operation: {name}",
                operation_type=operation_type,
                operation_name=operation_name,
                source_path=source_path,
                sibling_count=len(definitions),
            )
        )
    return descriptors


def compile_operation_file(path: Path, separator: str = DEFAULT_SEPARATOR) -> list[OperationDescriptor]:
    """Read and compile one operation file."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise OperationLoadError(f"Failed to read {path}: {e}") from e
    return compile_document(text, path.stem, separator, source_path=path)


def load_operations(
    directory: str | Path | None,
    separator: str = DEFAULT_SEPARATOR,
) -> list[OperationDescriptor]:
    """
    Load GraphQL operations from the operation files in ``directory``.

    A missing or unreadable directory yields an empty list. A file that
    fails to read or parse is logged and skipped. When two operations share
    a name the later one wins.
    """
    if directory is None:
        return []

    folder = Path(directory)
    try:
        files = sorted(
            p for p in folder.iterdir() if p.is_file() and p.suffix in OPERATION_EXTENSIONS
        )
    except OSError as e:
        logger.info(f"No operations loaded from {folder}: {e}")
        return []

    operations: dict[str, OperationDescriptor] = {}
    for path in files:
        try:
            descriptors = compile_operation_file(path, separator)
        except OperationLoadError as e:
            logger.error(f"Skipping operation file {path.name}: {e}")
            continue
        for descriptor in descriptors:
            if descriptor.name in operations:
                previous = operations[descriptor.name].source_path
                logger.warning(
                    f"Operation {descriptor.name!r} from {path.name} replaces the one from "
                    f"{previous.name if previous else 'an earlier file'}"
                )
            operations[descriptor.name] = descriptor

    logger.info(f"Loaded {len(operations)} operations from {folder}")
    return list(operations.values())
