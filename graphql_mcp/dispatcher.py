"""
Tool dispatcher: built-in GraphQL tools plus one generated tool per operation.

Every invocation ends in a ToolResult. Expected failures (bad arguments,
malformed queries, disallowed mutations, backend errors) are reported as
error results, never raised to the caller.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
import json
import logging
from typing import Any

from graphql import GraphQLError, parse
from graphql.language import DocumentNode, OperationDefinitionNode, OperationType
import httpx
from mcp.types import Tool
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from graphql_mcp.client import GraphQLClient
from graphql_mcp.errors import BackendError, SchemaUnavailableError, ToolInputError
from graphql_mcp.introspection import SchemaSource
from graphql_mcp.operations import OperationDescriptor, build_arguments_model

logger = logging.getLogger(__name__)

INTROSPECT_SCHEMA = "introspect-schema"
QUERY_GRAPHQL = "query-graphql"
BUILTIN_TOOLS = (INTROSPECT_SCHEMA, QUERY_GRAPHQL)

MUTATIONS_DISABLED = (
    "Mutations are not allowed unless you enable them in the configuration. "
    "Please use a query operation instead."
)

INTROSPECT_SCHEMA_INPUT = {
    "type": "object",
    "properties": {
        # Some clients send nothing instead of an empty object for argument-less tools
        "__ignore__": {
            "type": "boolean",
            "default": False,
            "description": "This does not do anything",
        },
    },
    "required": [],
}

QUERY_GRAPHQL_INPUT = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "GraphQL query document to execute",
        },
        "variables": {
            "type": ["string", "object"],
            "description": "Variables for the query, as a JSON object or a JSON-encoded string",
        },
    },
    "required": ["query"],
}


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool invocation."""

    content: str
    is_error: bool = False

    @classmethod
    def ok(cls, content: str) -> ToolResult:
        return cls(content=content, is_error=False)

    @classmethod
    def error(cls, content: str) -> ToolResult:
        return cls(content=content, is_error=True)


ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDescriptor:
    """A named, schema-typed, invocable tool."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


def contains_mutation(document: DocumentNode) -> bool:
    """True if any operation definition in the document is a mutation."""
    return any(
        isinstance(definition, OperationDefinitionNode)
        and definition.operation == OperationType.MUTATION
        for definition in document.definitions
    )


def parse_query(query: Any) -> DocumentNode:
    if not isinstance(query, str) or not query.strip():
        raise ToolInputError("query is required")
    try:
        return parse(query)
    except GraphQLError as e:
        raise ToolInputError(f"Invalid GraphQL query: {e}") from e


def parse_variables(raw: Any) -> dict[str, Any] | None:
    """Accept variables as a mapping or as a JSON-encoded string."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolInputError(f"Invalid variables JSON: {e}") from e
        if raw is None:
            return None
    if not isinstance(raw, dict):
        raise ToolInputError("variables must be a JSON object")
    return raw


def _format_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "arguments"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


class ToolDispatcher:
    """Registry and executor for the tools exposed to the client."""

    def __init__(
        self,
        client: GraphQLClient,
        schema_source: SchemaSource,
        operations: Iterable[OperationDescriptor] = (),
        allow_mutations: bool = False,
    ):
        self.client = client
        self.schema_source = schema_source
        self.allow_mutations = allow_mutations
        self.tools: dict[str, ToolDescriptor] = {}

        self._register_builtins()
        for operation in operations:
            self.register_operation(operation)

    def _register_builtins(self) -> None:
        self.register(
            ToolDescriptor(
                name=INTROSPECT_SCHEMA,
                description=(
                    "Introspect the GraphQL schema, use this tool before doing a query to get "
                    "the schema information if you do not have it available as a resource already."
                ),
                input_schema=INTROSPECT_SCHEMA_INPUT,
                handler=self._introspect_schema,
            )
        )
        self.register(
            ToolDescriptor(
                name=QUERY_GRAPHQL,
                description="Query a GraphQL endpoint with the given query and variables",
                input_schema=QUERY_GRAPHQL_INPUT,
                handler=self._query_graphql,
            )
        )

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self.tools:
            logger.warning(f"Tool {descriptor.name!r} registered twice, keeping the latest")
        self.tools[descriptor.name] = descriptor

    def register_operation(self, operation: OperationDescriptor) -> None:
        """Register a generated tool for a compiled operation."""
        if operation.name in BUILTIN_TOOLS:
            logger.warning(f"Operation {operation.name!r} shadows a built-in tool, skipping")
            return

        model = build_arguments_model(operation.name, operation.variable_schema)

        async def handler(arguments: dict[str, Any]) -> ToolResult:
            return await self._run_operation(operation, model, arguments)

        self.register(
            ToolDescriptor(
                name=operation.name,
                description=operation.description,
                input_schema=operation.input_schema(),
                handler=handler,
            )
        )

    def list_tools(self) -> list[ToolDescriptor]:
        return list(self.tools.values())

    async def call(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        tool = self.tools.get(name)
        if tool is None:
            return ToolResult.error(f"Unknown tool: {name}")
        return await tool.handler(arguments or {})

    async def _introspect_schema(self, arguments: dict[str, Any]) -> ToolResult:
        try:
            schema = await self.schema_source.load()
        except SchemaUnavailableError as e:
            logger.warning(f"Schema introspection failed: {e}")
            detail = f"{e}\n{e.payload}" if e.payload else str(e)
            return ToolResult.error(f"Failed to introspect schema: {detail}")
        return ToolResult.ok(schema)

    async def _query_graphql(self, arguments: dict[str, Any]) -> ToolResult:
        try:
            document = parse_query(arguments.get("query"))
            self._check_mutation_policy(contains_mutation(document))
            variables = parse_variables(arguments.get("variables"))
        except ToolInputError as e:
            return ToolResult.error(e.message)

        return await self._forward(arguments["query"], variables)

    async def _run_operation(
        self,
        operation: OperationDescriptor,
        model: type[BaseModel],
        arguments: dict[str, Any],
    ) -> ToolResult:
        try:
            validated = model.model_validate(arguments)
        except PydanticValidationError as e:
            return ToolResult.error(
                f"Invalid arguments for {operation.name}: {_format_validation_error(e)}"
            )

        try:
            self._check_mutation_policy(operation.is_mutation)
        except ToolInputError as e:
            return ToolResult.error(e.message)

        variables = validated.model_dump(by_alias=True, exclude_unset=True)
        # Multi-definition files need the operation name to select a definition
        operation_name = operation.operation_name if operation.sibling_count > 1 else None
        return await self._forward(operation.query_text, variables, operation_name)

    def _check_mutation_policy(self, is_mutation: bool) -> None:
        if is_mutation and not self.allow_mutations:
            raise ToolInputError(MUTATIONS_DISABLED)

    async def _forward(
        self,
        query: str,
        variables: dict[str, Any] | None,
        operation_name: str | None = None,
    ) -> ToolResult:
        try:
            data = await self._execute(query, variables, operation_name)
        except BackendError as e:
            return ToolResult.error(e.message)
        return ToolResult.ok(json.dumps(data, indent=2))

    async def _execute(
        self,
        query: str,
        variables: dict[str, Any] | None,
        operation_name: str | None,
    ) -> Any:
        try:
            response = await self.client.post(query, variables, operation_name)
        except httpx.HTTPError as e:
            raise BackendError(f"Failed to execute GraphQL query: {e}") from e

        if not response.is_success:
            raise BackendError(
                f"GraphQL request failed: {response.reason_phrase}\n{response.text}",
                payload=response.text,
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise BackendError(
                f"GraphQL response is not valid JSON: {response.text}",
                payload=response.text,
            ) from e

        if isinstance(data, dict) and data.get("errors"):
            pretty = json.dumps(data, indent=2)
            raise BackendError(
                f"The GraphQL response has errors, please fix the query: {pretty}",
                payload=pretty,
            )

        return data
