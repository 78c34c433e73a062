"""
Schema sources for the introspect-schema tool and the schema resource.

Priority: local schema file, then remote schema URL, then a live
introspection query against the endpoint. The first configured source wins.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import anyio
from graphql import build_client_schema, get_introspection_query, print_schema
import httpx

from graphql_mcp.client import GraphQLClient
from graphql_mcp.errors import SchemaUnavailableError

logger = logging.getLogger(__name__)


async def introspect_endpoint(client: GraphQLClient) -> str:
    """Run the introspection query against the endpoint and print the schema as SDL."""
    try:
        response = await client.post(get_introspection_query())
    except httpx.HTTPError as e:
        raise SchemaUnavailableError(f"Introspection request failed: {e}") from e

    if not response.is_success:
        raise SchemaUnavailableError(
            f"Introspection request failed: {response.status_code} {response.reason_phrase}",
            payload=response.text,
        )

    try:
        payload = response.json()
    except json.JSONDecodeError as e:
        raise SchemaUnavailableError("Introspection response is not JSON", payload=response.text) from e

    if not isinstance(payload, dict) or payload.get("errors") or not payload.get("data"):
        raise SchemaUnavailableError(
            "Introspection returned errors",
            payload=json.dumps(payload, indent=2),
        )

    try:
        schema = build_client_schema(payload["data"])
    except (TypeError, ValueError) as e:
        raise SchemaUnavailableError(f"Invalid introspection result: {e}") from e
    return print_schema(schema)


async def introspect_local_schema(path: str | Path) -> str:
    """Read a local schema file."""
    try:
        return await anyio.Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SchemaUnavailableError(f"Cannot read schema file {path}: {e}") from e


async def introspect_schema_from_url(client: GraphQLClient, url: str) -> str:
    """Fetch a schema document published at a URL."""
    try:
        return await client.fetch_text(url)
    except httpx.HTTPError as e:
        raise SchemaUnavailableError(f"Cannot fetch schema from {url}: {e}") from e


class SchemaSource:
    """Resolves schema text from the configured source."""

    def __init__(
        self,
        client: GraphQLClient,
        local_path: str | Path | None = None,
        remote_url: str | None = None,
    ):
        self.client = client
        self.local_path = local_path
        self.remote_url = remote_url

    @classmethod
    def from_setting(cls, client: GraphQLClient, schema: str | None) -> SchemaSource:
        """Split a single schema setting into a local path or a remote URL."""
        if schema and schema.startswith(("http://", "https://")):
            return cls(client, remote_url=schema)
        return cls(client, local_path=schema or None)

    @property
    def kind(self) -> str:
        if self.local_path:
            return "file"
        if self.remote_url:
            return "url"
        return "introspection"

    async def load(self) -> str:
        """
        Return schema text.

        Raises:
            SchemaUnavailableError: when the selected source fails.
        """
        if self.local_path:
            return await introspect_local_schema(self.local_path)
        if self.remote_url:
            return await introspect_schema_from_url(self.client, self.remote_url)
        return await introspect_endpoint(self.client)
