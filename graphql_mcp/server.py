#!/usr/bin/env python3
"""
GraphQL MCP Server - exposes a GraphQL endpoint as Model Context Protocol tools.

Supports stdio transport (one client, e.g. Claude Desktop) and streamable
HTTP transport (many concurrent sessions).
Run with: python -m graphql_mcp

Tools:
- introspect-schema: Schema SDL from a file, a URL or live introspection
- query-graphql: Run an arbitrary query (mutations only when allowed)
- <operation>: One tool per operation in the operations directory
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Any

from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from graphql_mcp import get_version
from graphql_mcp.client import GraphQLClient
from graphql_mcp.config import McpConfig, load_config
from graphql_mcp.dispatcher import ToolDispatcher
from graphql_mcp.errors import ConfigError
from graphql_mcp.introspection import SchemaSource
from graphql_mcp.observability import ObservabilityContext, setup_logging
from graphql_mcp.operations import OperationDescriptor, load_operations

# Configure logging to stderr (stdout carries the stdio transport)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("graphql_mcp")

SCHEMA_RESOURCE_NAME = "graphql-schema"


class ToolCallError(Exception):
    """Raised to the SDK so that it answers with an error tool result."""


class GraphQLMcpServer:
    """GraphQL MCP Server implementation."""

    def __init__(
        self,
        config: McpConfig,
        operations: list[OperationDescriptor] | None = None,
        client: GraphQLClient | None = None,
    ):
        self.config = config
        gql = config.graphql
        self.server = Server(
            gql.name,
            version=get_version(),
            instructions=f"GraphQL MCP server for {gql.endpoint}",
        )

        self.obs = ObservabilityContext()
        self.client = client or GraphQLClient(gql.endpoint, gql.headers)
        self.schema_source = SchemaSource.from_setting(self.client, gql.schema)

        if operations is None:
            operations = load_operations(gql.operations_dir, gql.description_separator)
        self.operations = operations

        self.dispatcher = ToolDispatcher(
            self.client,
            self.schema_source,
            operations,
            allow_mutations=gql.allow_mutations,
        )
        self.tools: list[Tool] = [d.to_tool() for d in self.dispatcher.list_tools()]

        self._register_handlers()
        logger.info(
            f"GraphQL MCP Server initialized ({len(self.tools)} tools, "
            f"{len(operations)} operations, mutations={'on' if gql.allow_mutations else 'off'})"
        )

    def _register_handlers(self):
        """Register MCP protocol handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return available tools."""
            logger.debug("list_tools called")
            return self.tools

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict) -> list[TextContent]:
            """Handle tool invocation with observability."""
            return await self.handle_call(name, arguments)

        @self.server.list_resources()
        async def list_resources() -> list[Resource]:
            return [
                Resource(
                    uri=AnyUrl(self.config.graphql.endpoint),
                    name=SCHEMA_RESOURCE_NAME,
                    description=f"GraphQL schema of {self.config.graphql.endpoint}",
                    mimeType="text/plain",
                )
            ]

        @self.server.read_resource()
        async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
            if str(uri).rstrip("/") != self.config.graphql.endpoint.rstrip("/"):
                raise ValueError(f"Unknown resource: {uri}")
            # SchemaUnavailableError propagates to the SDK as a protocol error
            schema = await self.schema_source.load()
            return [ReadResourceContents(content=schema, mime_type="text/plain")]

    async def handle_call(self, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """Run one tool call through the dispatcher.

        Error results are raised as ToolCallError, which the SDK turns into
        a tool result with ``isError`` set.
        """
        cid = self.obs.correlation_id()
        start_time = time.time()

        logger.info(f"call_tool: {name}", extra={"correlation_id": cid, "tool": name})

        result = await self.dispatcher.call(name, arguments)

        latency_ms = (time.time() - start_time) * 1000
        self.obs.record(tool=name, latency_ms=latency_ms, success=not result.is_error)
        logger.info(
            f"call_tool done: {name}",
            extra={
                "correlation_id": cid,
                "tool": name,
                "latency_ms": latency_ms,
                "status": "error" if result.is_error else "ok",
            },
        )

        if result.is_error:
            raise ToolCallError(result.content)
        return [TextContent(type="text", text=result.content)]

    async def run_stdio(self):
        """Run the server with stdio transport."""
        logger.info(
            f"Started graphql mcp server {self.config.graphql.name} for endpoint: "
            f"{self.config.graphql.endpoint} (stdio transport)"
        )
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )

    async def aclose(self) -> None:
        await self.client.aclose()


def main():
    """Entry point for the GraphQL MCP server."""
    global logger  # noqa: PLW0603
    import argparse

    from graphql_mcp.transport.runner import serve

    parser = argparse.ArgumentParser(description="GraphQL MCP Server")
    parser.add_argument(
        "--config",
        "-c",
        help="Path to mcp-graphql.toml config file",
        default=None,
    )
    parser.add_argument(
        "--log-level",
        "-l",
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Override log level",
    )
    parser.add_argument(
        "--transport",
        "-t",
        choices=["stdio", "http"],
        default=None,
        help="Override transport",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
        if args.log_level:
            config.logging.level = args.log_level
        if args.transport:
            config.server.transport = args.transport
        config.validate()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    logger = setup_logging(config.logging, "graphql_mcp")

    # Log effective config (header values are secrets)
    logger.info(
        f"Config loaded: endpoint={config.graphql.endpoint}, "
        f"headers={sorted(config.graphql.headers)}, transport={config.server.transport}"
    )
    logger.info(
        f"Operations: dir={config.graphql.operations_dir}, "
        f"separator={config.graphql.description_separator!r}"
    )

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    except Exception as e:
        logger.exception(f"Fatal error in main(): {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
