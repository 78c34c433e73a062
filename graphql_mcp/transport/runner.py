"""Picks the transport for a loaded configuration and runs the server on it."""

from __future__ import annotations

import logging

from graphql_mcp.config import McpConfig
from graphql_mcp.server import GraphQLMcpServer
from graphql_mcp.transport.http_server import MCPHttpServer

logger = logging.getLogger(__name__)


async def serve(config: McpConfig, mcp_server: GraphQLMcpServer | None = None) -> None:
    mcp_server = mcp_server or GraphQLMcpServer(config)
    try:
        if config.server.transport == "http":
            await MCPHttpServer(mcp_server, config).serve()
        else:
            await mcp_server.run_stdio()
    finally:
        await mcp_server.aclose()
        logger.info("GraphQL MCP server stopped")
