"""Transport layer for the GraphQL MCP server."""

from graphql_mcp.transport.http_server import MCPHttpServer
from graphql_mcp.transport.sessions import SessionRegistry, TransportSessionManager

__all__ = ["MCPHttpServer", "SessionRegistry", "TransportSessionManager"]
