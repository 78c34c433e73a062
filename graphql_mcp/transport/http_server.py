"""HTTP server with streamable HTTP transport for multi-session mode."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import socket
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
import uvicorn

from graphql_mcp import get_version
from graphql_mcp.transport.sessions import MCP_SESSION_ID_HEADER, TransportSessionManager

if TYPE_CHECKING:
    from starlette.requests import Request

    from graphql_mcp.config import McpConfig
    from graphql_mcp.server import GraphQLMcpServer

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "Accept", "Mcp-Session-Id", "Last-Event-ID"]


class SessionAwareServer(uvicorn.Server):
    """uvicorn server that closes every MCP session before it stops listening."""

    def __init__(self, config: uvicorn.Config, session_manager: TransportSessionManager):
        super().__init__(config)
        self.session_manager = session_manager

    async def shutdown(self, sockets: list[socket.socket] | None = None) -> None:
        logger.info("Shutting down HTTP server, closing sessions")
        await self.session_manager.close_all()
        await super().shutdown(sockets=sockets)


class MCPHttpServer:
    """
    HTTP server that exposes MCP over streamable HTTP.

    Many peers can connect at once; each gets its own session, identified
    by the ``mcp-session-id`` header, and its own protocol loop.

    Example:
        server = MCPHttpServer(mcp_server, config, port=3000)
        await server.serve()  # Blocks until SIGINT/SIGTERM
    """

    def __init__(
        self,
        mcp_server: GraphQLMcpServer,
        config: McpConfig,
        host: str | None = None,
        port: int | None = None,
        session_manager: TransportSessionManager | None = None,
    ):
        """
        Initialize HTTP server.

        Args:
            mcp_server: The GraphQL MCP server instance to expose
            config: MCP configuration
            host: Bind address (default from config)
            port: Port number (default from config)
            session_manager: Session router (default runs ``mcp_server`` per session)
        """
        self.mcp_server = mcp_server
        self.config = config
        self.host = host or config.server.host
        self.port = port or config.server.port
        self.session_manager = session_manager or TransportSessionManager.for_server(mcp_server.server)

        self.app = self._create_app()

        logger.info(f"HTTP server initialized (will bind to {self.host}:{self.port})")

    def _create_app(self) -> Starlette:
        """Create the Starlette ASGI application."""
        routes = [
            Route("/health", endpoint=self._health, methods=["GET"]),
            Route("/mcp", endpoint=self.session_manager),
            # Clients that post to the root path reach the same transport
            Mount("/", app=self.session_manager),
        ]

        app = Starlette(routes=routes, lifespan=self._lifespan)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=CORS_ALLOW_METHODS,
            allow_headers=CORS_ALLOW_HEADERS,
            expose_headers=[MCP_SESSION_ID_HEADER],
        )
        return app

    @asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        logger.info("HTTP server starting up")
        async with self.session_manager.run():
            yield
        logger.info("HTTP server shut down")

    async def _health(self, request: Request) -> JSONResponse:
        """
        Health check endpoint.

        Returns:
            {"status": "ok", "tools": <count>, "sessions": <count>, ...}
        """
        return JSONResponse(
            {
                "status": "ok",
                "server": self.config.graphql.name,
                "version": get_version(),
                "transport": "http",
                "tools": len(self.mcp_server.tools),
                "sessions": len(self.session_manager.registry),
                "metrics": self.mcp_server.obs.get_stats(),
            }
        )

    async def serve(self) -> None:
        """Serve until interrupted. Open sessions are closed on the way out."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.config.logging.level.lower(),
            lifespan="on",
        )
        server = SessionAwareServer(config, self.session_manager)

        logger.info(
            f"Started graphql mcp server {self.config.graphql.name} for endpoint: "
            f"{self.config.graphql.endpoint} (http transport on {self.host}:{self.port})"
        )
        await server.serve()
