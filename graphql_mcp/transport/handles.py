"""Per-session streamable HTTP transport backed by the MCP SDK."""

from __future__ import annotations

import logging
from typing import Any

import anyio
from anyio.abc import TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)


class StreamableSessionHandle:
    """One SDK transport plus the MCP server loop that reads from it.

    ``run`` connects the transport and serves the protocol until the peer
    goes away or ``close`` is called. ``close`` terminates the transport and
    cancels the loop; calling it twice is harmless.
    """

    def __init__(self, session_id: str, server: Server, json_response: bool = False):
        self.session_id = session_id
        self.server = server
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
        )
        self.closed = False
        self._cancel_scope: anyio.CancelScope | None = None

    async def run(self, *, task_status: TaskStatus[Any] = anyio.TASK_STATUS_IGNORED) -> None:
        with anyio.CancelScope() as scope:
            self._cancel_scope = scope
            async with self.transport.connect() as (read_stream, write_stream):
                task_status.started()
                logger.debug(f"Session {self.session_id} server loop started")
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                    stateless=False,
                )
        logger.debug(f"Session {self.session_id} server loop finished")

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.transport.terminate()
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()
