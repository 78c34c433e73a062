"""
Session registry and lifecycle manager for the multiplexed HTTP transport.

Each peer is identified by a server-issued session id carried in the
``mcp-session-id`` header. The manager owns the registry: it mints ids,
creates one transport handle per session, routes requests to the handle of
their session and tears sessions down on request or at shutdown.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
import json
import logging
from threading import Lock
import time
from typing import Any, Protocol
import uuid

import anyio
from anyio.abc import TaskGroup, TaskStatus
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Message, Receive, Scope, Send

from graphql_mcp.errors import (
    MethodNotAllowedError,
    ParseError,
    ProtocolError,
    SessionNotFoundError,
    SessionRequiredError,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"


class TransportHandle(Protocol):
    """Per-session transport the manager drives."""

    async def run(self, *, task_status: TaskStatus[Any] = anyio.TASK_STATUS_IGNORED) -> None:
        """Serve the session until closed. Signals ``task_status`` once ready."""

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Answer one HTTP request belonging to the session."""

    async def close(self) -> None:
        """Close the transport. Must be idempotent."""


HandleFactory = Callable[[str], TransportHandle]


@dataclass
class Session:
    """A registered peer session."""

    id: str
    handle: TransportHandle
    created_at: float


class SessionRegistry:
    """Thread-safe mapping of session id to Session.

    Ids are never reused: a freshly minted id that collides with a live or
    recently closed one is minted again. Only the last ``retired_limit``
    closed ids are remembered; default uuid4 ids do not repeat in practice.
    """

    MAX_MINT_ATTEMPTS = 16
    RETIRED_LIMIT = 4096

    def __init__(
        self,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], float] | None = None,
        retired_limit: int | None = None,
    ):
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._clock = clock or time.time
        self._sessions: dict[str, Session] = {}
        self._retired: OrderedDict[str, None] = OrderedDict()
        self._retired_limit = self.RETIRED_LIMIT if retired_limit is None else retired_limit
        self._lock = Lock()

    def _retire_locked(self, session_id: str) -> None:
        self._retired[session_id] = None
        while len(self._retired) > self._retired_limit:
            self._retired.popitem(last=False)

    def _mint_locked(self) -> str:
        for _ in range(self.MAX_MINT_ATTEMPTS):
            session_id = self._id_factory()
            if session_id not in self._sessions and session_id not in self._retired:
                return session_id
        raise RuntimeError("Session id factory keeps returning ids already in use")

    def create(self, handle_factory: HandleFactory) -> Session:
        """Mint an id, build its handle and register the session."""
        with self._lock:
            session_id = self._mint_locked()
            session = Session(id=session_id, handle=handle_factory(session_id), created_at=self._clock())
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str | None) -> Session | None:
        if session_id is None:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str | None) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def remove(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                self._retire_locked(session_id)
        return session

    def drain(self) -> list[Session]:
        """Remove and return every session, oldest first."""
        with self._lock:
            sessions = list(self._sessions.values())
            for session_id in self._sessions:
                self._retire_locked(session_id)
            self._sessions.clear()
        return sessions

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    """Hand an already-read body to the next consumer, then defer to ``receive``."""
    sent = False

    async def _receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


def _is_initialize(payload: Any) -> bool:
    """True when a JSON-RPC message (or batch) carries an initialize request."""
    messages = payload if isinstance(payload, list) else [payload]
    return any(isinstance(m, dict) and m.get("method") == "initialize" for m in messages)


class TransportSessionManager:
    """
    Routes streamable HTTP requests to per-session transport handles.

    - POST of an initialize request without a session id opens a new session;
      any other POST without one is rejected
    - POST/GET/DELETE with an unknown id fail with "Session not found"
    - GET opens the server-push stream of a known session
    - DELETE closes a known session

    The manager is an ASGI app. Session loops run in the task group opened
    by ``run()``, which must wrap the server's lifetime.
    """

    def __init__(self, handle_factory: HandleFactory, registry: SessionRegistry | None = None):
        self.registry = registry if registry is not None else SessionRegistry()
        self._handle_factory = handle_factory
        self._task_group: TaskGroup | None = None

    @classmethod
    def for_server(cls, server: Any, registry: SessionRegistry | None = None) -> TransportSessionManager:
        """Manager whose sessions run the given MCP server over streamable HTTP."""
        from graphql_mcp.transport.handles import StreamableSessionHandle

        return cls(lambda session_id: StreamableSessionHandle(session_id, server), registry)

    @asynccontextmanager
    async def run(self) -> AsyncIterator[TransportSessionManager]:
        if self._task_group is not None:
            raise RuntimeError("Session manager is already running")
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.handle_request(scope, receive, send)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        started = False

        async def tracking_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        request = Request(scope, receive)
        try:
            if request.method == "OPTIONS":
                await Response(status_code=200)(scope, receive, tracking_send)
            elif request.method == "POST":
                await self.handle_submit(request, scope, receive, tracking_send)
            elif request.method == "GET":
                await self.handle_stream(request, scope, receive, tracking_send)
            elif request.method == "DELETE":
                await self.handle_terminate(request, scope, receive, tracking_send)
            else:
                raise MethodNotAllowedError()
        except ProtocolError as e:
            if started:
                raise
            await self._error_response(e)(scope, receive, send)
        except Exception:
            logger.exception(f"Error handling {request.method} request")
            if not started:
                await self._error_response(ProtocolError("Internal server error"))(scope, receive, send)

    async def handle_submit(self, request: Request, scope: Scope, receive: Receive, send: Send) -> None:
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ParseError() from e

        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        if session_id:
            session = self.registry.require(session_id)
        elif _is_initialize(payload):
            session = await self.open_session()
        else:
            raise SessionRequiredError()

        await self._forward(session, scope, _replay_receive(body, receive), send)

    async def handle_stream(self, request: Request, scope: Scope, receive: Receive, send: Send) -> None:
        session = self.registry.require(request.headers.get(MCP_SESSION_ID_HEADER))
        logger.debug(f"Push stream opened for session {session.id}")
        await self._forward(session, scope, receive, send)

    async def handle_terminate(self, request: Request, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        try:
            await self.close_session(session_id)
        except SessionNotFoundError:
            raise
        except Exception as e:
            logger.error(f"Error closing transport for session {session_id}: {e}")
            raise ProtocolError("Internal server error") from e
        await JSONResponse({"success": True})(scope, receive, send)

    async def open_session(self) -> Session:
        """Register a new session and start its transport loop."""
        if self._task_group is None:
            raise RuntimeError("Session manager is not running")
        session = self.registry.create(self._handle_factory)
        logger.info(f"Session initialized with ID: {session.id}")
        await self._task_group.start(self._run_session, session)
        return session

    async def _run_session(
        self,
        session: Session,
        *,
        task_status: TaskStatus[Any] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        try:
            await session.handle.run(task_status=task_status)
        except Exception:
            logger.exception(f"Session {session.id} crashed")
        finally:
            # Handle and registry entry go away together
            if self.registry.remove(session.id) is not None:
                logger.info(f"Session {session.id} closed, cleaning up transport")
            with anyio.CancelScope(shield=True):
                await session.handle.close()

    async def _forward(self, session: Session, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await session.handle.handle_request(scope, receive, send)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Session closed while the request was in flight
            logger.debug(f"Session {session.id} closed during request")

    async def close_session(self, session_id: str | None) -> None:
        """Close a session's handle, then drop its registry entry.

        If closing fails the entry stays, so the session can still be
        reached and is closed again at shutdown.
        """
        session = self.registry.require(session_id)
        await session.handle.close()
        self.registry.remove(session_id)
        logger.info(f"Session {session_id} terminated")

    async def close_all(self) -> None:
        """Close every registered session."""
        sessions = self.registry.drain()
        if sessions:
            logger.info(f"Closing {len(sessions)} active sessions")
        for session in sessions:
            try:
                await session.handle.close()
            except Exception as e:
                logger.error(f"Error closing transport for session {session.id}: {e}")

    @staticmethod
    def _error_response(error: ProtocolError) -> JSONResponse:
        return JSONResponse(error.to_envelope(), status_code=error.status_code)
