import os
from pathlib import Path

from _pytest.monkeypatch import MonkeyPatch
import anyio
import pytest
from starlette.responses import JSONResponse

from graphql_mcp.transport.sessions import MCP_SESSION_ID_HEADER

# Variables read by load_config; a developer shell must not leak into tests
CONFIG_ENV_VARS = (
    "NAME",
    "ENDPOINT",
    "HEADERS",
    "ALLOW_MUTATIONS",
    "SCHEMA",
    "OPERATIONS_DIR",
    "DESCRIPTION_SEPARATOR",
    "TRANSPORT",
    "HTTP_HOST",
    "HTTP_PORT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "MCP_GRAPHQL_CONFIG",
)

OPERATIONS = {
    "get_user.graphql": """\
# @description Fetch a single user
# by its id
query GetUser($id: ID!) {
  user(id: $id) {
    id
    name
  }
}
""",
    "create_user.graphql": """\
# @description: Creates a user
mutation CreateUser($input: UserInput!, $notify: Boolean) {
  createUser(input: $input, notify: $notify) {
    id
  }
}
""",
}


@pytest.fixture(scope="session", autouse=True)
def _session_env(tmp_path_factory: pytest.TempPathFactory) -> None:
    """
    Session-level hermetic env that does not depend on the function-scoped
    `monkeypatch` fixture (avoids ScopeMismatch).
    """
    home = tmp_path_factory.mktemp("home")
    mp = MonkeyPatch()
    mp.setenv("HOME", str(home))
    try:
        yield
    finally:
        mp.undo()


@pytest.fixture(autouse=True)
def hermetic_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Autouse: each test runs in its own tmp cwd with no config variables set.
    """
    monkeypatch.chdir(tmp_path)
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("HEADER_"):
            monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def operations_dir(tmp_path: Path) -> Path:
    """A directory holding a query and a mutation operation file."""
    folder = tmp_path / "operations"
    folder.mkdir()
    for filename, text in OPERATIONS.items():
        (folder / filename).write_text(text, encoding="utf-8")
    return folder


class FakeHandle:
    """In-memory session transport: records requests, answers with its id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.requests: list[tuple[str, bytes]] = []
        self.closed = False
        self.fail_close = False
        # When set, GET keeps its stream open until the handle stops
        self.hold_streams = False
        self.streaming = False
        self._stop = anyio.Event()

    async def run(self, *, task_status=anyio.TASK_STATUS_IGNORED):
        task_status.started()
        await self._stop.wait()

    def finish(self) -> None:
        """End the session loop as if the peer went away."""
        self._stop.set()

    async def handle_request(self, scope, receive, send):
        message = await receive()
        self.requests.append((scope["method"], message.get("body", b"")))
        if scope["method"] == "GET" and self.hold_streams:
            await send({"type": "http.response.start", "status": 200, "headers": []})
            self.streaming = True
            await self._stop.wait()
            self.streaming = False
            await send({"type": "http.response.body", "body": b"", "more_body": False})
            return
        response = JSONResponse(
            {"session": self.session_id},
            headers={MCP_SESSION_ID_HEADER: self.session_id},
        )
        await response(scope, receive, send)

    async def close(self):
        if self.fail_close:
            raise RuntimeError("transport stuck")
        self.closed = True
        self._stop.set()


class FakeFactory:
    """Handle factory that keeps every handle it built, by session id."""

    def __init__(self):
        self.handles: dict[str, FakeHandle] = {}

    def __call__(self, session_id: str) -> FakeHandle:
        handle = FakeHandle(session_id)
        self.handles[session_id] = handle
        return handle


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()
