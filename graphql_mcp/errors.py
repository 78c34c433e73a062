"""
Error types for the GraphQL MCP server.

Every error carries a machine-readable code. Transport-layer errors also
carry the JSON-RPC error code sent back in the response envelope.
"""

from __future__ import annotations


class McpGraphQLError(Exception):
    """Base error for the GraphQL MCP server."""

    code: str = "MCP_GRAPHQL_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigError(McpGraphQLError):
    """Invalid configuration value. Fatal at startup."""

    code = "CONFIG_INVALID"


class OperationLoadError(McpGraphQLError):
    """An operation file could not be read or parsed."""

    code = "OPERATION_LOAD_FAILED"


class ToolInputError(McpGraphQLError):
    """Bad tool arguments, malformed query or disallowed mutation."""

    code = "INVALID_ARGUMENT"


class BackendError(McpGraphQLError):
    """The GraphQL backend answered with a failure."""

    code = "BACKEND_ERROR"

    def __init__(self, message: str, *, payload: str = "", code: str | None = None):
        super().__init__(message, code=code)
        self.payload = payload


class SchemaUnavailableError(BackendError):
    """No schema source could produce schema text."""

    code = "SCHEMA_UNAVAILABLE"


class ProtocolError(McpGraphQLError):
    """Transport-level failure reported with a JSON-RPC error envelope."""

    code = "PROTOCOL_ERROR"
    rpc_code: int = -32603
    status_code: int = 500

    def to_envelope(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "error": {"code": self.rpc_code, "message": self.message},
            "id": None,
        }


class ParseError(ProtocolError):
    """Request body is not valid JSON."""

    code = "PARSE_ERROR"
    rpc_code = -32700
    status_code = 400

    def __init__(self, message: str = "Parse error"):
        super().__init__(message)


class SessionNotFoundError(ProtocolError):
    """Session id missing from the registry."""

    code = "SESSION_NOT_FOUND"
    rpc_code = -32001
    status_code = 404

    def __init__(self, session_id: str | None = None):
        super().__init__("Session not found")
        self.session_id = session_id


class SessionRequiredError(ProtocolError):
    """Request without a session id that is not an initialize request."""

    code = "SESSION_REQUIRED"
    rpc_code = -32000
    status_code = 400

    def __init__(self, message: str = "Bad Request: No valid session ID provided"):
        super().__init__(message)


class MethodNotAllowedError(ProtocolError):
    """HTTP method not part of the protocol."""

    code = "METHOD_NOT_ALLOWED"
    rpc_code = -32601
    status_code = 405

    def __init__(self, message: str = "Method not allowed"):
        super().__init__(message)
