"""MCP GraphQL configuration loader - reads from mcp-graphql.toml with ENV overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
import tomllib
from typing import Any
from urllib.parse import urlparse

from graphql_mcp.errors import ConfigError

DEFAULT_CONFIG_FILE = "mcp-graphql.toml"
HEADER_ENV_PREFIX = "HEADER_"
LOG_LEVELS = ("debug", "info", "warning", "error")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class GraphQLConfig:
    """Backend endpoint and tool generation settings."""

    name: str = "mcp-graphql"
    endpoint: str = "http://localhost:4000/graphql"
    headers: dict[str, str] = field(default_factory=dict)
    allow_mutations: bool = False
    schema: str | None = None
    operations_dir: str = "./operations"
    description_separator: str = "@description"

    def validate(self) -> None:
        if not self.name:
            raise ConfigError("name must not be empty")
        if not isinstance(self.endpoint, str) or not _is_http_url(self.endpoint):
            raise ConfigError(f"Invalid endpoint URL: {self.endpoint!r}")
        if not isinstance(self.headers, dict):
            raise ConfigError("headers must be a mapping of header name to value")
        for key, value in self.headers.items():
            if not isinstance(value, str):
                raise ConfigError(f"Header {key!r} must be a string, got {type(value).__name__}")
        if not isinstance(self.allow_mutations, bool):
            raise ConfigError("allow_mutations must be a boolean")
        if not self.description_separator or not self.description_separator.strip():
            raise ConfigError("description_separator must not be empty")


@dataclass
class McpServerConfig:
    """Server transport settings."""

    transport: str = "stdio"
    host: str = "localhost"
    port: int = 3000

    def validate(self) -> None:
        if self.transport not in ("stdio", "http"):
            raise ConfigError(f"Invalid transport: {self.transport}")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigError(f"Invalid port: {self.port!r}")
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Invalid port: {self.port}")


@dataclass
class LoggingConfig:
    """Log output settings."""

    level: str = "info"
    format: str = "text"  # "text" | "json"
    include_correlation_id: bool = True

    def validate(self) -> None:
        if not isinstance(self.level, str) or self.level.lower() not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {self.level}")
        if self.format not in ("text", "json"):
            raise ConfigError(f"Invalid log format: {self.format}")


@dataclass
class McpConfig:
    """Root configuration."""

    graphql: GraphQLConfig = field(default_factory=GraphQLConfig)
    server: McpServerConfig = field(default_factory=McpServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        self.graphql.validate()
        self.server.validate()
        self.logging.validate()


def parse_bool(name: str, value: str) -> bool:
    """Parse a ``true``/``false`` option value."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ConfigError(f"{name} must be 'true' or 'false', got {value!r}")


def parse_headers(value: str) -> dict[str, str]:
    """Parse the HEADERS JSON blob into a header mapping."""
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigError("HEADERS must be a valid JSON string") from e
    if not isinstance(data, dict):
        raise ConfigError("HEADERS must be a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def parse_port(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def header_overrides(environ: dict[str, str]) -> dict[str, str]:
    """
    Collect per-header overrides from ``HEADER_<NAME>`` variables.

    Underscores in the suffix become dashes: ``HEADER_X_API_KEY`` sets ``X-API-KEY``.
    """
    headers: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith(HEADER_ENV_PREFIX) and len(key) > len(HEADER_ENV_PREFIX):
            header_name = key[len(HEADER_ENV_PREFIX) :].replace("_", "-")
            headers[header_name] = value
    return headers


def _apply_env_overrides(cfg: McpConfig, environ: dict[str, str]) -> McpConfig:
    """Apply environment variable overrides. ENV beats TOML."""
    gql = cfg.graphql

    if environ.get("NAME"):
        gql.name = environ["NAME"]
    if environ.get("ENDPOINT"):
        gql.endpoint = environ["ENDPOINT"]
    if environ.get("ALLOW_MUTATIONS"):
        gql.allow_mutations = parse_bool("ALLOW_MUTATIONS", environ["ALLOW_MUTATIONS"])
    if environ.get("HEADERS"):
        gql.headers = parse_headers(environ["HEADERS"])
    if environ.get("SCHEMA"):
        gql.schema = environ["SCHEMA"]
    if environ.get("OPERATIONS_DIR"):
        gql.operations_dir = environ["OPERATIONS_DIR"]
    if "DESCRIPTION_SEPARATOR" in environ:
        gql.description_separator = environ["DESCRIPTION_SEPARATOR"]

    # Per-header overrides win over the JSON blob
    overrides = header_overrides(environ)
    if overrides:
        gql.headers = {**gql.headers, **overrides}

    if environ.get("TRANSPORT"):
        cfg.server.transport = environ["TRANSPORT"]
    if environ.get("HTTP_HOST"):
        cfg.server.host = environ["HTTP_HOST"]
    if environ.get("HTTP_PORT"):
        cfg.server.port = parse_port("HTTP_PORT", environ["HTTP_PORT"])

    if environ.get("LOG_LEVEL"):
        cfg.logging.level = environ["LOG_LEVEL"].lower()
    if environ.get("LOG_FORMAT"):
        cfg.logging.format = environ["LOG_FORMAT"].lower()

    return cfg


def _apply_toml(cfg: McpConfig, data: dict[str, Any]) -> McpConfig:
    gql = data.get("graphql", {})
    cfg.graphql.name = gql.get("name", cfg.graphql.name)
    cfg.graphql.endpoint = gql.get("endpoint", cfg.graphql.endpoint)
    cfg.graphql.headers = gql.get("headers", cfg.graphql.headers)
    cfg.graphql.allow_mutations = gql.get("allow_mutations", cfg.graphql.allow_mutations)
    cfg.graphql.schema = gql.get("schema", cfg.graphql.schema)
    cfg.graphql.operations_dir = gql.get("operations_dir", cfg.graphql.operations_dir)
    cfg.graphql.description_separator = gql.get(
        "description_separator", cfg.graphql.description_separator
    )

    srv = data.get("server", {})
    cfg.server.transport = srv.get("transport", cfg.server.transport)
    cfg.server.host = srv.get("host", cfg.server.host)
    cfg.server.port = srv.get("port", cfg.server.port)

    log = data.get("logging", {})
    cfg.logging.level = log.get("level", cfg.logging.level)
    cfg.logging.format = log.get("format", cfg.logging.format)
    cfg.logging.include_correlation_id = log.get(
        "include_correlation_id", cfg.logging.include_correlation_id
    )
    return cfg


def load_config(
    config_path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> McpConfig:
    """
    Load configuration from mcp-graphql.toml with ENV overrides.

    Precedence: ENV → TOML → defaults

    Args:
        config_path: Path to the TOML file. If None, searches:
            1. MCP_GRAPHQL_CONFIG env var
            2. ./mcp-graphql.toml
        environ: Environment mapping (defaults to os.environ)

    Returns:
        McpConfig dataclass with merged settings.

    Raises:
        ConfigError: when any value is invalid or the TOML file is malformed.
    """
    env = dict(os.environ) if environ is None else environ

    if config_path is None:
        if env.get("MCP_GRAPHQL_CONFIG"):
            config_path = Path(env["MCP_GRAPHQL_CONFIG"])
        else:
            config_path = Path(DEFAULT_CONFIG_FILE)
    else:
        config_path = Path(config_path)

    cfg = McpConfig()

    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
        cfg = _apply_toml(cfg, data)

    cfg = _apply_env_overrides(cfg, env)
    cfg.validate()

    return cfg
