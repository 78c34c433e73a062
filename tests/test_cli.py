"""Tests for the management CLI."""

import httpx
import respx
from typer.testing import CliRunner

from graphql_mcp import get_version
from graphql_mcp.cli import app

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert get_version() in result.output


def test_operations_table(monkeypatch, operations_dir):
    monkeypatch.setenv("OPERATIONS_DIR", str(operations_dir))

    result = runner.invoke(app, ["operations"])

    assert result.exit_code == 0
    assert "GetUser" in result.output
    assert "CreateUser" in result.output
    assert "mutation" in result.output


def test_operations_empty(monkeypatch, tmp_path):
    monkeypatch.setenv("OPERATIONS_DIR", str(tmp_path / "none"))

    result = runner.invoke(app, ["operations"])

    assert result.exit_code == 0
    assert "No operations found" in result.output


def test_invalid_config_exits_2(monkeypatch):
    monkeypatch.setenv("HTTP_PORT", "abc")
    result = runner.invoke(app, ["operations"])
    assert result.exit_code == 2


def test_schema_from_file(monkeypatch, tmp_path):
    schema = tmp_path / "schema.graphql"
    schema.write_text("type Query { ping: String }\n")
    monkeypatch.setenv("SCHEMA", str(schema))

    result = runner.invoke(app, ["schema"])

    assert result.exit_code == 0
    assert "type Query { ping: String }" in result.output


def test_schema_unavailable(monkeypatch, tmp_path):
    monkeypatch.setenv("SCHEMA", str(tmp_path / "missing.graphql"))
    result = runner.invoke(app, ["schema"])
    assert result.exit_code == 1


@respx.mock
def test_health_ok():
    respx.get("http://localhost:3000/health").mock(
        return_value=httpx.Response(200, json={"status": "ok", "tools": 4, "sessions": 2})
    )

    result = runner.invoke(app, ["health"])

    assert result.exit_code == 0
    assert "4 tools" in result.output
    assert "2 sessions" in result.output


@respx.mock
def test_health_unreachable():
    respx.get("http://127.0.0.1:9/health").mock(side_effect=httpx.ConnectError("refused"))

    result = runner.invoke(app, ["health", "--url", "http://127.0.0.1:9/health"])

    assert result.exit_code == 1


@respx.mock
def test_health_bad_status():
    respx.get("http://localhost:3000/health").mock(return_value=httpx.Response(503))
    result = runner.invoke(app, ["health"])
    assert result.exit_code == 1
