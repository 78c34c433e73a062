"""CLI for running and inspecting the GraphQL MCP server."""

from __future__ import annotations

import asyncio
from pathlib import Path

from rich.console import Console
from rich.table import Table
import typer

from graphql_mcp.config import McpConfig, load_config
from graphql_mcp.errors import ConfigError, SchemaUnavailableError

app = typer.Typer(
    name="mcp-graphql",
    help="GraphQL MCP server management CLI",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to mcp-graphql.toml")


def _load(config_path: Path | None) -> McpConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        err_console.print(f"[red]✗[/] Invalid configuration: {e}")
        raise typer.Exit(2) from None


@app.command()
def serve(
    config_path: Path | None = ConfigOption,
    transport: str | None = typer.Option(None, "--transport", "-t", help="stdio or http"),
    port: int | None = typer.Option(None, "--port", "-p", help="HTTP port"),
    host: str | None = typer.Option(None, "--host", "-H", help="Bind address"),
) -> None:
    """Run the MCP server in the foreground."""
    from graphql_mcp.observability import setup_logging
    from graphql_mcp.transport.runner import serve as run_server

    config = _load(config_path)
    if transport:
        config.server.transport = transport
    if port:
        config.server.port = port
    if host:
        config.server.host = host
    try:
        config.validate()
    except ConfigError as e:
        err_console.print(f"[red]✗[/] Invalid configuration: {e}")
        raise typer.Exit(2) from None

    setup_logging(config.logging)

    if config.server.transport == "http":
        err_console.print(
            f"[green]✓[/] MCP server running on http://{config.server.host}:{config.server.port}/mcp"
        )
        err_console.print("  Press Ctrl+C to stop")

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        err_console.print("[yellow]![/] Interrupted")


@app.command()
def operations(config_path: Path | None = ConfigOption) -> None:
    """List the tools generated from the operations directory."""
    from graphql_mcp.operations import load_operations

    config = _load(config_path)
    gql = config.graphql
    loaded = load_operations(gql.operations_dir, gql.description_separator)

    if not loaded:
        console.print(f"[yellow]No operations found in {gql.operations_dir}[/]")
        return

    table = Table(title=f"Operations in {gql.operations_dir}")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Variables")
    table.add_column("Description")
    for op in loaded:
        variables = ", ".join(
            f"{name}{'' if spec.required else '?'}" for name, spec in op.variable_schema.items()
        )
        table.add_row(op.name, op.operation_type, variables or "-", op.description)
    console.print(table)


@app.command()
def schema(config_path: Path | None = ConfigOption) -> None:
    """Print the schema the introspect-schema tool would return."""
    from graphql_mcp.client import GraphQLClient
    from graphql_mcp.introspection import SchemaSource

    config = _load(config_path)

    async def _fetch() -> str:
        client = GraphQLClient(config.graphql.endpoint, config.graphql.headers)
        try:
            return await SchemaSource.from_setting(client, config.graphql.schema).load()
        finally:
            await client.aclose()

    try:
        text = asyncio.run(_fetch())
    except SchemaUnavailableError as e:
        err_console.print(f"[red]✗[/] {e}")
        if e.payload:
            err_console.print(e.payload, markup=False)
        raise typer.Exit(1) from None
    console.print(text, markup=False, highlight=False)


@app.command()
def health(
    config_path: Path | None = ConfigOption,
    url: str | None = typer.Option(None, "--url", help="Health endpoint URL"),
) -> None:
    """Quick health check (for scripts, exit code 0 = healthy)."""
    import httpx

    if url is None:
        config = _load(config_path)
        url = f"http://{config.server.host}:{config.server.port}/health"

    try:
        r = httpx.get(url, timeout=5)
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/] Health check failed: {e}")
        raise typer.Exit(1) from None

    if r.status_code != 200:
        console.print(f"[red]✗[/] Health check failed (HTTP {r.status_code})")
        raise typer.Exit(1)

    data = r.json()
    console.print(
        f"[green]✓[/] Server healthy ({data.get('tools', 0)} tools, "
        f"{data.get('sessions', 0)} sessions)"
    )


@app.command()
def version() -> None:
    """Show the installed version."""
    from graphql_mcp import get_version

    console.print(f"mcp-graphql {get_version()}")


def main() -> None:
    """Entry point for mcp-graphql-cli."""
    app()


if __name__ == "__main__":
    main()
