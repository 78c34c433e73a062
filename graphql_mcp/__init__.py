"""GraphQL MCP server - GraphQL endpoints and operation files as MCP tools."""

from importlib.metadata import PackageNotFoundError, version


def get_version() -> str:
    """Installed package version, or a dev fallback when running from source."""
    try:
        return version("mcp-graphql")
    except PackageNotFoundError:
        return "0.0.0-dev"


__version__ = get_version()
