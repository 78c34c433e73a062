"""Allow ``python -m graphql_mcp``."""

from graphql_mcp.server import main

if __name__ == "__main__":
    main()
