"""Entry point for workflows-resume MCP server.

Orchestrates the import sequence to ensure tool and route decorators are
registered before the server starts:
1. Import tools module (triggers @mcp.tool() decorator registration)
2. Import routes module (triggers @mcp.custom_route() registration)
3. Import server module (provides FastMCP instance and entry point)
4. Call server.main() to start the MCP server
"""


def main() -> None:
    """Entry point for direct execution."""
    # Import tools and routes first to register their decorators
    from . import routes, tools  # noqa: F401 - imported for side effects (decorator registration)
    from .server import main as server_main

    server_main()


if __name__ == "__main__":
    main()
