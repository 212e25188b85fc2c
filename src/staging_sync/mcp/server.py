"""MCP Server for staging-to-production synchronization using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents review staging changes, resolve conflicts and push selected items
to production through standardized tools.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys
from typing import Any

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import setup_logging
from .lifespan import server_lifespan
from .tools import (
    STAGING_TOOL_NAMES,
    STAGING_TOOLS,
    build_error_response,
    handle_staging_tool,
)

logger = logging.getLogger(__name__)

server = Server("staging-sync")

# Global context (initialized in main from the lifespan)
_context: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> dict[str, Any]:
    """Get the server context (``config`` and ``cache``).

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _context is None:
        raise RuntimeError(
            "Server context not initialized. Server lifespan not started."
        )
    return _context


def set_context(context: dict[str, Any] | None) -> None:
    """Set the server context, or None to clear it."""
    global _context
    _context = context


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available staging tools."""
    return list(STAGING_TOOLS)


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Dispatch a tool call to the staging handlers.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    if name not in STAGING_TOOL_NAMES:
        return build_error_response(
            "unknown_tool",
            f"Unknown tool: {name}",
            "Use list_tools to see available tools.",
        )
    context = get_context()
    return await handle_staging_tool(
        name, arguments, context["config"], context["cache"]
    )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), loads the
    configuration via the lifespan manager, and serves tool calls over
    stdio.

    Args:
        config_overrides: Optional dict with CLI values (pair, roots,
            database URLs, state_dir, log_file)
    """
    log_file = (
        config_overrides.get("log_file") if config_overrides else None
    )

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(mode="mcp", log_file=log_file)
    logger.info("staging-sync %s", __version__)

    # The context is installed here rather than inside the lifespan so it
    # lands in this module even when run as ``python -m``.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_context(ctx)
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="staging-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Staging Sync MCP Server - push staging changes to production over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .staging_sync/config.yml)
  staging-sync-mcp

  # Define the default pair on the command line
  staging-sync-mcp --source-root /var/www/staging --destination-root /var/www/html

  # Custom log file location
  staging-sync-mcp --log-file /var/log/staging-sync.log

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--pair",
        default="default",
        help="Environment pair that the options below apply to (default: default)",
    )
    parser.add_argument("--source-root", help="Source (staging) file tree root")
    parser.add_argument(
        "--destination-root", help="Destination (production) file tree root"
    )
    parser.add_argument(
        "--source-db-url",
        help="SQLAlchemy URL of the source database"
        " (visible in process list -- prefer STAGING_SOURCE_DB_URL)",
    )
    parser.add_argument(
        "--destination-db-url",
        help="SQLAlchemy URL of the destination database"
        " (visible in process list -- prefer STAGING_DESTINATION_DB_URL)",
    )
    parser.add_argument(
        "--state-dir", help="Directory for baseline and conflict state"
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/staging-sync.log",
        help="Log file path (default: /tmp/staging-sync.log)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"staging-sync version {__version__}",
    )

    args = parser.parse_args()

    config_overrides = {
        "pair": args.pair,
        "source_root": args.source_root,
        "destination_root": args.destination_root,
        "source_database_url": args.source_db_url,
        "destination_database_url": args.destination_db_url,
        "state_dir": args.state_dir,
        "log_file": args.log_file,
    }
    config_overrides = {
        k: v for k, v in config_overrides.items() if v is not None
    }

    given = [
        k
        for k in config_overrides
        if k not in ("pair", "log_file") and "database_url" not in k
    ]
    if given:
        print(
            f"Config overrides from CLI: {', '.join(given)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Already reported on stderr by the lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
