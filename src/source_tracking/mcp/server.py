"""MCP Server for source tracking using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents ask what changed locally and remotely, detect conflicts and
record sync points.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import setup_logging
from ..tracking.orchestrator import SourceTracking
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("source-tracking-mcp")

# Global tracker instance (initialized in main)
_tracker: SourceTracking | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    tracker: SourceTracking, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test org connectivity."""
    try:
        version = await run_sync(tracker.client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Source tracking MCP server connected successfully. API version: {version}",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Org connection failed: {e}. Check ORG_INSTANCE_URL and ORG_ACCESS_TOKEN.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test org connectivity and return the newest API version",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_tracker() -> SourceTracking:
    """Get the global SourceTracking instance.

    Raises:
        RuntimeError: If the tracker is not initialized
    """
    if _tracker is None:
        raise RuntimeError(
            "SourceTracking not initialized. Server lifespan not started."
        )
    return _tracker


def set_tracker(tracker: SourceTracking | None) -> None:
    global _tracker
    _tracker = tracker


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    tracker = get_tracker()
    try:
        return await get_registry().call_tool(name, arguments, tracker)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, filtered by an optional permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), builds the
    tracker via the lifespan manager, and serves JSON-RPC over stdio.

    Args:
        config_overrides: Optional dict with config values to override
            (instance_url, username, access_token, org_id, insecure,
            project_path, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout during negotiation
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_tracker() is called here rather than in the lifespan so that
    # running as __main__ still updates this module's globals.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_tracker(ctx["tracker"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="source-tracking-mcp",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_tracker(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Source Tracking MCP Server - local/remote change tracking with conflict detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .source_tracking/config.yml)
  source-tracking-mcp

  # Track a project in another directory
  source-tracking-mcp --project /work/my-project

  # Override connection settings
  source-tracking-mcp --instance-url https://example.my.salesforce.com --org-id 00D000000000001

  # Expose read-only tools only
  source-tracking-mcp --permissions-file read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--instance-url",
        help="Override org instance URL (takes precedence over ORG_INSTANCE_URL and config files)",
    )
    parser.add_argument(
        "--username",
        help="Override the user the tracking state belongs to (ORG_USERNAME)",
    )
    parser.add_argument(
        "--access-token",
        help="Override the access token (visible in process list -- prefer ORG_ACCESS_TOKEN)",
    )
    parser.add_argument("--org-id", help="Override the org id (ORG_ID)")
    parser.add_argument(
        "--project",
        help="Project directory to track (overrides project.path in config)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: LOG_FILE or /tmp/source-tracking-mcp.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (TRACKING_VIEW, TRACKING_ADMIN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"source-tracking-mcp version {__version__}",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Collect the CLI arguments that were actually given."""
    mapping = {
        "instance_url": args.instance_url,
        "username": args.username,
        "access_token": args.access_token,
        "org_id": args.org_id,
        "project_path": args.project,
        "log_file": args.log_file,
        "permissions_file": args.permissions_file,
    }
    overrides = {k: v for k, v in mapping.items() if v}
    if args.insecure:
        overrides["insecure"] = True
    if args.debug:
        overrides["debug"] = True
    return overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()
    config_overrides = overrides_from_args(args)

    if config_overrides:
        override_keys = [k for k in config_overrides if k != "access_token"]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
