"""stdio MCP server exposing pull, push, reset and queue inspection.

Tools are registered through a ToolRegistry so a permissions file can
narrow what a connected agent may do to the vault.
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
from ..cli import add_connection_arguments, connection_overrides
from ..logger import setup_logging
from ..sync.service import VaultSync
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import KNOWN_PERMISSIONS, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = "/tmp/vault-sync.log"

server = Server("vault-sync")

# Global service instance (initialized in lifespan)
_vault_sync: VaultSync | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available)
# ---------------------------------------------------------------------------


async def _handle_ping(sync: VaultSync, args: dict) -> types.CallToolResult:
    """Handle ping tool -- test remote store connectivity."""
    if await sync.ping():
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"Vault sync server connected. Vault: "
                        f"{sync.config.vault_name}, version {__version__}"
                    ),
                )
            ]
        )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=(
                    "Remote store is unreachable. Check VAULT_SYNC_SERVER_URL "
                    "and network access."
                ),
            )
        ],
        isError=True,
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test remote store connectivity and return the vault name",
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


def get_vault_sync() -> VaultSync:
    """Get the global VaultSync instance.

    Raises:
        RuntimeError: If the service is not initialized
    """
    if _vault_sync is None:
        raise RuntimeError(
            "VaultSync not initialized. Server lifespan not started."
        )
    return _vault_sync


def set_vault_sync(sync: VaultSync | None) -> None:
    global _vault_sync
    _vault_sync = sync


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
    """Route a tool call through the registry."""
    sync = get_vault_sync()
    try:
        return await get_registry().call_tool(name, arguments, sync)
    except ValueError as e:
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Serve the sync tools on stdio until the client disconnects.

    ``config_overrides`` takes Config field names plus two server-only
    keys, ``log_file`` and ``permissions_file``.
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    permissions_file = overrides.pop("permissions_file", None)

    # stdout belongs to JSON-RPC from here on
    setup_logging(mode="mcp", log_file=log_file)

    allowed = load_permissions_file(permissions_file) if permissions_file else None
    specs = [PING_SPEC, *ALL_SPECS]
    registry = ToolRegistry(specs, allowed)
    logger.info("Exposing %d of %d tools", registry.tool_count(), len(specs))
    if allowed is not None:
        print(
            f"Capabilities from {permissions_file}: {', '.join(sorted(allowed))}",
            file=sys.stderr,
        )
    set_registry(registry)

    # Set here rather than in server_lifespan: when run as __main__ the
    # lifespan module would import a second copy of this module.
    async with server_lifespan(config_overrides=overrides or None) as ctx:
        set_vault_sync(ctx["sync"])
        try:
            async with mcp.server.stdio.stdio_server() as (reader, writer):
                await server.run(
                    reader,
                    writer,
                    InitializationOptions(
                        server_name="vault-sync",
                        server_version=__version__,
                        capabilities=server.get_capabilities(
                            notification_options=NotificationOptions(),
                            experimental_capabilities={},
                        ),
                    ),
                )
        finally:
            set_vault_sync(None)
            set_registry(None)


def run() -> None:
    """Console entry point for the MCP server."""
    parser = argparse.ArgumentParser(
        prog="vault-sync-mcp",
        description="Expose vault sync commands to MCP clients over stdio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vault-sync-mcp --vault ~/Notes
  vault-sync-mcp --permissions-file read-only.permissions

stdout carries JSON-RPC; diagnostics go to stderr and the log file.
        """,
    )
    add_connection_arguments(parser)
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="File listing the capabilities to expose, one per line "
        f"({', '.join(sorted(KNOWN_PERMISSIONS))}). All tools when omitted.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"vault-sync-mcp version {__version__}",
    )
    args = parser.parse_args()

    overrides = connection_overrides(args)
    if overrides:
        shown = sorted(k for k in overrides if k != "refresh_token")
        print(f"Config overrides from CLI: {', '.join(shown)}", file=sys.stderr)
    overrides["log_file"] = args.log_file
    if args.permissions_file:
        overrides["permissions_file"] = args.permissions_file

    try:
        asyncio.run(main(config_overrides=overrides))
    except RuntimeError:
        # lifespan has already reported the failure
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
