"""MCP tool handlers for vault sync.

Defines the sync tools:

- ``vault_pull`` -- apply remote changes to the local vault.
- ``vault_push`` -- pull, then upload pending local changes.
- ``vault_reset`` -- discard local changes (requires ``confirm``).
- ``vault_scan`` -- queue every untracked local file for upload.
- ``vault_status`` -- sync queue and last-sync summary.
- ``vault_errors`` -- recorded per-file failures.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...sync.reporter import (
    format_errors,
    format_status,
    format_sync_report,
    report_to_json,
)
from ...sync.service import VaultSync
from .errors import build_error_response
from .registry import ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_NO_ARGS = {"type": "object", "properties": {}, "required": []}

SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="vault_pull",
        description=(
            "Apply remote changes to the local vault. Local edits always "
            "win; diverging remote versions are saved as conflict backups."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="vault_push",
        description=(
            "Pull remote changes, then upload every pending local create, "
            "modify and delete to the remote store."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="vault_reset",
        description=(
            "Discard all local changes and make the vault match the remote "
            "store. Irreversible: requires confirm=true."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "confirm": {
                    "type": "boolean",
                    "default": False,
                    "description": "Must be true to proceed",
                },
            },
            "required": ["confirm"],
        },
    ),
    types.Tool(
        name="vault_scan",
        description=(
            "Queue every local file and folder not yet on the remote store "
            "for upload. Use before the first push of an existing vault."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="vault_status",
        description=(
            "Show the sync queue (first 20 entries), last sync time, "
            "tracked object count and recorded error count."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="vault_errors",
        description=(
            "List recorded per-file sync failures by class (network, "
            "permission, file_size, timeout, rate_limit, unknown)."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema=_NO_ARGS,
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _report_result(report) -> types.CallToolResult:
    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_sync_report(report))
        ],
        structuredContent=report_to_json(report),
        isError=not report.success,
    )


async def _handle_pull(
    sync: VaultSync, args: dict[str, Any]
) -> types.CallToolResult:
    return _report_result(await sync.pull())


async def _handle_push(
    sync: VaultSync, args: dict[str, Any]
) -> types.CallToolResult:
    return _report_result(await sync.push())


async def _handle_reset(
    sync: VaultSync, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_reset`` tool."""
    if args.get("confirm") is not True:
        return build_error_response(
            "confirmation_required",
            "vault_reset discards all local changes",
            "Call vault_reset again with confirm=true to proceed.",
        )
    return _report_result(await sync.reset(confirm=True))


async def _handle_scan(
    sync: VaultSync, args: dict[str, Any]
) -> types.CallToolResult:
    added = await sync.scan_all_files()
    pending = sync.status()["pending"]
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=(
                    f"Queued {added} entries ({pending} pending). "
                    "Use vault_push to upload them."
                ),
            )
        ],
        structuredContent={"added": added, "pending": pending},
    )


async def _handle_status(
    sync: VaultSync, args: dict[str, Any]
) -> types.CallToolResult:
    status = sync.status()
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_status(status))],
        structuredContent=status,
    )


async def _handle_errors(
    sync: VaultSync, args: dict[str, Any]
) -> types.CallToolResult:
    summary = sync.errors()
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_errors(summary))],
        structuredContent=summary,
    )


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({"VAULT_PULL"}),
        handler=_handle_pull,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({"VAULT_PULL", "VAULT_PUSH"}),
        handler=_handle_push,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[2],
        permissions=frozenset({"VAULT_RESET"}),
        handler=_handle_reset,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[3],
        permissions=frozenset({"VAULT_PUSH"}),
        handler=_handle_scan,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[4],
        permissions=frozenset({"VAULT_READ"}),
        handler=_handle_status,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[5],
        permissions=frozenset({"VAULT_READ"}),
        handler=_handle_errors,
    ),
]
