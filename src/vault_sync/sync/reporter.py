"""Report formatting functions.

Provides human-readable and machine-readable output for sync commands:

- ``format_sync_report`` -- full post-sync summary.
- ``format_status`` -- queue status with a preview of pending operations.
- ``format_errors`` -- error ledger summary by class.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import SyncReport, SyncResult

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _section(lines: list[str], title: str, results: list[SyncResult]) -> None:
    if not results:
        return
    lines.append(f"{title}:")
    for r in results:
        suffix = f" ({r.detail})" if r.detail else ""
        lines.append(f"  {r.path}{suffix}")
    lines.append("")


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Skipped paths are summarised by count only to avoid excessive output.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"{report.operation.capitalize()} report"
    if report.aborted:
        header += " (ABORTED)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.aborted:
        lines.append(f"Aborted: {report.aborted}")
        lines.append("")

    uploaded = len(report.created_remote) + len(report.updated_remote)
    downloaded = len(report.created_local) + len(report.updated_local)
    deleted = len(report.deleted_remote) + len(report.deleted_local)
    lines.append(
        f"{len(report.results)} actions: "
        f"{uploaded} uploaded, {downloaded} downloaded, "
        f"{deleted} deleted, {len(report.conflicts)} conflicts, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    _section(lines, "Created (remote)", report.created_remote)
    _section(lines, "Updated (remote)", report.updated_remote)
    _section(lines, "Deleted (remote)", report.deleted_remote)
    _section(lines, "Created (local)", report.created_local)
    _section(lines, "Updated (local)", report.updated_local)
    _section(lines, "Deleted (local)", report.deleted_local)
    _section(lines, "Requeued as create", report.requeued)

    if report.conflicts:
        lines.append("Conflicts (local kept, remote saved as backup):")
        for r in report.conflicts:
            lines.append(f"  {r.path} -> {r.detail}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.path}: {r.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} paths")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Status and errors
# ------------------------------------------------------------------


def _format_time(epoch_ms: int) -> str:
    if not epoch_ms:
        return "never"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


def format_status(status: dict[str, Any]) -> str:
    """Format ``VaultSync.status()`` output."""
    lines = [
        f"Vault: {status['vault']} ({status['vault_path']})",
        f"Last synced: {_format_time(status['last_synced_at'])}",
        f"Tracked remote objects: {status['tracked']}",
        f"Recorded errors: {status['errors']}",
    ]
    if status.get("syncing"):
        lines.append("A sync is in progress.")
    lines.append("")
    if not status["pending"]:
        lines.append("No files in sync queue.")
        return "\n".join(lines)

    lines.append(f"Sync queue ({status['pending']} entries):")
    for item in status["queue"]:
        lines.append(f"  {item['operation'].upper()}: {item['path']}")
    if status["more"]:
        lines.append(f"  ... and {status['more']} more")
    return "\n".join(lines)


def format_errors(summary: dict[str, Any]) -> str:
    """Format ``VaultSync.errors()`` output."""
    if not summary["total"]:
        return "No recorded errors."
    lines = [f"{summary['total']} recorded errors:"]
    for error_type, count in sorted(summary["by_type"].items()):
        lines.append(f"  {error_type}: {count}")
    lines.append("")
    retriable = set(summary["retriable"])
    for record in summary["records"]:
        marker = " (retriable)" if record["path"] in retriable else ""
        lines.append(
            f"  [{record['error_type']}] {record['operation']} "
            f"{record['path']}: {record['message']} "
            f"(attempt {record['retry_count']}){marker}"
        )
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        report: The sync report.

    Returns:
        Dict with timestamps, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "path": r.path,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        if r.detail:
            entry["detail"] = r.detail
        results_list.append(entry)

    return {
        "operation": report.operation,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "aborted": report.aborted,
        "counts": {
            "total": len(report.results),
            "created_remote": len(report.created_remote),
            "updated_remote": len(report.updated_remote),
            "deleted_remote": len(report.deleted_remote),
            "created_local": len(report.created_local),
            "updated_local": len(report.updated_local),
            "deleted_local": len(report.deleted_local),
            "conflicts": len(report.conflicts),
            "requeued": len(report.requeued),
            "errors": len(report.errors),
            "skipped": len(report.skipped),
        },
        "results": results_list,
    }
