"""Tests for sync reporter formatting functions.

Covers:
- format_sync_report with various result combinations
- Aborted reports
- format_status queue preview
- format_errors summary
- report_to_json structure and completeness
- SyncReport.summary counts
"""

from __future__ import annotations

from vault_sync.sync.models import SyncAction, SyncReport, SyncResult
from vault_sync.sync.reporter import (
    format_errors,
    format_status,
    format_sync_report,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_report(
    results: list[SyncResult] | None = None,
    operation: str = "push",
    aborted: str | None = None,
) -> SyncReport:
    """Build a SyncReport with sensible defaults."""
    return SyncReport(
        operation=operation,
        results=results or [],
        started_at="2026-02-07T10:00:00Z",
        completed_at="2026-02-07T10:01:00Z",
        aborted=aborted,
    )


def _result(
    action: SyncAction,
    path: str = "notes/a.md",
    success: bool = True,
    error: str | None = None,
    detail: str | None = None,
) -> SyncResult:
    return SyncResult(
        path=path, action=action, success=success, error=error, detail=detail
    )


# ---------------------------------------------------------------------------
# format_sync_report
# ---------------------------------------------------------------------------


class TestFormatSyncReport:
    def test_header_and_times(self):
        text = format_sync_report(_make_report(operation="pull"))
        assert text.startswith("Pull report\n")
        assert "Started: 2026-02-07T10:00:00Z" in text
        assert "Completed: 2026-02-07T10:01:00Z" in text

    def test_totals_line(self):
        results = [
            _result(SyncAction.CREATE_REMOTE, "a.md"),
            _result(SyncAction.UPDATE_REMOTE, "b.md"),
            _result(SyncAction.DELETE_REMOTE, "c.md"),
            _result(SyncAction.CREATE_REMOTE, "d.md", success=False, error="boom"),
        ]
        text = format_sync_report(_make_report(results))
        assert (
            "4 actions: 2 uploaded, 0 downloaded, 1 deleted, 0 conflicts, 1 errors"
            in text
        )

    def test_sections_only_when_present(self):
        results = [_result(SyncAction.CREATE_LOCAL, "new.md", detail="id7")]
        text = format_sync_report(_make_report(results, operation="pull"))
        assert "Created (local):\n  new.md (id7)" in text
        assert "Created (remote)" not in text
        assert "Errors:" not in text

    def test_conflicts_and_errors(self):
        results = [
            _result(
                SyncAction.CONFLICT,
                "a.md",
                detail="a.md.conflict-1.backup",
            ),
            _result(SyncAction.CREATE_LOCAL, "b.md", success=False, error="HTTP 500"),
        ]
        text = format_sync_report(_make_report(results, operation="pull"))
        assert "  a.md -> a.md.conflict-1.backup" in text
        assert "Errors:\n  b.md: HTTP 500" in text

    def test_requeued_section(self):
        results = [_result(SyncAction.REQUEUE, "gone.md")]
        text = format_sync_report(_make_report(results))
        assert "Requeued as create:\n  gone.md" in text

    def test_skipped_summarised(self):
        results = [
            _result(SyncAction.SKIP, f"s{i}.md", detail="pending local delete")
            for i in range(3)
        ]
        text = format_sync_report(_make_report(results))
        assert "Skipped: 3 paths" in text
        assert "s0.md" not in text

    def test_aborted(self):
        text = format_sync_report(
            _make_report(operation="pull", aborted="Remote store unreachable")
        )
        assert text.startswith("Pull report (ABORTED)")
        assert "Aborted: Remote store unreachable" in text


# ---------------------------------------------------------------------------
# Status and errors
# ---------------------------------------------------------------------------


def _status(**overrides):
    status = {
        "vault": "Notes",
        "vault_path": "/tmp/Notes",
        "syncing": False,
        "last_synced_at": 0,
        "pending": 0,
        "queue": [],
        "more": 0,
        "tracked": 0,
        "errors": 0,
    }
    status.update(overrides)
    return status


class TestFormatStatus:
    def test_empty_queue(self):
        text = format_status(_status())
        assert "Vault: Notes (/tmp/Notes)" in text
        assert "Last synced: never" in text
        assert text.endswith("No files in sync queue.")

    def test_queue_preview(self):
        text = format_status(
            _status(
                last_synced_at=1_700_000_000_000,
                pending=22,
                queue=[{"path": "a.md", "operation": "create"}],
                more=21,
                syncing=True,
            )
        )
        assert "Last synced: 2023-11-14T22:13:20+00:00" in text
        assert "A sync is in progress." in text
        assert "Sync queue (22 entries):" in text
        assert "  CREATE: a.md" in text
        assert "... and 21 more" in text


class TestFormatErrors:
    def test_none(self):
        assert format_errors({"total": 0}) == "No recorded errors."

    def test_records(self):
        summary = {
            "total": 2,
            "by_type": {"network": 1, "permission": 1},
            "retriable": ["a.md"],
            "records": [
                {
                    "path": "a.md",
                    "error_type": "network",
                    "operation": "create",
                    "message": "HTTP 503",
                    "retry_count": 1,
                },
                {
                    "path": "b.md",
                    "error_type": "permission",
                    "operation": "modify",
                    "message": "HTTP 403",
                    "retry_count": 2,
                },
            ],
        }
        text = format_errors(summary)
        assert text.startswith("2 recorded errors:")
        assert "  network: 1" in text
        assert "[network] create a.md: HTTP 503 (attempt 1) (retriable)" in text
        assert "[permission] modify b.md: HTTP 403 (attempt 2)" in text
        assert "b.md: HTTP 403 (attempt 2) (retriable)" not in text


# ---------------------------------------------------------------------------
# report_to_json and summary
# ---------------------------------------------------------------------------


class TestReportToJson:
    def test_structure(self):
        results = [
            _result(SyncAction.DELETE_LOCAL, "old.md"),
            _result(SyncAction.UPDATE_LOCAL, "b.md", success=False, error="x"),
            _result(SyncAction.SKIP, "c.md", detail="no remote copy"),
        ]
        data = report_to_json(_make_report(results, operation="reset"))

        assert data["operation"] == "reset"
        assert data["aborted"] is None
        assert data["counts"]["total"] == 3
        assert data["counts"]["deleted_local"] == 1
        assert data["counts"]["updated_local"] == 0
        assert data["counts"]["errors"] == 1
        assert data["counts"]["skipped"] == 1
        assert data["results"][0] == {
            "path": "old.md",
            "action": "delete_local",
            "success": True,
        }
        assert data["results"][1]["error"] == "x"
        assert data["results"][2]["detail"] == "no remote copy"


def test_summary_counts():
    report = _make_report(
        [
            _result(SyncAction.CREATE_REMOTE, "a.md"),
            _result(SyncAction.REQUEUE, "b.md"),
        ],
        aborted="cursor",
    )
    summary = report.summary()
    assert summary.startswith("Push report (aborted: cursor)")
    assert "Created remote: 1" in summary
    assert "Requeued:       1" in summary
    assert not report.success
