"""Tests for PullEngine.

Covers:
- Downloads with the remote modification time, folder creation
- Reconciliation against pending operations (conflict, create, delete)
- Remote removals, survivors, folder survival
- Config removals and the engine's own state folder
- Fatal fetch errors
"""

from datetime import datetime, timezone

import pytest
from conftest import STATE_DIR, STATE_FILE

from vault_sync.core.errors import TransientError
from vault_sync.core.models import RemoteChange
from vault_sync.sync.conflict import ConflictDetector
from vault_sync.sync.errors import PullError
from vault_sync.sync.models import OperationKind
from vault_sync.sync.pull import PullEngine

REMOTE_TIME = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _engine(remote, vault, state, ledger, **kwargs) -> PullEngine:
    return PullEngine(remote, vault, state, ledger, STATE_DIR, **kwargs)


def _start_feed(remote, state) -> None:
    """Point the state's change cursor at the current end of the feed."""
    state.changes_token = remote.get_changes_start_token()


# ---------------------------------------------------------------------------
# Modified objects
# ---------------------------------------------------------------------------


class TestDownloads:
    async def test_new_file_written_with_remote_mtime(
        self, remote, vault, state, ledger, vault_dir
    ):
        remote.add("c", folder=True)
        file_id = remote.add("c/d.md", b"remote", modified=REMOTE_TIME)

        report = await _engine(remote, vault, state, ledger).run()

        target = vault_dir / "c" / "d.md"
        assert target.read_bytes() == b"remote"
        assert target.stat().st_mtime_ns // 1_000_000 == int(
            REMOTE_TIME.timestamp() * 1000
        )
        assert state.identity.resolve(file_id) == "c/d.md"
        assert state.identity.resolve_reverse("c") is not None
        assert {r.path for r in report.created_local} == {"c", "c/d.md"}
        # Engine writes are not queued for push
        assert len(state.operations) == 0

    async def test_existing_file_overwritten(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file("a.md", b"old")
        file_id = remote.add("a.md", b"newer", modified=REMOTE_TIME)
        state.identity.set(file_id, "a.md")

        report = await _engine(remote, vault, state, ledger).run()

        assert (vault_dir / "a.md").read_bytes() == b"newer"
        assert [r.path for r in report.updated_local] == ["a.md"]

    async def test_only_changes_since_last_sync(
        self, remote, vault, state, ledger, vault_dir
    ):
        remote.add("old.md", b"old", modified=REMOTE_TIME)
        state.last_synced_at = int(REMOTE_TIME.timestamp() * 1000) + 1

        report = await _engine(remote, vault, state, ledger).run()

        assert report.results == []
        assert not (vault_dir / "old.md").exists()

    async def test_pending_modify_conflict_keeps_local(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        """Local wins; the remote version is saved as a backup."""
        write_file("a.md", b"local edit")
        file_id = remote.add("a.md", b"remote version!!", modified=REMOTE_TIME)
        state.operations.set("a.md", OperationKind.MODIFY)
        detector = ConflictDetector(remote, vault, clock=lambda: 123)

        report = await _engine(
            remote, vault, state, ledger, conflicts=detector
        ).run()

        assert (vault_dir / "a.md").read_bytes() == b"local edit"
        backup = vault_dir / "a.md.conflict-123.backup"
        assert backup.read_bytes() == b"remote version!!"
        assert state.operations.get("a.md") == OperationKind.MODIFY
        assert state.identity.resolve(file_id) == "a.md"
        assert report.conflicts[0].detail == "a.md.conflict-123.backup"

    async def test_pending_modify_same_content_no_backup(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file("a.md", b"same")
        remote.add("a.md", b"same", modified=REMOTE_TIME)
        state.operations.set("a.md", OperationKind.MODIFY)

        report = await _engine(remote, vault, state, ledger).run()

        assert report.conflicts == []
        assert [p.name for p in vault_dir.iterdir() if "conflict" in p.name] == []
        assert report.skipped[0].detail == "local changes kept (time_diff)"

    async def test_pending_create_becomes_modify(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file("b.md", b"mine")
        file_id = remote.add("b.md", b"theirs")
        state.operations.set("b.md", OperationKind.CREATE)

        await _engine(remote, vault, state, ledger).run()

        assert state.operations.get("b.md") == OperationKind.MODIFY
        assert state.identity.resolve(file_id) == "b.md"
        assert (vault_dir / "b.md").read_bytes() == b"mine"

    async def test_pending_delete_skipped(
        self, remote, vault, state, ledger, vault_dir
    ):
        remote.add("e.md", b"remote")
        state.operations.set("e.md", OperationKind.DELETE)

        report = await _engine(remote, vault, state, ledger).run()

        assert not (vault_dir / "e.md").exists()
        assert state.operations.get("e.md") == OperationKind.DELETE
        assert report.skipped[0].detail == "pending local delete"

    async def test_state_folder_never_written(
        self, remote, vault, state, ledger, vault_dir
    ):
        remote.add(STATE_FILE, b'{"operations": {}}', config=True)

        await _engine(remote, vault, state, ledger).run()

        assert not vault.exists(STATE_FILE)

    async def test_download_failure_recorded(
        self, remote, vault, state, ledger
    ):
        remote.add("a.md", b"x")
        remote.fail["fetch_content"] = TransientError("reset by peer", 503)

        report = await _engine(remote, vault, state, ledger).run()

        assert report.errors[0].path == "a.md"
        assert ledger.get("a.md").operation == "pull"
        assert not vault.exists("a.md")

    @pytest.mark.parametrize("bad_path", ["../escaped.md", "/tmp/escaped.md"])
    async def test_path_outside_vault_rejected(
        self, remote, vault, state, ledger, vault_dir, bad_path
    ):
        """A remote path that climbs out of the vault is never written."""
        file_id = remote.add("evil.md", b"PWNED")
        remote.objects[file_id].properties["path"] = bad_path
        remote.add("ok.md", b"fine")

        report = await _engine(remote, vault, state, ledger).run()

        assert not (vault_dir.parent / "escaped.md").exists()
        assert (vault_dir / "ok.md").read_bytes() == b"fine"
        assert [r.path for r in report.errors] == [bad_path]
        assert ledger.get(bad_path).operation == "pull"
        assert state.identity.resolve(file_id) is None
        fetched = [call[1] for call in remote.called("fetch_content")]
        assert file_id not in fetched


# ---------------------------------------------------------------------------
# Remote removals
# ---------------------------------------------------------------------------


class TestRemovals:
    async def test_removed_file_deleted_locally(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        """A change-feed removal deletes the mapped local file."""
        write_file("notes/x.md", b"x")
        remote.add("notes/x.md", b"x", file_id="42")
        state.identity.set("42", "notes/x.md")
        _start_feed(remote, state)
        remote.remote_delete("42")

        report = await _engine(remote, vault, state, ledger).run()

        assert not (vault_dir / "notes" / "x.md").exists()
        assert (vault_dir / "notes").is_dir()
        assert state.identity.resolve("42") is None
        assert [r.path for r in report.deleted_local] == ["notes/x.md"]

    async def test_unknown_removed_id_ignored(
        self, remote, vault, state, ledger
    ):
        _start_feed(remote, state)
        remote.changes.append(RemoteChange(removed=True, file_id="unknown"))

        report = await _engine(remote, vault, state, ledger).run()

        assert report.results == []

    async def test_removed_path_already_gone_clears_delete(
        self, remote, vault, state, ledger
    ):
        state.identity.set("7", "gone.md")
        state.operations.set("gone.md", OperationKind.DELETE)
        _start_feed(remote, state)
        remote.remote_delete("7")

        await _engine(remote, vault, state, ledger).run()

        assert "gone.md" not in state.operations
        assert len(state.identity) == 0

    async def test_modified_file_survives_removal(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        """A pending modify keeps the file and re-queues it as a create."""
        write_file("m.md", b"edited")
        state.identity.set("m1", "m.md")
        state.operations.set("m.md", OperationKind.MODIFY)
        _start_feed(remote, state)
        remote.remote_delete("m1")

        report = await _engine(remote, vault, state, ledger).run()

        assert (vault_dir / "m.md").read_bytes() == b"edited"
        assert state.operations.get("m.md") == OperationKind.CREATE
        assert report.skipped[0].path == "m.md"

    async def test_folder_with_unremoved_child_survives(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file("dir/keep.md", b"keep")
        write_file("dir/gone.md", b"gone")
        state.identity.set("fd", "dir")
        state.identity.set("g", "dir/gone.md")
        state.operations.set("dir/keep.md", OperationKind.CREATE)
        _start_feed(remote, state)
        remote.remote_delete("g")
        remote.remote_delete("fd")

        await _engine(remote, vault, state, ledger).run()

        assert (vault_dir / "dir" / "keep.md").exists()
        assert not (vault_dir / "dir" / "gone.md").exists()
        assert state.operations.get("dir") == OperationKind.CREATE

    async def test_folder_removed_with_all_children(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file("dir/a.md", b"a")
        write_file("dir/.DS_Store", b"")
        state.identity.set("fd", "dir")
        state.identity.set("a", "dir/a.md")
        _start_feed(remote, state)
        remote.remote_delete("a")
        remote.remote_delete("fd")

        report = await _engine(remote, vault, state, ledger).run()

        assert not (vault_dir / "dir").exists()
        assert [r.path for r in report.deleted_local] == ["dir/a.md", "dir"]

    async def test_config_file_removed(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file(".obsidian/app.json", b"{}")
        state.identity.set("cfg", ".obsidian/app.json")
        _start_feed(remote, state)
        remote.remote_delete("cfg")

        report = await _engine(remote, vault, state, ledger).run()

        assert not (vault_dir / ".obsidian" / "app.json").exists()
        assert [r.path for r in report.deleted_local] == [".obsidian/app.json"]

    async def test_nonempty_config_folder_kept(
        self, remote, vault, state, ledger, write_file, vault_dir
    ):
        write_file(".obsidian/themes/dark.css", b"")
        state.identity.set("themes", ".obsidian/themes")
        _start_feed(remote, state)
        remote.remote_delete("themes")

        await _engine(remote, vault, state, ledger).run()

        assert (vault_dir / ".obsidian" / "themes" / "dark.css").exists()


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


async def test_search_failure_raises_pull_error(remote, vault, state, ledger):
    remote.fail["search"] = TransientError("boom", 500)

    with pytest.raises(PullError):
        await _engine(remote, vault, state, ledger).run()


async def test_change_feed_failure_raises_pull_error(
    remote, vault, state, ledger
):
    state.changes_token = "0"
    remote.fail["get_changes"] = TransientError("boom", 500)

    with pytest.raises(PullError):
        await _engine(remote, vault, state, ledger).run()

