"""Tests for SyncSession start/end semantics."""

import os

import pytest
from conftest import STATE_DIR

from vault_sync.core.errors import TransientError
from vault_sync.sync.errors import (
    CursorRefreshError,
    RemoteUnavailableError,
    SyncInProgressError,
)
from vault_sync.sync.session import SyncSession
from vault_sync.sync.state import JsonStateStore


@pytest.fixture
def store(tmp_path):
    return JsonStateStore(tmp_path / "state")


@pytest.fixture
def session(remote, vault, state, ledger, store):
    return SyncSession(
        remote, vault, state, ledger, store, STATE_DIR, clock=lambda: 5000
    )


class TestStart:
    async def test_start_sets_flag(self, session):
        await session.start()
        assert session.syncing

    async def test_overlapping_start_rejected(self, session, remote):
        await session.start()
        with pytest.raises(SyncInProgressError):
            await session.start()

    async def test_unreachable_remote(self, session, remote):
        remote.reachable = False
        with pytest.raises(RemoteUnavailableError):
            await session.start()
        assert not session.syncing


class TestEnd:
    async def test_success_advances_timestamp_and_cursor(
        self, session, state, store, remote
    ):
        remote.remote_delete("whatever")
        await session.start()
        await session.end(True)

        assert state.last_synced_at == 5000
        assert state.changes_token == "1"
        assert not session.syncing
        saved = store.load()
        assert saved.last_synced_at == 5000
        assert saved.changes_token == "1"

    async def test_failure_keeps_timestamp_but_saves(
        self, session, state, store
    ):
        state.last_synced_at = 100
        state.operations.set("a.md", "create")
        await session.start()
        await session.end(False)

        assert state.last_synced_at == 100
        assert not session.syncing
        assert store.load().operations.to_dict() == {"a.md": "create"}

    async def test_cursor_failure_keeps_timestamp(
        self, session, state, store, remote
    ):
        remote.fail["get_changes_start_token"] = TransientError("down", 503)
        await session.start()
        with pytest.raises(CursorRefreshError):
            await session.end(True)

        assert state.last_synced_at == 0
        assert not session.syncing
        assert store.state_path.exists()

    async def test_errors_persisted(self, session, ledger, store):
        ledger.record("a.md", TransientError("boom", 502), "create")
        await session.start()
        await session.end(True)

        assert [r.path for r in store.load_errors()] == ["a.md"]


class TestConfigRetention:
    async def test_changed_config_files_restamped(
        self, session, write_file
    ):
        """Config edits made during the session are still pushed later."""
        path = write_file(".obsidian/app.json", b"{}", mtime=1000)
        await session.start()
        await session.end(True, retain_config_changes=True)

        assert os.stat(path).st_mtime_ns // 1_000_000 == 5001

    async def test_push_does_not_restamp(self, session, write_file):
        path = write_file(".obsidian/app.json", b"{}", mtime=1000)
        await session.start()
        await session.end(True, retain_config_changes=False)

        assert os.stat(path).st_mtime_ns // 1_000_000 == 1000

    async def test_state_folder_not_restamped(self, session, write_file):
        path = write_file(f"{STATE_DIR}/data.json", b"{}", mtime=1000)
        await session.start()
        await session.end(True)

        assert os.stat(path).st_mtime_ns // 1_000_000 == 1000


class TestRunning:
    async def test_body_exception_ends_unsuccessfully(
        self, session, state
    ):
        with pytest.raises(RuntimeError):
            async with session.running():
                raise RuntimeError("engine blew up")

        assert state.last_synced_at == 0
        assert not session.syncing

    async def test_clean_body_advances(self, session, state):
        async with session.running():
            assert session.syncing

        assert state.last_synced_at == 5000
