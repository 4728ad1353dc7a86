"""Shared pytest fixtures for vault-sync tests."""

import itertools
import os
from datetime import datetime, timezone

import pytest
from dotenv import load_dotenv

from vault_sync.config import Config
from vault_sync.core import async_utils
from vault_sync.core.errors import NotFoundError
from vault_sync.core.models import (
    FOLDER_MIME_TYPE,
    BatchDeleteResult,
    ChangePage,
    QueryMatch,
    RemoteChange,
    RemoteFile,
)
from vault_sync.sync.ledger import ErrorLedger
from vault_sync.sync.operations import OperationRecorder
from vault_sync.sync.state import SyncState
from vault_sync.vault.local import LocalVault

load_dotenv()

STATE_DIR = ".obsidian/plugins/vault-sync"
STATE_FILE = f"{STATE_DIR}/data.json"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live remote store",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live remote store"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def _reset_semaphore(monkeypatch):
    """Keep the module-level request semaphore from leaking between tests."""
    monkeypatch.setattr(async_utils, "_semaphore", None)


# ---------------------------------------------------------------------------
# In-memory remote store
# ---------------------------------------------------------------------------


class FakeDriveClient:
    """In-memory stand-in for ``DriveClient``.

    Objects live in ``objects`` (id -> RemoteFile) with their bytes in
    ``contents`` and parent IDs in ``parents``.  Every removal is appended
    to ``changes``; the change cursor is simply an index into that list.

    Failure injection:
        fail: method name -> exception raised on every call.
        fail_upload: file name -> exception raised by ``upload_file``.
        fail_delete: object ID -> HTTP status reported by ``batch_delete``.
    """

    def __init__(self, vault_name: str = "Notes") -> None:
        self.vault_name = vault_name
        self.objects: dict[str, RemoteFile] = {}
        self.contents: dict[str, bytes] = {}
        self.parents: dict[str, str | None] = {}
        self.changes: list[RemoteChange] = []
        self.calls: list[tuple] = []
        self.reachable = True
        self.fail: dict[str, Exception] = {}
        self.fail_upload: dict[str, Exception] = {}
        self.fail_delete: dict[str, int] = {}
        self._ids = itertools.count(1)
        self._root_id: str | None = None

    # -- helpers --------------------------------------------------------

    def _enter(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self.fail:
            raise self.fail[method]

    def called(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def _new_id(self) -> str:
        return f"id{next(self._ids)}"

    def _store(
        self,
        file_id: str,
        name: str,
        parent_id: str | None,
        properties: dict[str, str],
        folder: bool,
        modified: datetime | None,
        content: bytes = b"",
    ) -> str:
        self.objects[file_id] = RemoteFile(
            id=file_id,
            name=name,
            mime_type=FOLDER_MIME_TYPE if folder else "text/markdown",
            properties={"vault": self.vault_name, **properties},
            modified_time=modified or datetime.now(timezone.utc),
        )
        self.parents[file_id] = parent_id
        if not folder:
            self.contents[file_id] = content
        return file_id

    def by_path(self, path: str) -> RemoteFile | None:
        for record in self.objects.values():
            if record.path == path:
                return record
        return None

    def content_of(self, path: str) -> bytes | None:
        record = self.by_path(path)
        return None if record is None else self.contents.get(record.id)

    def add(
        self,
        path: str,
        content: bytes = b"",
        folder: bool = False,
        modified: datetime | None = None,
        config: bool = False,
        file_id: str | None = None,
    ) -> str:
        """Place an object at *path* as if another device had pushed it."""
        parent_path, _, name = path.rpartition("/")
        parent = self.by_path(parent_path) if parent_path else None
        properties = {"path": path}
        if config:
            properties["config"] = "true"
        return self._store(
            file_id or self._new_id(),
            name,
            parent.id if parent else self.get_root_folder_id(),
            properties,
            folder,
            modified,
            content,
        )

    def remote_delete(self, file_id: str) -> None:
        """Remove an object as if another device had deleted it."""
        self.objects.pop(file_id, None)
        self.contents.pop(file_id, None)
        self.changes.append(RemoteChange(removed=True, file_id=file_id))

    def _matches(self, file_id: str, match: QueryMatch) -> bool:
        record = self.objects[file_id]
        checks = [
            match.name is None or record.name == match.name,
            match.name_contains is None or match.name_contains in record.name,
            match.mime_type is None or record.mime_type == match.mime_type,
            match.not_mime_type is None
            or record.mime_type != match.not_mime_type,
            match.parent is None or self.parents.get(file_id) == match.parent,
            match.starred is None or record.starred == match.starred,
            all(
                record.properties.get(k) == v
                for k, v in match.properties.items()
            ),
            match.modified_after is None
            or record.modified_time > match.modified_after,
            match.modified_before is None
            or record.modified_time < match.modified_before,
        ]
        return all(checks)

    # -- DriveClient surface --------------------------------------------

    def check_connection(self) -> bool:
        self._enter("check_connection")
        return self.reachable

    def search(
        self,
        matches=None,
        include=(),
        order="descending",
        include_root=False,
    ) -> list[RemoteFile]:
        self._enter("search", matches)
        found = [
            self.objects[file_id]
            for file_id in self.objects
            if not matches
            or any(self._matches(file_id, m) for m in matches)
        ]
        if include_root:
            return found
        return [f for f in found if not f.is_vault_root]

    def get_root_folder_id(self) -> str:
        self._enter("get_root_folder_id")
        if self._root_id is None:
            self._root_id = self._store(
                "root",
                self.vault_name,
                None,
                {"vault_root": "true"},
                True,
                None,
            )
        return self._root_id

    def find_folder(self, name: str, parent_id: str) -> str | None:
        self._enter("find_folder", name, parent_id)
        for file_id, record in self.objects.items():
            if (
                record.is_folder
                and record.name == name
                and self.parents.get(file_id) == parent_id
            ):
                return file_id
        return None

    def create_folder(
        self, name, parent_id=None, properties=None, modified_time=None
    ) -> str:
        self._enter("create_folder", name, parent_id)
        return self._store(
            self._new_id(),
            name,
            parent_id or self.get_root_folder_id(),
            dict(properties or {}),
            True,
            modified_time,
        )

    def upload_file(self, content, name, parent_id=None, metadata=None) -> str:
        self._enter("upload_file", name, parent_id)
        if name in self.fail_upload:
            raise self.fail_upload[name]
        metadata = metadata or {}
        return self._store(
            self._new_id(),
            name,
            parent_id or self.get_root_folder_id(),
            dict(metadata.get("properties") or {}),
            False,
            metadata.get("modifiedTime"),
            content,
        )

    def update_file(self, file_id, content, metadata=None) -> str:
        self._enter("update_file", file_id)
        if file_id not in self.objects:
            raise NotFoundError(f"File not found: {file_id}", 404)
        metadata = metadata or {}
        record = self.objects[file_id]
        self.objects[file_id] = record.model_copy(
            update={
                "modified_time": metadata.get("modifiedTime")
                or datetime.now(timezone.utc)
            }
        )
        self.contents[file_id] = content
        return file_id

    def batch_delete(self, ids) -> BatchDeleteResult:
        ids = list(ids)
        self._enter("batch_delete", ids)
        succeeded: list[str] = []
        failed: dict[str, int] = {}
        for file_id in ids:
            if file_id in self.fail_delete:
                failed[file_id] = self.fail_delete[file_id]
                continue
            if file_id in self.objects:
                self.remote_delete(file_id)
            succeeded.append(file_id)
        return BatchDeleteResult(succeeded=succeeded, failed=failed)

    def fetch_content(self, file_id: str) -> bytes:
        self._enter("fetch_content", file_id)
        if file_id not in self.contents:
            raise NotFoundError(f"File not found: {file_id}", 404)
        return self.contents[file_id]

    def get_file_metadata(self, file_id: str) -> RemoteFile:
        self._enter("get_file_metadata", file_id)
        if file_id not in self.objects:
            raise NotFoundError(f"File not found: {file_id}", 404)
        return self.objects[file_id]

    def get_changes_start_token(self) -> str:
        self._enter("get_changes_start_token")
        return str(len(self.changes))

    def get_changes(self, start_token) -> ChangePage:
        self._enter("get_changes", start_token)
        if not start_token:
            return ChangePage()
        return ChangePage(
            changes=self.changes[int(start_token) :],
            new_start_token=str(len(self.changes)),
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def remote():
    """Empty in-memory remote store."""
    return FakeDriveClient()


@pytest.fixture
def vault_dir(tmp_path):
    """Vault directory with an empty config folder."""
    root = tmp_path / "Notes"
    (root / ".obsidian").mkdir(parents=True)
    return root


@pytest.fixture
def write_file(vault_dir):
    """Factory writing a vault-relative file, creating parent folders."""

    def _write(rel: str, content: bytes = b"", mtime: int | None = None):
        path = vault_dir.joinpath(*rel.split("/"))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if mtime is not None:
            os.utime(path, ns=(mtime * 1_000_000, mtime * 1_000_000))
        return path

    return _write


@pytest.fixture
def state():
    return SyncState()


@pytest.fixture
def ledger():
    return ErrorLedger()


@pytest.fixture
def vault(vault_dir, state):
    """Local vault wired to the state's operation log, hard deletes."""
    recorder = OperationRecorder(state.operations)
    return LocalVault(vault_dir, ".obsidian", recorder, "none")


@pytest.fixture
def config(vault_dir):
    """Config pointing at the test vault."""
    return Config(
        server_url="https://tokens.example.com",
        refresh_token="test-refresh-token",
        vault_path=str(vault_dir),
        vault_name="Notes",
        trash_option="none",
    )
