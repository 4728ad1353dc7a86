"""Ship pending local operations to the remote store.

``PushEngine.run`` drains a snapshot of the operation log in a fixed order:

1. Partition operations into deletes, creates and modifies.
2. Add remote config objects whose local file is gone to the deletes.
3. Deletes, deepest first and files before folders at equal depth, in one
   batch request.  Identity entries (and, for folders, every descendant
   identity and operation entry) are purged for deleted objects.
4. Creates: folders through ``FolderHierarchySync`` first, then file
   uploads in bounded groups.  Files whose parent has no remote ID go under
   the vault root.
5. Modifies in bounded groups.  A 404 means the remote object vanished: the
   operation becomes a create and the stale identity entry is dropped.
6. Changed config files, anchored under the vault root.
7. The engine's own state document, recreated if it was deleted remotely.
8. Operations that succeeded are cleared; failures stay queued.

A missing vault root or a failed batch-delete request aborts the push.
Every other failure is recorded in the error ledger and retried on the next
push.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from ..core.async_utils import run_in_batches, run_sync, run_sync_limited
from ..core.client import DriveClient
from ..core.errors import NotFoundError, RemoteError
from ..core.models import QueryMatch, RemoteFile
from ..vault.configfiles import config_files_to_sync
from ..vault.entries import (
    VaultFile,
    VaultFolder,
    base_name,
    depth,
    is_safe_path,
    parent_path,
)
from ..vault.local import LocalVault
from .errors import BatchDeleteError, SyncError
from .folders import FolderHierarchySync, find_by_paths
from .identity import IdentityMap, is_within
from .ledger import ErrorLedger, now_ms
from .models import OperationKind, SyncAction, SyncReport, SyncResult
from .operations import OperationLog
from .state import SyncState

logger = logging.getLogger(__name__)


def ancestors(path: str) -> list[str]:
    """Every ancestor folder of *path*, shallowest first."""
    parts = path.split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


class PushEngine:
    """Push the operation log of *state* to the remote store.

    Args:
        client: Remote store client.
        vault: Local vault.
        state: Sync state; its operation log and identity map are mutated.
        ledger: Error ledger for per-item failures.
        state_dir: Vault-relative folder of the engine's own state, excluded
            from config file sync.
        state_file: Vault-relative path the state document is pushed to.
        batch_size: Fixed group size for uploads; adaptive when None.
        clock: Epoch-millisecond clock stamped on uploaded objects.
    """

    def __init__(
        self,
        client: DriveClient,
        vault: LocalVault,
        state: SyncState,
        ledger: ErrorLedger,
        state_dir: str,
        state_file: str,
        batch_size: int | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.client = client
        self.vault = vault
        self.state = state
        self.ledger = ledger
        self.state_dir = state_dir
        self.state_file = state_file
        self.batch_size = batch_size
        self._clock = clock
        self.folders = FolderHierarchySync(client, state.identity, ledger)

    @property
    def operations(self) -> OperationLog:
        return self.state.operations

    @property
    def identity(self) -> IdentityMap:
        return self.state.identity

    def _metadata(self, extra: dict[str, str] | None = None) -> dict:
        return {
            "properties": dict(extra or {}),
            "modifiedTime": datetime.fromtimestamp(
                self._clock() / 1000, tz=timezone.utc
            ),
        }

    async def run(self) -> SyncReport:
        """Execute one push.

        Raises:
            VaultRootError: If the vault root cannot be resolved.
            BatchDeleteError: If the batch-delete request fails.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        results: list[SyncResult] = []

        root_id = await self.folders.resolve_root()

        snapshot = self.operations.snapshot()
        deletes = sorted(
            p for p, k in snapshot.items() if k == OperationKind.DELETE
        )
        creates = sorted(
            p for p, k in snapshot.items() if k == OperationKind.CREATE
        )
        modifies = sorted(
            p for p, k in snapshot.items() if k == OperationKind.MODIFY
        )
        logger.info(
            "Pushing %d deletes, %d creates, %d modifies",
            len(deletes),
            len(creates),
            len(modifies),
        )

        drift = await self._config_drift(set(deletes))
        if deletes or drift:
            results.extend(await self._push_deletes(deletes, drift))

        succeeded: set[str] = set()
        if creates:
            results.extend(
                await self._push_creates(creates, root_id, succeeded)
            )
        if modifies:
            results.extend(await self._push_modifies(modifies, succeeded))

        results.extend(await self._push_config_files(root_id))
        await self._push_state_document(root_id)

        for path in succeeded:
            if self.operations.get(path) == snapshot.get(path):
                self.operations.remove(path)

        return SyncReport(
            operation="push",
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def _config_drift(self, queued: set[str]) -> dict[str, RemoteFile]:
        """Remote config objects with no local counterpart, keyed by path."""
        try:
            remote = await run_sync_limited(
                self.client.search,
                [QueryMatch(properties={"config": "true"})],
                ("id", "mimeType", "properties"),
            )
        except RemoteError as exc:
            logger.warning("Skipping config cleanup, search failed: %s", exc)
            return {}

        drift: dict[str, RemoteFile] = {}
        for record in remote:
            path = record.path
            if not is_safe_path(path) or path in queued:
                continue
            if is_within(path, self.state_dir) or is_within(self.state_dir, path):
                continue
            if not await run_sync(self.vault.exists, path):
                drift[path] = record
        if drift:
            logger.info("Removing %d config objects deleted locally", len(drift))
        return drift

    async def _folder_deletes(
        self, deletes: list[str], drift: dict[str, RemoteFile]
    ) -> set[str]:
        """Which deleted paths are folders, by their remote record.

        Paths with tracked or queued descendants are folders without asking.
        The rest are looked up on the remote store; if that lookup fails
        they are treated as files, which only affects tie-break order.
        """
        queued = self.operations.snapshot()
        folders = {p for p, r in drift.items() if r.is_folder}
        unknown: list[str] = []
        for path in deletes:
            if self.identity.has_descendants(path) or any(
                q != path and is_within(q, path) for q in queued
            ):
                folders.add(path)
            elif self.identity.resolve_reverse(path) is not None:
                unknown.append(path)
        if unknown:
            try:
                records = await find_by_paths(self.client, unknown)
            except RemoteError as exc:
                logger.warning("Could not look up deleted paths: %s", exc)
            else:
                folders.update(p for p, r in records.items() if r.is_folder)
        return folders

    @staticmethod
    def _delete_order(paths: list[str], folders: set[str]) -> list[str]:
        """Deepest first, files before folders at equal depth."""
        return sorted(
            sorted(paths, reverse=True),
            key=lambda p: (-depth(p), 1 if p in folders else 0),
        )

    def _purge(self, path: str, folder: bool) -> None:
        self.identity.remove_by_path(path)
        if folder:
            self.identity.remove_subtree(path)
            self.operations.remove_subtree(path)
        self.operations.remove(path)
        self.ledger.clear(path)

    async def _push_deletes(
        self, deletes: list[str], drift: dict[str, RemoteFile]
    ) -> list[SyncResult]:
        results: list[SyncResult] = []
        folders = await self._folder_deletes(deletes, drift)
        ordered = self._delete_order(deletes + list(drift), folders)

        id_to_path: dict[str, str] = {}
        for path in ordered:
            file_id = self.identity.resolve_reverse(path)
            if file_id is None and path in drift:
                file_id = drift[path].id
            if file_id is None:
                # Never reached the remote store, nothing to delete there
                self._purge(path, path in folders)
                results.append(
                    SyncResult(
                        path=path,
                        action=SyncAction.SKIP,
                        detail="no remote ID",
                    )
                )
                continue
            id_to_path[file_id] = path

        if not id_to_path:
            return results

        try:
            outcome = await run_sync_limited(
                self.client.batch_delete, list(id_to_path)
            )
        except Exception as exc:
            raise BatchDeleteError(f"Batch delete failed: {exc}") from exc

        for file_id in outcome.succeeded:
            path = id_to_path[file_id]
            self._purge(path, path in folders)
            results.append(
                SyncResult(path=path, action=SyncAction.DELETE_REMOTE)
            )
        for file_id, status in outcome.failed.items():
            path = id_to_path[file_id]
            error = RemoteError(
                f"delete of {path} failed with HTTP {status}", status or None
            )
            self.ledger.record(path, error, "delete")
            results.append(
                SyncResult(
                    path=path,
                    action=SyncAction.DELETE_REMOTE,
                    success=False,
                    error=str(error),
                )
            )
        return results

    # ------------------------------------------------------------------
    # Creates and modifies
    # ------------------------------------------------------------------

    async def _push_creates(
        self, creates: list[str], root_id: str, succeeded: set[str]
    ) -> list[SyncResult]:
        results: list[SyncResult] = []
        folders: list[str] = []
        files: list[VaultFile] = []
        for path in creates:
            entry = await run_sync(self.vault.get_entry, path)
            match entry:
                case VaultFolder():
                    folders.append(path)
                case VaultFile():
                    files.append(entry)
                case None:
                    self.operations.remove(path)
                    results.append(
                        SyncResult(
                            path=path,
                            action=SyncAction.SKIP,
                            detail="no longer exists locally",
                        )
                    )

        if folders:
            outcome = await self.folders.sync(folders, root_id)
            for path in folders:
                error = outcome.errors.get(path)
                if error is None:
                    succeeded.add(path)
                results.append(
                    SyncResult(
                        path=path,
                        action=SyncAction.CREATE_REMOTE,
                        success=error is None,
                        error=error,
                    )
                )

        results.extend(
            await run_in_batches(
                [self._upload_factory(f, root_id, succeeded) for f in files],
                self.batch_size,
            )
        )
        return results

    def _parent_id(self, path: str, root_id: str) -> str:
        parent = parent_path(path)
        if not parent:
            return root_id
        parent_id = self.identity.resolve_reverse(parent)
        if parent_id is None:
            logger.warning(
                "Parent folder %s of %s has no remote ID, using vault root",
                parent,
                path,
            )
            return root_id
        return parent_id

    def _upload_factory(
        self, entry: VaultFile, root_id: str, succeeded: set[str]
    ) -> Callable[[], Awaitable[SyncResult]]:
        async def upload() -> SyncResult:
            path = entry.path
            try:
                content = await run_sync(self.vault.read_bytes, path)
                file_id = await run_sync_limited(
                    self.client.upload_file,
                    content,
                    base_name(path),
                    self._parent_id(path, root_id),
                    self._metadata({"path": path}),
                )
            except Exception as exc:
                self.ledger.record(path, exc, "create")
                return SyncResult(
                    path=path,
                    action=SyncAction.CREATE_REMOTE,
                    success=False,
                    error=str(exc),
                )
            self.identity.set(file_id, path)
            self.ledger.clear(path)
            succeeded.add(path)
            return SyncResult(
                path=path, action=SyncAction.CREATE_REMOTE, detail=file_id
            )

        return upload

    async def _push_modifies(
        self, modifies: list[str], succeeded: set[str]
    ) -> list[SyncResult]:
        results: list[SyncResult] = []
        factories = []
        for path in modifies:
            entry = await run_sync(self.vault.get_entry, path)
            if not isinstance(entry, VaultFile):
                self.operations.remove(path)
                results.append(
                    SyncResult(
                        path=path,
                        action=SyncAction.SKIP,
                        detail="no longer exists locally",
                    )
                )
                continue
            factories.append(self._update_factory(path, succeeded))
        results.extend(await run_in_batches(factories, self.batch_size))
        return results

    def _update_factory(
        self, path: str, succeeded: set[str]
    ) -> Callable[[], Awaitable[SyncResult]]:
        async def update() -> SyncResult:
            file_id = self.identity.resolve_reverse(path)
            try:
                if file_id is None:
                    raise SyncError(f"No remote ID for modified file {path}")
                content = await run_sync(self.vault.read_bytes, path)
                new_id = await run_sync_limited(
                    self.client.update_file,
                    file_id,
                    content,
                    self._metadata(),
                )
            except NotFoundError:
                self.operations.set(path, OperationKind.CREATE)
                self.identity.remove(file_id)
                logger.info(
                    "Remote copy of %s is gone, queued as create", path
                )
                return SyncResult(
                    path=path,
                    action=SyncAction.REQUEUE,
                    detail="remote object not found",
                )
            except Exception as exc:
                self.ledger.record(path, exc, "modify")
                return SyncResult(
                    path=path,
                    action=SyncAction.UPDATE_REMOTE,
                    success=False,
                    error=str(exc),
                )
            self.identity.set(new_id, path)
            self.ledger.clear(path)
            succeeded.add(path)
            return SyncResult(path=path, action=SyncAction.UPDATE_REMOTE)

        return update

    # ------------------------------------------------------------------
    # Config files and state document
    # ------------------------------------------------------------------

    async def _upsert(
        self,
        path: str,
        content: bytes,
        root_id: str,
        properties: dict[str, str],
    ) -> str:
        """Update *path* in place, or upload it if it has no live remote copy."""
        file_id = self.identity.resolve_reverse(path)
        if file_id is not None:
            try:
                return await run_sync_limited(
                    self.client.update_file,
                    file_id,
                    content,
                    self._metadata(),
                )
            except NotFoundError:
                self.identity.remove(file_id)
        new_id = await run_sync_limited(
            self.client.upload_file,
            content,
            base_name(path),
            self._parent_id(path, root_id),
            self._metadata({**properties, "path": path}),
        )
        self.identity.set(new_id, path)
        return new_id

    async def _push_config_files(self, root_id: str) -> list[SyncResult]:
        changed = await run_sync(
            config_files_to_sync,
            self.vault,
            self.state.last_synced_at,
            [self.state_dir],
        )
        needed = {
            folder
            for path in [*changed, self.state_file]
            for folder in ancestors(path)
            if self.identity.resolve_reverse(folder) is None
        }
        if needed:
            await self.folders.sync(needed, root_id, {"config": "true"})
        if not changed:
            return []
        logger.info("Pushing %d config files", len(changed))

        def factory(path: str) -> Callable[[], Awaitable[SyncResult]]:
            async def push_one() -> SyncResult:
                try:
                    content = await run_sync(self.vault.read_bytes, path)
                    await self._upsert(
                        path, content, root_id, {"config": "true"}
                    )
                except Exception as exc:
                    self.ledger.record(path, exc, "config")
                    return SyncResult(
                        path=path,
                        action=SyncAction.UPDATE_REMOTE,
                        success=False,
                        error=str(exc),
                    )
                self.ledger.clear(path)
                return SyncResult(path=path, action=SyncAction.UPDATE_REMOTE)

            return push_one

        return await run_in_batches(
            [factory(p) for p in changed], self.batch_size
        )

    async def _push_state_document(self, root_id: str) -> None:
        content = json.dumps(self.state.to_dict(), indent=2).encode("utf-8")
        try:
            await self._upsert(
                self.state_file, content, root_id, {"config": "true"}
            )
        except Exception as exc:
            self.ledger.record(self.state_file, exc, "settings")
        else:
            self.ledger.clear(self.state_file)
