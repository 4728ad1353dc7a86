"""Discard local changes and make the vault match the remote store.

``ResetEngine.run`` pulls first, then walks the operation log:

* pending creates are deleted locally (outermost entries only, a folder
  takes its children with it);
* pending modifies are overwritten with the remote content;
* pending deletes are restored from the remote store, folders first and
  shallow to deep, then files.  A deleted folder brings back every tracked
  path under it, since only the outermost path of a removed subtree is
  queued.

The operation log is emptied afterwards whatever happened to individual
paths: a leftover entry would push the discarded local change on the next
push.  Per-path failures are recorded in the error ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from ..core.async_utils import run_in_batches, run_sync, run_sync_limited
from ..core.client import DriveClient
from ..core.models import RemoteFile
from ..vault.entries import depth
from ..vault.local import LocalVault
from .errors import SyncError
from .folders import find_by_paths
from .identity import is_within
from .ledger import ErrorLedger
from .models import OperationKind, SyncAction, SyncReport, SyncResult
from .pull import PullEngine
from .state import SyncState

logger = logging.getLogger(__name__)


class ResetEngine:
    """Reset the vault of *state* to the remote version.

    Args:
        client: Remote store client.
        vault: Local vault.
        state: Sync state; the operation log is cleared.
        ledger: Error ledger for per-path failures.
        state_dir: Vault-relative folder of the engine's own state.
        batch_size: Fixed group size for downloads; adaptive when None.
    """

    def __init__(
        self,
        client: DriveClient,
        vault: LocalVault,
        state: SyncState,
        ledger: ErrorLedger,
        state_dir: str = "",
        batch_size: int | None = None,
    ) -> None:
        self.client = client
        self.vault = vault
        self.state = state
        self.ledger = ledger
        self.state_dir = state_dir
        self.batch_size = batch_size

    async def run(self) -> SyncReport:
        """Execute one reset.

        Raises:
            PullError: If the preliminary pull cannot fetch remote changes.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        pulled = await PullEngine(
            self.client,
            self.vault,
            self.state,
            self.ledger,
            self.state_dir,
            batch_size=self.batch_size,
        ).run()
        results = list(pulled.results)

        snapshot = self.state.operations.snapshot()
        creates = sorted(
            p for p, k in snapshot.items() if k == OperationKind.CREATE
        )
        modifies = sorted(
            p for p, k in snapshot.items() if k == OperationKind.MODIFY
        )
        deletes = self._with_tracked_descendants(
            [p for p, k in snapshot.items() if k == OperationKind.DELETE]
        )
        logger.info(
            "Resetting %d creates, %d modifies, %d deletes",
            len(creates),
            len(modifies),
            len(deletes),
        )

        results.extend(await self._discard_creates(creates))
        results.extend(
            await run_in_batches(
                [self._overwrite_factory(p) for p in modifies],
                self.batch_size,
            )
        )
        if deletes:
            results.extend(await self._restore_deletes(deletes))

        self.state.operations.clear()
        return SyncReport(
            operation="reset",
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    def _with_tracked_descendants(self, deletes: list[str]) -> list[str]:
        paths = set(deletes)
        for _, tracked in self.state.identity.items():
            if any(is_within(tracked, p) for p in deletes):
                paths.add(tracked)
        return sorted(paths)

    async def _discard_creates(self, creates: list[str]) -> list[SyncResult]:
        results: list[SyncResult] = []
        removed: list[str] = []
        for path in sorted(creates, key=lambda p: (depth(p), p)):
            if any(is_within(path, parent) for parent in removed):
                continue
            try:
                await run_sync(self.vault.delete_local, path)
            except OSError as exc:
                self.ledger.record(path, exc, "reset")
                results.append(
                    SyncResult(
                        path=path,
                        action=SyncAction.DELETE_LOCAL,
                        success=False,
                        error=str(exc),
                    )
                )
                continue
            removed.append(path)
            results.append(SyncResult(path=path, action=SyncAction.DELETE_LOCAL))
        return results

    def _overwrite_factory(self, path: str) -> Callable[[], Awaitable[SyncResult]]:
        async def overwrite() -> SyncResult:
            file_id = self.state.identity.resolve_reverse(path)
            try:
                if file_id is None:
                    raise SyncError(f"No remote ID for modified file {path}")
                content = await run_sync_limited(
                    self.client.fetch_content, file_id
                )
                metadata = await run_sync_limited(
                    self.client.get_file_metadata, file_id
                )
                await run_sync(
                    self.vault.write_local,
                    path,
                    content,
                    metadata.modified_ms(),
                )
            except Exception as exc:
                self.ledger.record(path, exc, "reset")
                return SyncResult(
                    path=path,
                    action=SyncAction.UPDATE_LOCAL,
                    success=False,
                    error=str(exc),
                )
            self.ledger.clear(path)
            return SyncResult(path=path, action=SyncAction.UPDATE_LOCAL)

        return overwrite

    async def _restore_deletes(self, deletes: list[str]) -> list[SyncResult]:
        results: list[SyncResult] = []
        try:
            remote = await find_by_paths(self.client, deletes)
        except Exception as exc:
            for path in deletes:
                self.ledger.record(path, exc, "reset")
            return [
                SyncResult(
                    path=path,
                    action=SyncAction.CREATE_LOCAL,
                    success=False,
                    error=str(exc),
                )
                for path in deletes
            ]

        missing = [p for p in deletes if p not in remote]
        for path in missing:
            logger.warning("Cannot restore %s, no remote copy", path)
            results.append(
                SyncResult(
                    path=path,
                    action=SyncAction.SKIP,
                    detail="no remote copy",
                )
            )

        folders = sorted(
            (p for p in deletes if p in remote and remote[p].is_folder),
            key=lambda p: (depth(p), p),
        )
        for path in folders:
            try:
                await run_sync(self.vault.create_folder_local, path)
            except OSError as exc:
                self.ledger.record(path, exc, "reset")
                results.append(
                    SyncResult(
                        path=path,
                        action=SyncAction.CREATE_LOCAL,
                        success=False,
                        error=str(exc),
                    )
                )
                continue
            self.state.identity.set(remote[path].id, path)
            results.append(SyncResult(path=path, action=SyncAction.CREATE_LOCAL))

        files = [
            remote[p] for p in deletes if p in remote and not remote[p].is_folder
        ]
        results.extend(
            await run_in_batches(
                [self._restore_factory(r) for r in files], self.batch_size
            )
        )
        return results

    def _restore_factory(
        self, record: RemoteFile
    ) -> Callable[[], Awaitable[SyncResult]]:
        async def restore() -> SyncResult:
            path = record.path
            try:
                content = await run_sync_limited(
                    self.client.fetch_content, record.id
                )
                await run_sync(
                    self.vault.write_local, path, content, record.modified_ms()
                )
            except Exception as exc:
                self.ledger.record(path, exc, "reset")
                return SyncResult(
                    path=path,
                    action=SyncAction.CREATE_LOCAL,
                    success=False,
                    error=str(exc),
                )
            self.state.identity.set(record.id, path)
            self.ledger.clear(path)
            return SyncResult(path=path, action=SyncAction.CREATE_LOCAL)

        return restore
