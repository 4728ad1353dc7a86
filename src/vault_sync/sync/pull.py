"""Bring remote changes into the local vault.

``PullEngine.run`` reads two signals from the remote store:

* objects modified after the last-synced timestamp (what to write), and
* the change feed since the stored cursor (what was removed).

Removals are applied first, deepest first.  A file with a pending local
modify survives its remote removal (and is queued as a create if it no
longer has a remote ID); a folder is removed only when every child is
removed with it, otherwise it is queued as a create.  Config-scoped
removals are handled last with the vault's trash option.

Modified objects are then reconciled against the operation log:

* folder -> created locally if missing, pending op dropped;
* file with a pending modify -> conflict check, local always wins;
* file with a pending create -> the remote copy exists, op becomes modify;
* file with a pending delete -> skipped, the local delete wins;
* anything else -> downloaded and written with the remote modified time.

Identity entries are only added after the matching local action succeeds.
A failed query or change-feed fetch aborts the pull; per-file failures are
recorded and left for the next pull.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from ..core.async_utils import run_in_batches, run_sync, run_sync_limited
from ..core.client import DEFAULT_FIELDS, DriveClient
from ..core.models import ChangePage, QueryMatch, RemoteFile
from ..vault.entries import (
    UnsafePathError,
    VaultEntry,
    VaultFile,
    VaultFolder,
    base_name,
    depth,
    is_safe_path,
)
from ..vault.local import LocalVault
from .conflict import ConflictDetector
from .errors import PullError
from .identity import is_within
from .ledger import ErrorLedger
from .models import OperationKind, SyncAction, SyncReport, SyncResult
from .operations import IGNORED_NAMES
from .state import SyncState

logger = logging.getLogger(__name__)


class PullEngine:
    """Apply remote changes to the vault of *state*.

    Args:
        client: Remote store client.
        vault: Local vault.
        state: Sync state; operation log and identity map are mutated.
        ledger: Error ledger for per-file failures.
        state_dir: Vault-relative folder of the engine's own state; remote
            copies under it are never written locally.
        conflicts: Conflict detector; one is built when omitted.
        batch_size: Fixed group size for downloads; adaptive when None.
    """

    def __init__(
        self,
        client: DriveClient,
        vault: LocalVault,
        state: SyncState,
        ledger: ErrorLedger,
        state_dir: str = "",
        conflicts: ConflictDetector | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.client = client
        self.vault = vault
        self.state = state
        self.ledger = ledger
        self.state_dir = state_dir
        self.conflicts = conflicts or ConflictDetector(client, vault)
        self.batch_size = batch_size

    async def run(self) -> SyncReport:
        """Execute one pull.

        Raises:
            PullError: If the modified-since query or the change feed fails.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        modified, page = await self._fetch()
        modified, results = self._reject_unsafe(modified)

        removed, config_removed = await self._collect_removals(page)
        if removed:
            results.extend(await self._apply_removals(removed))

        folders = sorted(
            (r for r in modified if r.is_folder),
            key=lambda r: (depth(r.path), r.path),
        )
        for record in folders:
            results.append(await self._pull_folder(record))

        files = [r for r in modified if not r.is_folder]
        results.extend(
            await run_in_batches(
                [self._file_factory(r) for r in files], self.batch_size
            )
        )

        if config_removed:
            results.extend(await self._apply_config_removals(config_removed))

        logger.info(
            "Pull done: %d modified remotely, %d removed remotely",
            len(modified),
            len(removed) + len(config_removed),
        )
        return SyncReport(
            operation="pull",
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    def _in_state_dir(self, path: str) -> bool:
        return bool(self.state_dir) and is_within(path, self.state_dir)

    def _reject_unsafe(
        self, records: list[RemoteFile]
    ) -> tuple[list[RemoteFile], list[SyncResult]]:
        """Drop records whose path would land outside the vault."""
        kept: list[RemoteFile] = []
        rejected: list[SyncResult] = []
        for record in records:
            if is_safe_path(record.path):
                kept.append(record)
                continue
            error = UnsafePathError(
                f"Remote object {record.id} has unsafe path {record.path!r}"
            )
            self.ledger.record(record.path, error, "pull")
            rejected.append(
                SyncResult(
                    path=record.path,
                    action=SyncAction.SKIP,
                    success=False,
                    error=str(error),
                )
            )
        return kept, rejected

    async def _fetch(self) -> tuple[list[RemoteFile], ChangePage]:
        since = datetime.fromtimestamp(
            self.state.last_synced_at / 1000, tz=timezone.utc
        )
        try:
            records = await run_sync_limited(
                self.client.search,
                [QueryMatch(modified_after=since)],
                DEFAULT_FIELDS,
            )
            page = await run_sync_limited(
                self.client.get_changes, self.state.changes_token
            )
        except Exception as exc:
            raise PullError(f"Could not fetch remote changes: {exc}") from exc

        modified = [
            r for r in records if r.path and not self._in_state_dir(r.path)
        ]
        return modified, page

    # ------------------------------------------------------------------
    # Removals
    # ------------------------------------------------------------------

    async def _collect_removals(
        self, page: ChangePage
    ) -> tuple[dict[str, VaultEntry], list[str]]:
        """Resolve removed IDs to local entries.

        Returns:
            Vault entries to remove, keyed by path, and config-scoped paths
            removed remotely.
        """
        removed: dict[str, VaultEntry] = {}
        config_removed: list[str] = []
        for file_id in page.removed_ids:
            path = self.state.identity.resolve(file_id)
            if path is None:
                continue
            self.state.identity.remove(file_id)
            entry = await run_sync(self.vault.get_entry, path)
            if entry is None:
                if self.state.operations.get(path) == OperationKind.DELETE:
                    self.state.operations.remove(path)
                continue
            if self.vault.is_config_path(path):
                config_removed.append(path)
            else:
                removed[path] = entry
        return removed, config_removed

    def _survivors(self, removed: dict[str, VaultEntry]) -> set[str]:
        """Paths in *removed* that must be kept, updating their ops."""
        keep: set[str] = set()
        for path, entry in removed.items():
            if (
                isinstance(entry, VaultFile)
                and self.state.operations.get(path) == OperationKind.MODIFY
            ):
                keep.add(path)
                if self.state.identity.resolve_reverse(path) is None:
                    self.state.operations.set(path, OperationKind.CREATE)

        folders = sorted(
            (p for p, e in removed.items() if isinstance(e, VaultFolder)),
            key=lambda p: -depth(p),
        )
        for folder in folders:
            if self.state.identity.resolve_reverse(folder) is not None:
                keep.add(folder)
                continue
            children = [
                c
                for c in self.vault.list_children(folder)
                if base_name(c) not in IGNORED_NAMES
            ]
            if any(c not in removed or c in keep for c in children):
                keep.add(folder)
                self.state.operations.set(folder, OperationKind.CREATE)
        return keep

    async def _apply_removals(
        self, removed: dict[str, VaultEntry]
    ) -> list[SyncResult]:
        keep = self._survivors(removed)
        doomed = [p for p in removed if p not in keep]

        def order(path: str) -> tuple[int, int, str]:
            folder = isinstance(removed[path], VaultFolder)
            return (-depth(path), 1 if folder else 0, path)

        results: list[SyncResult] = []
        for path in sorted(doomed, key=order):
            try:
                await run_sync(self.vault.delete_local, path)
            except OSError as exc:
                self.ledger.record(path, exc, "pull")
                results.append(
                    SyncResult(
                        path=path,
                        action=SyncAction.DELETE_LOCAL,
                        success=False,
                        error=str(exc),
                    )
                )
                continue
            if isinstance(removed[path], VaultFolder):
                self.state.identity.remove_subtree(path)
                self.state.operations.remove_subtree(path)
            results.append(SyncResult(path=path, action=SyncAction.DELETE_LOCAL))
        for path in sorted(keep):
            results.append(
                SyncResult(
                    path=path,
                    action=SyncAction.SKIP,
                    detail="kept, local changes pending",
                )
            )
        return results

    async def _apply_config_removals(self, paths: list[str]) -> list[SyncResult]:
        """Remove config entries deleted remotely, folders only once empty."""
        results: list[SyncResult] = []
        candidates = [p for p in paths if p not in self.state.operations]
        files = [p for p in candidates if self.vault.path_of(p).is_file()]
        folders = sorted(
            (p for p in candidates if self.vault.path_of(p).is_dir()),
            key=lambda p: (-depth(p), p),
        )
        for path in files:
            try:
                await run_sync(self.vault.delete_local, path)
            except OSError as exc:
                self.ledger.record(path, exc, "pull")
                continue
            results.append(SyncResult(path=path, action=SyncAction.DELETE_LOCAL))
        for path in folders:
            if self.vault.list_children(path):
                continue
            try:
                await run_sync(self.vault.delete_local, path)
            except OSError as exc:
                self.ledger.record(path, exc, "pull")
                continue
            results.append(SyncResult(path=path, action=SyncAction.DELETE_LOCAL))
        return results

    # ------------------------------------------------------------------
    # Modified objects
    # ------------------------------------------------------------------

    async def _pull_folder(self, record: RemoteFile) -> SyncResult:
        path = record.path
        self.state.operations.remove(path)
        try:
            if await run_sync(self.vault.exists, path):
                action = SyncAction.SKIP
            else:
                await run_sync(self.vault.create_folder_local, path)
                action = SyncAction.CREATE_LOCAL
        except OSError as exc:
            self.ledger.record(path, exc, "pull")
            return SyncResult(
                path=path,
                action=SyncAction.CREATE_LOCAL,
                success=False,
                error=str(exc),
            )
        self.state.identity.set(record.id, path)
        return SyncResult(path=path, action=action)

    def _file_factory(
        self, record: RemoteFile
    ) -> Callable[[], Awaitable[SyncResult]]:
        async def pull_one() -> SyncResult:
            try:
                return await self._pull_file(record)
            except Exception as exc:
                self.ledger.record(record.path, exc, "pull")
                return SyncResult(
                    path=record.path,
                    action=SyncAction.UPDATE_LOCAL,
                    success=False,
                    error=str(exc),
                )

        return pull_one

    async def _pull_file(self, record: RemoteFile) -> SyncResult:
        path = record.path
        entry = await run_sync(self.vault.get_entry, path)
        operation = self.state.operations.get(path)

        if isinstance(entry, VaultFile) and operation == OperationKind.MODIFY:
            content = await run_sync_limited(
                self.client.fetch_content, record.id
            )
            outcome = await self.conflicts.detect(path, record, content)
            self.state.identity.set(record.id, path)
            backup = await self.conflicts.handle(path, outcome, content)
            if backup is not None:
                return SyncResult(
                    path=path, action=SyncAction.CONFLICT, detail=backup
                )
            return SyncResult(
                path=path,
                action=SyncAction.SKIP,
                detail=f"local changes kept ({outcome.reason.value})",
            )

        if entry is not None and operation == OperationKind.CREATE:
            self.state.operations.set(path, OperationKind.MODIFY)
            self.state.identity.set(record.id, path)
            return SyncResult(
                path=path,
                action=SyncAction.SKIP,
                detail="exists remotely, queued as modify",
            )

        if operation == OperationKind.DELETE:
            return SyncResult(
                path=path, action=SyncAction.SKIP, detail="pending local delete"
            )

        content = await run_sync_limited(self.client.fetch_content, record.id)
        await run_sync(
            self.vault.write_local, path, content, record.modified_ms()
        )
        self.state.identity.set(record.id, path)
        self.ledger.clear(path)
        return SyncResult(
            path=path,
            action=(
                SyncAction.UPDATE_LOCAL
                if entry is not None
                else SyncAction.CREATE_LOCAL
            ),
        )
