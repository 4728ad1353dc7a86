"""High-level sync commands for one vault.

``VaultSync`` wires the pieces together for a configured vault: it loads
state and the error ledger from the vault's state folder, builds the
client, local vault and session, and exposes the user-facing commands
(pull, push, reset, scan, status, errors, clear).

Fatal errors raised inside a session (``SyncError``) do not escape the
commands; they come back as an aborted ``SyncReport`` so the CLI and MCP
surfaces can report partial results.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from ..config import Config
from ..core.async_utils import init_semaphore, run_sync, run_sync_limited
from ..core.client import DriveClient
from ..core.models import QueryMatch
from ..vault.configfiles import config_files_to_sync
from ..vault.entries import VaultFile, depth
from ..vault.local import LocalVault
from .errors import SyncError, SyncInProgressError
from .identity import is_within
from .ledger import MAX_RETRIES, ErrorLedger, now_ms
from .models import OperationKind, SyncReport, SyncResult
from .operations import OperationRecorder
from .pull import PullEngine
from .push import PushEngine
from .reset import ResetEngine
from .session import SyncSession
from .state import JsonStateStore, StateStore

logger = logging.getLogger(__name__)

QUEUE_PREVIEW = 20


class VaultSync:
    """Sync commands for the vault described by *config*.

    Args:
        config: Validated configuration.
        client: Remote store client; built from *config* when omitted.
        store: State store; a ``JsonStateStore`` in the vault's state
            folder when omitted.
        clock: Epoch-millisecond clock.
    """

    def __init__(
        self,
        config: Config,
        client: DriveClient | None = None,
        store: StateStore | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.client = client or DriveClient(config)
        self.store = store or JsonStateStore(config.state_dir)
        self._clock = clock

        self.state = self.store.load()
        self.ledger = ErrorLedger(self.store.load_errors(), clock=clock)
        self.recorder = OperationRecorder(self.state.operations)
        self.vault = LocalVault(
            config.vault_root,
            config.config_dir,
            self.recorder,
            config.trash_option,
        )
        self.state_dir = config.state_dir_relpath
        self.session = SyncSession(
            self.client,
            self.vault,
            self.state,
            self.ledger,
            self.store,
            self.state_dir,
            clock,
        )
        init_semaphore(config.max_parallel_requests)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        return await run_sync_limited(self.client.check_connection)

    async def pull(self) -> SyncReport:
        """Detect local changes, then apply remote changes to the vault."""
        self._ensure_idle()
        started_at = _now_iso()
        await self.detect_local_changes()
        try:
            async with self.session.running():
                report = await self._pull_engine().run()
        except SyncError as exc:
            return self._aborted("pull", started_at, exc)
        logger.info("Pull finished: %d actions", len(report.results))
        return report

    async def push(self) -> SyncReport:
        """Pull, then push every pending local change.

        On a first sync (empty remote vault) every local file is queued
        first when ``auto_scan_first_sync`` is enabled.
        """
        self._ensure_idle()
        started_at = _now_iso()
        if self.config.auto_scan_first_sync and await self.is_first_sync():
            added = await self.scan_all_files()
            logger.info("First sync detected, queued %d local entries", added)
        await self.detect_local_changes()

        changed_config = await run_sync(
            config_files_to_sync,
            self.vault,
            self.state.last_synced_at,
            [self.state_dir],
        )
        if not self.state.operations and not changed_config:
            logger.info("Nothing to push")
            await run_sync(self.store.save, self.state)
            return SyncReport(
                operation="push",
                started_at=started_at,
                completed_at=_now_iso(),
            )

        results: list[SyncResult] = []
        try:
            async with self.session.running(retain_config_changes=False):
                pulled = await self._pull_engine().run()
                results.extend(pulled.results)
                pushed = await PushEngine(
                    self.client,
                    self.vault,
                    self.state,
                    self.ledger,
                    self.state_dir,
                    self.config.state_relpath,
                    clock=self._clock,
                ).run()
                results.extend(pushed.results)
        except SyncError as exc:
            return self._aborted("push", started_at, exc, results)
        return SyncReport(
            operation="push",
            results=results,
            started_at=started_at,
            completed_at=_now_iso(),
        )

    async def reset(self, confirm: bool = False) -> SyncReport:
        """Discard local changes and match the remote store.

        Raises:
            ValueError: If *confirm* is not set.
        """
        if not confirm:
            raise ValueError(
                "Reset discards all local changes; pass confirm=True to proceed"
            )
        self._ensure_idle()
        started_at = _now_iso()
        await self.detect_local_changes()
        try:
            async with self.session.running():
                report = await ResetEngine(
                    self.client,
                    self.vault,
                    self.state,
                    self.ledger,
                    self.state_dir,
                ).run()
        except SyncError as exc:
            return self._aborted("reset", started_at, exc)
        return report

    async def scan_all_files(self) -> int:
        """Queue every untracked local file and folder as a create.

        Returns:
            Number of entries added to the operation log.
        """
        self._ensure_idle()
        tracked = set(self.state.identity.inverse())
        added = 0
        for entry in await run_sync(self.vault.list_all):
            if entry.path in tracked or entry.path in self.state.operations:
                continue
            self.state.operations.set(entry.path, OperationKind.CREATE)
            added += 1
        await run_sync(self.store.save, self.state)
        logger.info("Scan queued %d entries", added)
        return added

    async def is_first_sync(self) -> bool:
        """True when the remote vault root has no children."""
        try:
            root_id = await run_sync_limited(self.client.get_root_folder_id)
            children = await run_sync_limited(
                self.client.search, [QueryMatch(parent=root_id)], ("id",)
            )
        except Exception as exc:
            logger.warning("Could not check for a first sync: %s", exc)
            return False
        return not children

    async def detect_local_changes(self) -> dict[str, int]:
        """Record local changes made since the last sync.

        Untracked entries become creates, tracked files modified after the
        last sync become modifies and tracked paths that vanished become
        deletes (outermost path only for a removed folder).  The config
        folder is left to config-file sync.

        Returns:
            Counts of ``created``, ``modified`` and ``deleted`` entries.
        """
        return await run_sync(self._detect_local_changes)

    def _detect_local_changes(self) -> dict[str, int]:
        counts: Counter[str] = Counter()
        operations = self.state.operations
        tracked = set(self.state.identity.inverse())
        seen: set[str] = set()

        for entry in self.vault.walk():
            seen.add(entry.path)
            if entry.path not in tracked:
                if entry.path not in operations:
                    self.recorder.on_create(entry)
                    counts["created"] += 1
                continue
            match entry:
                case VaultFile(mtime=mtime) if (
                    mtime > self.state.last_synced_at
                    and entry.path not in operations
                ):
                    self.recorder.on_modify(entry.path)
                    counts["modified"] += 1
                case _:
                    pass

        gone = sorted(
            (
                p
                for p in tracked
                if p not in seen
                and not self.vault.is_config_path(p)
                and not self.vault.exists(p)
            ),
            key=lambda p: (depth(p), p),
        )
        removed: list[str] = []
        for path in gone:
            if any(is_within(path, parent) for parent in removed):
                continue
            removed.append(path)
            if operations.get(path) == OperationKind.DELETE:
                continue
            self.recorder.on_delete(path)
            counts["deleted"] += 1

        if counts:
            logger.info("Local changes detected: %s", dict(counts))
        return {
            "created": counts["created"],
            "modified": counts["modified"],
            "deleted": counts["deleted"],
        }

    def status(self) -> dict[str, Any]:
        """Queue and sync status."""
        snapshot = self.state.operations.snapshot()
        queue = [
            {"path": path, "operation": kind.value}
            for path, kind in sorted(snapshot.items())
        ]
        return {
            "vault": self.config.vault_name,
            "vault_path": self.config.vault_path,
            "syncing": self.session.syncing,
            "last_synced_at": self.state.last_synced_at,
            "pending": len(queue),
            "queue": queue[:QUEUE_PREVIEW],
            "more": max(0, len(queue) - QUEUE_PREVIEW),
            "tracked": len(self.state.identity),
            "errors": len(self.ledger),
        }

    def errors(self) -> dict[str, Any]:
        """Error ledger summary."""
        records = self.ledger.records()
        return {
            "total": len(records),
            "by_type": self.ledger.counts_by_type(),
            "max_retries": MAX_RETRIES,
            "retriable": [
                r.path for r in records if self.ledger.is_retriable(r.path)
            ],
            "records": [r.model_dump(mode="json") for r in records],
        }

    async def clear_queue(self, errors: bool = False) -> int:
        """Empty the operation log (and the error ledger when *errors*).

        Returns:
            Number of operations removed.
        """
        self._ensure_idle()
        count = len(self.state.operations)
        self.state.operations.clear()
        await run_sync(self.store.save, self.state)
        if errors:
            self.ledger.clear_all()
            await run_sync(self.store.save_errors, [])
        logger.info("Cleared %d queued operations", count)
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self.session.syncing:
            raise SyncInProgressError("A sync is already in progress")

    def _pull_engine(self) -> PullEngine:
        return PullEngine(
            self.client,
            self.vault,
            self.state,
            self.ledger,
            self.state_dir,
        )

    def _aborted(
        self,
        operation: str,
        started_at: str,
        exc: SyncError,
        results: list[SyncResult] | None = None,
    ) -> SyncReport:
        logger.error("%s aborted: %s", operation.capitalize(), exc)
        return SyncReport(
            operation=operation,
            results=results or [],
            started_at=started_at,
            completed_at=_now_iso(),
            aborted=str(exc),
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
