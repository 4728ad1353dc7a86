"""Single-flight sync session lifecycle.

A session wraps one pull, push or reset:

* ``start()`` rejects overlapping sessions and checks that the remote store
  answers before anything is touched.
* ``end(success)`` advances the last-synced timestamp and stores a fresh
  change cursor (only on success), then persists state and the error
  ledger and releases the session.

Usage::

    session = SyncSession(client, vault, state, ledger, store, state_dir)
    async with session.running():
        await PullEngine(client, vault, state, ledger, state_dir).run()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from ..core.async_utils import run_sync, run_sync_limited
from ..core.client import DriveClient
from ..vault.configfiles import config_files_to_sync
from ..vault.local import LocalVault
from .errors import CursorRefreshError, RemoteUnavailableError, SyncInProgressError
from .ledger import ErrorLedger, now_ms
from .state import StateStore, SyncState

logger = logging.getLogger(__name__)


class SyncSession:
    """Lifecycle of one sync run.

    Args:
        client: Remote store client.
        vault: Local vault.
        state: Sync state persisted at the end of the session.
        ledger: Error ledger persisted at the end of the session.
        store: Where state and ledger are saved.
        state_dir: Vault-relative folder of the engine's own state.
        clock: Epoch-millisecond clock.
    """

    def __init__(
        self,
        client: DriveClient,
        vault: LocalVault,
        state: SyncState,
        ledger: ErrorLedger,
        store: StateStore,
        state_dir: str = "",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.client = client
        self.vault = vault
        self.state = state
        self.ledger = ledger
        self.store = store
        self.state_dir = state_dir
        self._clock = clock
        self.syncing = False

    async def start(self) -> None:
        """Begin a session.

        Raises:
            SyncInProgressError: If a session is already running.
            RemoteUnavailableError: If the remote store does not answer.
        """
        if self.syncing:
            raise SyncInProgressError("A sync is already in progress")
        if not await run_sync_limited(self.client.check_connection):
            raise RemoteUnavailableError("Remote store is not reachable")
        self.syncing = True
        logger.debug("Sync session started")

    async def end(
        self, success: bool, retain_config_changes: bool = True
    ) -> None:
        """Finish a session.

        Args:
            success: Whether the wrapped run completed without a fatal error.
                Timestamp and cursor only move forward on success.
            retain_config_changes: Re-stamp config files changed since the
                last sync so they are still pushed after the timestamp
                advances.  Push passes False since it just uploaded them.

        Raises:
            CursorRefreshError: If a fresh change cursor cannot be obtained.
                State is still persisted and the session released.
        """
        try:
            if success:
                await self._advance(retain_config_changes)
        finally:
            await run_sync(self.store.save, self.state)
            await run_sync(self.store.save_errors, self.ledger.records())
            self.syncing = False
            logger.debug("Sync session ended (success=%s)", success)

    async def _advance(self, retain_config_changes: bool) -> None:
        try:
            token = await run_sync_limited(self.client.get_changes_start_token)
        except Exception as exc:
            raise CursorRefreshError(
                f"Could not refresh the change cursor: {exc}"
            ) from exc

        timestamp = self._clock()
        if retain_config_changes:
            pending = await run_sync(
                config_files_to_sync,
                self.vault,
                self.state.last_synced_at,
                [self.state_dir] if self.state_dir else [],
            )
            for path in pending:
                await run_sync(self.vault.set_mtime, path, timestamp + 1)
        self.state.last_synced_at = timestamp
        self.state.changes_token = token

    @asynccontextmanager
    async def running(
        self, retain_config_changes: bool = True
    ) -> AsyncIterator[SyncSession]:
        """Run the body as a session; any exception ends it unsuccessfully."""
        await self.start()
        try:
            yield self
        except BaseException:
            await self.end(False)
            raise
        await self.end(True, retain_config_changes)
