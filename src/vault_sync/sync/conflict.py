"""Decide whether a local file and a remote version diverge.

The remote store does not report content size, so the remote bytes are
downloaded and compared with the local file:

1. Different byte lengths -> conflict (``content_diff``).
2. Same length but modification times more than 5 s apart -> compare the
   bytes; a mismatch is a conflict (``content_diff``), identical content is
   not (``time_diff``).
3. Otherwise -> no conflict.

On conflict the local file wins and the remote bytes are kept next to it
as ``<path>.conflict-<timestamp>.backup``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.async_utils import run_sync, run_sync_limited
from ..core.client import DriveClient
from ..core.models import RemoteFile
from ..vault.entries import VaultFile
from ..vault.local import LocalVault, conflict_backup_path
from .ledger import now_ms
from .models import ConflictOutcome, ConflictReason

logger = logging.getLogger(__name__)

TIME_THRESHOLD_MS = 5000


class ConflictDetector:
    """Compare local files with remote versions.

    Args:
        client: Remote store client, used to download remote content.
        vault: Local vault.
        clock: Epoch-millisecond clock for backup names.
    """

    def __init__(
        self,
        client: DriveClient,
        vault: LocalVault,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.client = client
        self.vault = vault
        self._clock = clock

    async def detect(
        self,
        path: str,
        remote: RemoteFile,
        remote_content: bytes | None = None,
    ) -> ConflictOutcome:
        """Compare the local file at *path* with *remote*.

        Args:
            path: Vault-relative path of the local file.
            remote: Remote record for the same path.
            remote_content: Remote bytes if already downloaded.

        Raises:
            FileNotFoundError: If the local file does not exist.
        """
        entry = await run_sync(self.vault.get_entry, path)
        if not isinstance(entry, VaultFile):
            raise FileNotFoundError(f"No local file at {path}")
        if remote_content is None:
            remote_content = await run_sync_limited(
                self.client.fetch_content, remote.id
            )

        local_modified = entry.mtime
        remote_modified = remote.modified_ms()
        size_differs = entry.size != len(remote_content)

        if size_differs:
            reason = ConflictReason.CONTENT_DIFF
        elif abs(local_modified - remote_modified) > TIME_THRESHOLD_MS:
            local_content = await run_sync(self.vault.read_bytes, path)
            reason = (
                ConflictReason.CONTENT_DIFF
                if local_content != remote_content
                else ConflictReason.TIME_DIFF
            )
        else:
            reason = ConflictReason.NO_CONFLICT

        return ConflictOutcome(
            has_conflict=reason == ConflictReason.CONTENT_DIFF,
            reason=reason,
            local_modified=local_modified,
            remote_modified=remote_modified,
            size_differs=size_differs,
        )

    async def handle(
        self, path: str, outcome: ConflictOutcome, remote_content: bytes
    ) -> str | None:
        """Back up the remote version next to *path* when there is a conflict.

        Returns:
            The backup path, or None when there was nothing to back up.
        """
        if not outcome.has_conflict:
            return None
        backup = conflict_backup_path(path, self._clock())
        await run_sync(self.vault.write_local, backup, remote_content)
        logger.warning(
            "Conflict on %s (%s): remote version saved to %s, local kept",
            path,
            outcome.reason.value,
            backup,
        )
        return backup
