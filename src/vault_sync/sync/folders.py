"""Create remote folders for a batch of local folder paths.

Folders are processed shallow to deep (ties broken by name) so a parent's
remote ID is always known before its children are handled.  A folder already
bound in the identity map is reused as is; otherwise it is looked up by name
under its parent and reused when found, which makes repeated or interrupted
runs safe.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..core.async_utils import run_sync_limited
from ..core.client import DriveClient
from ..core.models import QueryMatch, RemoteFile
from ..vault.entries import base_name, depth, is_safe_path, parent_path
from .errors import SyncError, VaultRootError
from .identity import IdentityMap
from .ledger import ErrorLedger
from .models import FolderSyncResult

logger = logging.getLogger(__name__)

PATH_SEARCH_CHUNK = 50


async def find_by_paths(
    client: DriveClient,
    paths: Iterable[str],
    fields: tuple[str, ...] = ("id", "mimeType", "properties", "modifiedTime"),
) -> dict[str, RemoteFile]:
    """Look up remote objects by their ``path`` property.

    Searches in chunks of ``PATH_SEARCH_CHUNK`` paths.  Only records whose
    path was asked for and is safe to use locally are returned.
    """
    wanted = sorted(set(paths))
    found: dict[str, RemoteFile] = {}
    for start in range(0, len(wanted), PATH_SEARCH_CHUNK):
        chunk = wanted[start : start + PATH_SEARCH_CHUNK]
        records = await run_sync_limited(
            client.search,
            [QueryMatch(properties={"path": p}) for p in chunk],
            fields,
        )
        for record in records:
            if record.path in chunk and is_safe_path(record.path):
                found[record.path] = record
    return found


class FolderHierarchySync:
    """Ensure remote folders exist for local folder paths.

    Args:
        client: Remote store client.
        identity: Identity map, updated for every folder created or reused.
        ledger: When given, per-folder failures are recorded in it and
            successes clear earlier records.
    """

    def __init__(
        self,
        client: DriveClient,
        identity: IdentityMap,
        ledger: ErrorLedger | None = None,
    ) -> None:
        self.client = client
        self.identity = identity
        self.ledger = ledger

    async def resolve_root(self) -> str:
        """Return the vault root ID, creating it if absent.

        Raises:
            VaultRootError: If the root can be neither found nor created.
        """
        try:
            return await run_sync_limited(self.client.get_root_folder_id)
        except Exception as exc:
            raise VaultRootError(
                f"Could not resolve the vault root folder: {exc}"
            ) from exc

    async def sync(
        self,
        paths: Iterable[str],
        root_id: str | None = None,
        properties: dict[str, str] | None = None,
    ) -> FolderSyncResult:
        """Create or reuse a remote folder for every path.

        Args:
            paths: Vault-relative folder paths.
            root_id: Vault root ID if the caller already resolved it.
            properties: Extra properties stamped on created folders.

        Returns:
            Counts of created and reused folders plus per-path errors.
            A folder whose parent could not be resolved is reported and
            skipped, and so are its descendants.

        Raises:
            VaultRootError: If the vault root cannot be resolved.
        """
        ordered = sorted(set(paths), key=lambda p: (depth(p), p))
        if not ordered:
            return FolderSyncResult()
        if root_id is None:
            root_id = await self.resolve_root()

        created = 0
        reused = 0
        errors: dict[str, str] = {}
        for path in ordered:
            parent = parent_path(path)
            parent_id = (
                root_id if not parent else self.identity.resolve_reverse(parent)
            )
            if parent_id is None or parent in errors:
                error = SyncError(f"parent folder '{parent}' has no remote ID")
                errors[path] = str(error)
                logger.warning("Skipping folder %s: %s", path, error)
                if self.ledger is not None:
                    self.ledger.record(path, error, "create")
                continue

            name = base_name(path)
            try:
                folder_id = self.identity.resolve_reverse(path)
                if folder_id is None:
                    folder_id = await run_sync_limited(
                        self.client.find_folder, name, parent_id
                    )
                if folder_id is not None:
                    reused += 1
                else:
                    folder_id = await run_sync_limited(
                        self.client.create_folder,
                        name,
                        parent_id,
                        {**(properties or {}), "path": path},
                    )
                    created += 1
                    logger.info("Created remote folder %s", path)
            except Exception as exc:
                errors[path] = str(exc)
                if self.ledger is not None:
                    self.ledger.record(path, exc, "create")
                else:
                    logger.warning("Failed to ensure folder %s: %s", path, exc)
                continue
            self.identity.set(folder_id, path)
            if self.ledger is not None:
                self.ledger.clear(path)

        return FolderSyncResult(created=created, reused=reused, errors=errors)
