"""Fatal sync errors.

Per-item failures never raise out of an engine; they are recorded in the
error ledger.  These exceptions abort a whole session.
"""


class SyncError(Exception):
    """Base class for errors that abort a sync session."""


class SyncInProgressError(SyncError):
    """Another session is already running."""


class RemoteUnavailableError(SyncError):
    """The remote store did not answer the reachability check."""


class VaultRootError(SyncError):
    """The vault's remote root folder could not be found or created."""


class PullError(SyncError):
    """The modified-since query or the change feed could not be fetched."""


class BatchDeleteError(SyncError):
    """The batch-delete request itself failed."""


class CursorRefreshError(SyncError):
    """A fresh change cursor could not be obtained at session end."""
