"""Vault reconciliation engine.

Keeps a local vault and a remote object store consistent.  Local changes
are recorded in an operation log and pushed; remote changes are pulled
from a modified-since query and the remote change feed.

Modules:

- ``operations`` -- ``OperationLog`` and the ``OperationRecorder`` hooks.
- ``identity``   -- ``IdentityMap``: remote ID <-> vault path binding.
- ``ledger``     -- ``ErrorLedger``: classified per-path failures.
- ``state``      -- ``SyncState`` and ``JsonStateStore`` persistence.
- ``folders``    -- ``FolderHierarchySync``: remote folder creation.
- ``conflict``   -- ``ConflictDetector``: local vs remote comparison.
- ``push`` / ``pull`` / ``reset`` -- the three engines.
- ``session``    -- ``SyncSession``: single-flight lifecycle.
- ``service``    -- ``VaultSync``: user-facing commands.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from vault_sync.config import load_config
    from vault_sync.sync import VaultSync, format_sync_report

    sync = VaultSync(load_config(vault_path="~/notes"))
    report = await sync.push()
    print(format_sync_report(report))
"""

from .conflict import ConflictDetector
from .folders import FolderHierarchySync
from .identity import IdentityMap
from .ledger import ErrorLedger, classify_error
from .models import (
    ConflictOutcome,
    ConflictReason,
    ErrorType,
    OperationKind,
    SyncAction,
    SyncErrorRecord,
    SyncReport,
    SyncResult,
)
from .operations import OperationLog, OperationRecorder
from .pull import PullEngine
from .push import PushEngine
from .reporter import (
    format_errors,
    format_status,
    format_sync_report,
    report_to_json,
)
from .reset import ResetEngine
from .service import VaultSync
from .session import SyncSession
from .state import JsonStateStore, StateStore, SyncState

__all__ = [
    "ConflictDetector",
    "ConflictOutcome",
    "ConflictReason",
    "ErrorLedger",
    "ErrorType",
    "FolderHierarchySync",
    "IdentityMap",
    "JsonStateStore",
    "OperationKind",
    "OperationLog",
    "OperationRecorder",
    "PullEngine",
    "PushEngine",
    "ResetEngine",
    "StateStore",
    "SyncAction",
    "SyncErrorRecord",
    "SyncReport",
    "SyncResult",
    "SyncSession",
    "SyncState",
    "VaultSync",
    "classify_error",
    "format_errors",
    "format_status",
    "format_sync_report",
    "report_to_json",
]
