"""Pydantic models for the sync engine.

Defines the data contracts shared by the sync modules:

- ``OperationKind``: pending local change recorded in the operation log.
- ``ErrorType`` / ``SyncErrorRecord``: classified per-path failures.
- ``ConflictReason`` / ``ConflictOutcome``: result of comparing a local
  file with a remote version.
- ``FolderSyncResult``: outcome of one folder-hierarchy pass.
- ``SyncAction`` / ``SyncResult`` / ``SyncReport``: what a pull, push or
  reset did, path by path.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class OperationKind(str, Enum):
    """Pending local change for one path."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class ErrorType(str, Enum):
    """Failure classes recorded in the error ledger."""

    NETWORK = "network"
    PERMISSION = "permission"
    FILE_SIZE = "file_size"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


class SyncErrorRecord(BaseModel):
    """Latest failure recorded for a path.

    Attributes:
        path: Vault-relative path that failed.
        error_type: Classified failure class.
        message: Error text.
        timestamp: When the failure was first recorded (epoch ms).
        retry_count: Number of failed attempts so far.
        last_attempt: When the latest failure happened (epoch ms).
        operation: What was attempted (``create``, ``modify``, ...).
    """

    path: str
    error_type: ErrorType
    message: str
    timestamp: int
    retry_count: int = 1
    last_attempt: int
    operation: str

    model_config = {"frozen": True}


class ConflictReason(str, Enum):
    CONTENT_DIFF = "content_diff"
    TIME_DIFF = "time_diff"
    NO_CONFLICT = "no_conflict"


class ConflictOutcome(BaseModel):
    """Result of comparing a local file against a remote version.

    Attributes:
        has_conflict: True when the two versions diverge.
        reason: Why the decision was made.
        local_modified: Local modification time (epoch ms).
        remote_modified: Remote modification time (epoch ms).
        size_differs: True when the byte lengths differ.
    """

    has_conflict: bool
    reason: ConflictReason
    local_modified: int
    remote_modified: int
    size_differs: bool

    model_config = {"frozen": True}


class FolderSyncResult(BaseModel):
    """Outcome of one ``FolderHierarchySync.sync`` call.

    Attributes:
        created: Folders created remotely.
        reused: Folders found remotely by name and parent and mapped.
        errors: Map of folder path to error text for skipped folders.
    """

    created: int = 0
    reused: int = 0
    errors: dict[str, str] = {}

    model_config = {"frozen": True}


class SyncAction(str, Enum):
    """Actions a sync run can take for one path."""

    CREATE_REMOTE = "create_remote"
    UPDATE_REMOTE = "update_remote"
    DELETE_REMOTE = "delete_remote"
    CREATE_LOCAL = "create_local"
    UPDATE_LOCAL = "update_local"
    DELETE_LOCAL = "delete_local"
    CONFLICT = "conflict"
    REQUEUE = "requeue"
    SKIP = "skip"


class SyncResult(BaseModel):
    """Result of one action.

    Attributes:
        path: Vault-relative path.
        action: Action that was performed or attempted.
        success: Whether it succeeded.
        error: Error message if it failed.
        detail: Extra information (backup path, new remote ID, ...).
    """

    path: str
    action: SyncAction
    success: bool = True
    error: str | None = None
    detail: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one pull, push or reset.

    Attributes:
        operation: ``pull``, ``push`` or ``reset``.
        results: Individual results.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run ended.
        aborted: Fatal error text when the run stopped early.
    """

    operation: str
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None
    aborted: str | None = None

    model_config = {"frozen": True}

    def _with_action(self, action: SyncAction) -> list[SyncResult]:
        return [
            r for r in self.results if r.action == action and r.success
        ]

    @property
    def created_remote(self) -> list[SyncResult]:
        return self._with_action(SyncAction.CREATE_REMOTE)

    @property
    def updated_remote(self) -> list[SyncResult]:
        return self._with_action(SyncAction.UPDATE_REMOTE)

    @property
    def deleted_remote(self) -> list[SyncResult]:
        return self._with_action(SyncAction.DELETE_REMOTE)

    @property
    def created_local(self) -> list[SyncResult]:
        return self._with_action(SyncAction.CREATE_LOCAL)

    @property
    def updated_local(self) -> list[SyncResult]:
        return self._with_action(SyncAction.UPDATE_LOCAL)

    @property
    def deleted_local(self) -> list[SyncResult]:
        return self._with_action(SyncAction.DELETE_LOCAL)

    @property
    def conflicts(self) -> list[SyncResult]:
        return self._with_action(SyncAction.CONFLICT)

    @property
    def requeued(self) -> list[SyncResult]:
        """Modifies rewritten to creates after the remote object vanished."""
        return self._with_action(SyncAction.REQUEUE)

    @property
    def skipped(self) -> list[SyncResult]:
        return self._with_action(SyncAction.SKIP)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return self.aborted is None

    def summary(self) -> str:
        """Format a human-readable summary with counts by action."""
        lines = [
            f"{self.operation.capitalize()} report"
            + (f" (aborted: {self.aborted})" if self.aborted else ""),
            f"  Created remote: {len(self.created_remote)}",
            f"  Updated remote: {len(self.updated_remote)}",
            f"  Deleted remote: {len(self.deleted_remote)}",
            f"  Created local:  {len(self.created_local)}",
            f"  Updated local:  {len(self.updated_local)}",
            f"  Deleted local:  {len(self.deleted_local)}",
            f"  Conflicts:      {len(self.conflicts)}",
            f"  Requeued:       {len(self.requeued)}",
            f"  Errors:         {len(self.errors)}",
            f"  Total:          {len(self.results)}",
        ]
        return "\n".join(lines)
