"""Sync state and its persistence.

``SyncState`` bundles everything the engines read and mutate during a
session: the operation log, the identity map, the last-synced timestamp and
the change cursor.  It is passed explicitly to every engine and persisted
once per session through a ``StateStore``.

``JsonStateStore`` keeps two documents in the state directory:

* ``data.json`` -- operations, identity map, timestamp and cursor.
* ``error.json`` -- the error ledger, a list of records.

Writes are atomic: content goes to a temp file in the same directory which
then replaces the target with ``os.replace()``, so readers never see a
partial document.  Saving never mutates the state, so load -> save -> load
returns the same values.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .identity import IdentityMap
from .models import SyncErrorRecord
from .operations import OperationLog

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_FILE = "data.json"
ERROR_FILE = "error.json"


@dataclass
class SyncState:
    operations: OperationLog = field(default_factory=OperationLog)
    identity: IdentityMap = field(default_factory=IdentityMap)
    last_synced_at: int = 0
    changes_token: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "operations": self.operations.to_dict(),
            "drive_id_to_path": self.identity.to_dict(),
            "last_synced_at": self.last_synced_at,
            "changes_token": self.changes_token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncState:
        return cls(
            operations=OperationLog(data.get("operations") or {}),
            identity=IdentityMap(data.get("drive_id_to_path") or {}),
            last_synced_at=int(data.get("last_synced_at") or 0),
            changes_token=data.get("changes_token"),
        )


class StateStore(Protocol):
    def load(self) -> SyncState: ...

    def save(self, state: SyncState) -> None: ...

    def load_errors(self) -> list[SyncErrorRecord]: ...

    def save_errors(self, records: list[SyncErrorRecord]) -> None: ...


def _atomic_write_json(target: Path, payload: Any) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_path, target)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class JsonStateStore:
    """Persist ``SyncState`` and the error ledger as JSON files.

    Args:
        state_dir: Directory holding ``data.json`` and ``error.json``.
            Created on first save.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILE

    @property
    def error_path(self) -> Path:
        return self.state_dir / ERROR_FILE

    def load(self) -> SyncState:
        """Load state from disk, or return an empty state if there is none."""
        if not self.state_path.exists():
            return SyncState()
        with open(self.state_path, encoding="utf-8") as fh:
            data = json.load(fh)
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            logger.warning(
                "State file %s has version %s, expected %s",
                self.state_path,
                version,
                STATE_VERSION,
            )
        return SyncState.from_dict(data)

    def save(self, state: SyncState) -> None:
        _atomic_write_json(self.state_path, state.to_dict())

    def load_errors(self) -> list[SyncErrorRecord]:
        if not self.error_path.exists():
            return []
        with open(self.error_path, encoding="utf-8") as fh:
            data = json.load(fh)
        return [SyncErrorRecord.model_validate(item) for item in data]

    def save_errors(self, records: list[SyncErrorRecord]) -> None:
        _atomic_write_json(
            self.error_path, [r.model_dump(mode="json") for r in records]
        )
