"""Operation log and the local-change hooks that feed it.

``OperationLog`` maps a vault path to its single pending operation.
``OperationRecorder`` applies the host's create/delete/modify/rename
notifications to the log and lets the engine suppress the notifications
caused by its own local writes.

Hook transitions (current op -> new op):

=========  ===============================  ==========================
event      current op                       result
=========  ===============================  ==========================
create     delete (file)                    modify
create     delete (folder)                  entry removed
create     anything else                    create
delete     create                           entry removed
delete     anything else                    delete
modify     create / modify                  unchanged
modify     anything else                    modify
rename     (delete old path, create new path)
=========  ===============================  ==========================
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from ..vault.entries import VaultEntry, VaultFile, VaultFolder
from .identity import is_within
from .models import OperationKind

logger = logging.getLogger(__name__)

IGNORED_NAMES = (".DS_Store",)


class OperationLog:
    """Path-keyed pending operations.

    Args:
        entries: Initial ``path -> kind`` pairs (kinds may be plain strings).
    """

    def __init__(
        self, entries: dict[str, OperationKind | str] | None = None
    ) -> None:
        self._ops: dict[str, OperationKind] = {
            path: OperationKind(kind) for path, kind in (entries or {}).items()
        }

    def get(self, path: str) -> OperationKind | None:
        return self._ops.get(path)

    def set(self, path: str, kind: OperationKind) -> None:
        self._ops[path] = OperationKind(kind)

    def remove(self, path: str) -> OperationKind | None:
        return self._ops.pop(path, None)

    def remove_subtree(self, prefix: str) -> list[str]:
        doomed = [path for path in self._ops if is_within(path, prefix)]
        for path in doomed:
            del self._ops[path]
        return doomed

    def clear(self) -> None:
        self._ops.clear()

    def snapshot(self) -> dict[str, OperationKind]:
        """Copy of the log, safe to iterate while the log is mutated."""
        return dict(self._ops)

    def paths(self, kind: OperationKind) -> list[str]:
        return sorted(p for p, k in self._ops.items() if k == kind)

    def to_dict(self) -> dict[str, str]:
        return {path: kind.value for path, kind in self._ops.items()}

    def __contains__(self, path: object) -> bool:
        return path in self._ops

    def __len__(self) -> int:
        return len(self._ops)


def _ignored(path: str) -> bool:
    return any(name in path for name in IGNORED_NAMES)


class OperationRecorder:
    """Translate host file events into operation-log entries.

    Args:
        log: The log to mutate.
    """

    def __init__(self, log: OperationLog) -> None:
        self.log = log
        self._suppressed: set[str] = set()

    def on_create(self, entry: VaultEntry) -> None:
        if self._skip(entry.path):
            return
        if self.log.get(entry.path) == OperationKind.DELETE:
            match entry:
                case VaultFile():
                    self.log.set(entry.path, OperationKind.MODIFY)
                case VaultFolder():
                    self.log.remove(entry.path)
        else:
            self.log.set(entry.path, OperationKind.CREATE)

    def on_delete(self, path: str) -> None:
        if self._skip(path):
            return
        if self.log.get(path) == OperationKind.CREATE:
            self.log.remove(path)
        else:
            self.log.set(path, OperationKind.DELETE)

    def on_modify(self, path: str) -> None:
        if self._skip(path):
            return
        if self.log.get(path) in (OperationKind.CREATE, OperationKind.MODIFY):
            return
        self.log.set(path, OperationKind.MODIFY)

    def on_rename(self, entry: VaultEntry, old_path: str) -> None:
        if _ignored(entry.path):
            return
        self.on_delete(old_path)
        self.on_create(entry)

    def _skip(self, path: str) -> bool:
        return _ignored(path) or path in self._suppressed

    @contextmanager
    def suppressed(self, path: str) -> Iterator[None]:
        """Ignore events for *path* and restore its previous op afterwards."""
        previous = self.log.get(path)
        self._suppressed.add(path)
        try:
            yield
        finally:
            self._suppressed.discard(path)
            if previous is None:
                self.log.remove(path)
            else:
                self.log.set(path, previous)
