"""Filesystem primitives for the local vault.

``LocalVault`` is the only place that touches files on disk.  Reads are
plain; the three write primitives (``create_folder_local``, ``write_local``,
``delete_local``) run inside ``OperationRecorder.suppressed`` so that the
change they cause is not queued back for push.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterator
from contextlib import nullcontext
from pathlib import Path
from typing import TYPE_CHECKING

from .entries import (
    UnsafePathError,
    VaultEntry,
    VaultFile,
    VaultFolder,
    is_safe_path,
    parent_path,
)

if TYPE_CHECKING:
    from ..sync.operations import OperationRecorder

logger = logging.getLogger(__name__)

TRASH_DIR = ".trash"
SKIPPED_NAMES = frozenset({".git", ".DS_Store", TRASH_DIR})
CONFLICT_MARKER = ".conflict-"
BACKUP_SUFFIX = ".backup"


def _mtime_ms(stat: os.stat_result) -> int:
    return int(stat.st_mtime_ns // 1_000_000)


class LocalVault:
    """Vault rooted at *root*.

    Args:
        root: Vault directory.
        config_dir: Name of the vault's configuration folder.
        recorder: Receives suppression scopes for engine writes.
        trash_option: ``"local"`` moves deleted entries to ``.trash``,
            ``"none"`` deletes them permanently.
    """

    def __init__(
        self,
        root: Path,
        config_dir: str = ".obsidian",
        recorder: OperationRecorder | None = None,
        trash_option: str = "local",
    ) -> None:
        self.root = Path(root)
        self.config_dir = config_dir
        self.recorder = recorder
        self.trash_option = trash_option

    def path_of(self, rel: str) -> Path:
        """Absolute path of *rel*.

        Raises:
            UnsafePathError: If *rel* could point outside the vault.
        """
        if not is_safe_path(rel):
            raise UnsafePathError(f"Refusing path outside the vault: {rel!r}")
        return self.root.joinpath(*rel.split("/"))

    def rel_of(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def is_config_path(self, rel: str) -> bool:
        return rel == self.config_dir or rel.startswith(self.config_dir + "/")

    def exists(self, rel: str) -> bool:
        return self.path_of(rel).exists()

    def get_entry(self, rel: str) -> VaultEntry | None:
        """Return the entry at *rel*, or None if nothing exists there."""
        path = self.path_of(rel)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        if path.is_dir():
            return VaultFolder(rel)
        return VaultFile(rel, stat.st_size, _mtime_ms(stat))

    def read_bytes(self, rel: str) -> bytes:
        return self.path_of(rel).read_bytes()

    def walk(self, include_config: bool = False) -> Iterator[VaultEntry]:
        """Yield every entry under the root, parents before children.

        Skips ``.git``, ``.trash``, ``.DS_Store`` and conflict backups, and
        the config folder unless *include_config* is set.
        """
        for dirpath, dirnames, filenames in os.walk(self.root):
            current = Path(dirpath)
            dirnames.sort()
            kept = []
            for name in dirnames:
                rel = self.rel_of(current / name)
                if name in SKIPPED_NAMES:
                    continue
                if not include_config and self.is_config_path(rel):
                    continue
                kept.append(name)
                yield VaultFolder(rel)
            dirnames[:] = kept
            for name in sorted(filenames):
                if name in SKIPPED_NAMES or is_conflict_backup(name):
                    continue
                rel = self.rel_of(current / name)
                if not include_config and self.is_config_path(rel):
                    continue
                entry = self.get_entry(rel)
                if entry is not None:
                    yield entry

    def list_all(self, include_config: bool = False) -> list[VaultEntry]:
        return list(self.walk(include_config=include_config))

    def list_children(self, rel: str) -> list[str]:
        path = self.path_of(rel)
        if not path.is_dir():
            return []
        return sorted(self.rel_of(child) for child in path.iterdir())

    def _suppressed(self, rel: str):
        if self.recorder is None:
            return nullcontext()
        return self.recorder.suppressed(rel)

    def create_folder_local(self, rel: str) -> None:
        with self._suppressed(rel):
            self.path_of(rel).mkdir(parents=True, exist_ok=True)

    def write_local(
        self, rel: str, content: bytes, mtime: int | None = None
    ) -> None:
        """Create or overwrite a file, stamping *mtime* (epoch ms) if given."""
        path = self.path_of(rel)
        parent = parent_path(rel)
        if parent and not path.parent.exists():
            self.create_folder_local(parent)
        with self._suppressed(rel):
            path.write_bytes(content)
            if mtime:
                os.utime(path, ns=(mtime * 1_000_000, mtime * 1_000_000))

    def set_mtime(self, rel: str, mtime: int) -> None:
        path = self.path_of(rel)
        os.utime(path, ns=(mtime * 1_000_000, mtime * 1_000_000))

    def delete_local(self, rel: str, trash_option: str | None = None) -> None:
        """Remove a file or folder and drop any pending op for it.

        Args:
            rel: Entry to remove. Missing entries are ignored.
            trash_option: Overrides the vault's trash option.
        """
        path = self.path_of(rel)
        if not path.exists():
            return
        mode = trash_option or self.trash_option
        with self._suppressed(rel):
            if mode == "local":
                target = self.root / TRASH_DIR / Path(*rel.split("/"))
                if target.exists():
                    _remove(target)
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(path), str(target))
            else:
                _remove(path)
        if self.recorder is not None:
            self.recorder.log.remove(rel)
        logger.debug("Deleted local %s (%s)", rel, mode)


def _remove(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink()


def is_conflict_backup(name: str) -> bool:
    return CONFLICT_MARKER in name and name.endswith(BACKUP_SUFFIX)


def conflict_backup_path(rel: str, timestamp: int) -> str:
    return f"{rel}.conflict-{timestamp}{BACKUP_SUFFIX}"
