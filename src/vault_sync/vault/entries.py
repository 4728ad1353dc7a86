"""Vault entries as a closed union of files and folders.

Paths are vault-relative and always use ``/`` separators.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath
from typing import Union


@dataclass(frozen=True)
class VaultFile:
    path: str
    size: int
    mtime: int  # epoch milliseconds


@dataclass(frozen=True)
class VaultFolder:
    path: str


VaultEntry = Union[VaultFile, VaultFolder]


class UnsafePathError(ValueError):
    """A path that would resolve outside the vault root."""


def _safe_segment(part: str) -> bool:
    if part in ("", ".", ".."):
        return False
    pure = PurePath(part)
    return not pure.anchor and pure.parts == (part,)


def is_safe_path(path: str) -> bool:
    """True when *path* is a non-empty relative path that stays in the vault.

    Absolute paths, drive letters and empty, ``.`` or ``..`` segments are
    rejected, as is any segment the host OS would split further.
    """
    return bool(path) and all(_safe_segment(part) for part in path.split("/"))


def depth(path: str) -> int:
    """Number of path segments: ``"a"`` is 1, ``"a/b.md"`` is 2."""
    return len([part for part in path.split("/") if part])


def parent_path(path: str) -> str:
    """Parent of *path*, ``""`` for top-level entries."""
    head, _, _ = path.rstrip("/").rpartition("/")
    return head


def base_name(path: str) -> str:
    return path.rstrip("/").rpartition("/")[2]


def is_folder(entry: VaultEntry) -> bool:
    match entry:
        case VaultFolder():
            return True
        case VaultFile():
            return False
