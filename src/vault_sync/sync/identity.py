"""Bidirectional binding between remote object IDs and vault paths.

Only ``id -> path`` is stored; the reverse direction is computed on demand
and never persisted.  A path is bound to at most one ID.
"""

from __future__ import annotations

from collections.abc import Iterator


def is_within(path: str, prefix: str) -> bool:
    """True when *path* is *prefix* itself or lies underneath it."""
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


class IdentityMap:
    """Mapping of remote ID to vault-relative path.

    Args:
        entries: Initial ``id -> path`` pairs, typically loaded from state.
    """

    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self._by_id: dict[str, str] = {}
        for file_id, path in (entries or {}).items():
            self.set(file_id, path)

    def resolve(self, file_id: str) -> str | None:
        return self._by_id.get(file_id)

    def resolve_reverse(self, path: str) -> str | None:
        return self.inverse().get(path)

    def inverse(self) -> dict[str, str]:
        """Build the ``path -> id`` view."""
        return {path: file_id for file_id, path in self._by_id.items()}

    def set(self, file_id: str, path: str) -> None:
        """Bind *file_id* to *path*, dropping any other ID bound to *path*."""
        stale = [
            other
            for other, bound in self._by_id.items()
            if bound == path and other != file_id
        ]
        for other in stale:
            del self._by_id[other]
        self._by_id[file_id] = path

    def remove(self, file_id: str) -> str | None:
        """Forget *file_id*; return the path it was bound to."""
        return self._by_id.pop(file_id, None)

    def remove_by_path(self, path: str) -> str | None:
        """Forget whichever ID is bound to *path*; return that ID."""
        file_id = self.resolve_reverse(path)
        if file_id is not None:
            del self._by_id[file_id]
        return file_id

    def remove_subtree(self, prefix: str) -> list[str]:
        """Forget *prefix* and every path under it; return the removed paths."""
        doomed = [
            file_id
            for file_id, path in self._by_id.items()
            if is_within(path, prefix)
        ]
        return [self._by_id.pop(file_id) for file_id in doomed]

    def has_descendants(self, prefix: str) -> bool:
        return any(
            path != prefix and is_within(path, prefix)
            for path in self._by_id.values()
        )

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(list(self._by_id.items()))

    def to_dict(self) -> dict[str, str]:
        return dict(self._by_id)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)
