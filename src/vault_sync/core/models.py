"""Pydantic models for payloads exchanged with the remote store.

Responses are validated into these records at the client boundary so the
sync engine never handles raw JSON:

- ``RemoteFile``: metadata for one remote object (file or folder).
- ``RemoteChange``: one entry from the remote change feed.
- ``ChangePage``: the flattened change feed plus the next cursor.
- ``QueryMatch``: one AND-group of search predicates.
- ``BatchDeleteResult``: per-item outcome of a batch delete.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class RemoteFile(BaseModel):
    """Metadata of a remote object.

    Attributes:
        id: Remote object ID.
        name: Base name of the object.
        mime_type: MIME type; folders use ``FOLDER_MIME_TYPE``.
        starred: Starred flag.
        description: Free-form description.
        properties: String tags. ``vault`` scopes the object to a vault,
            ``path`` mirrors the local relative path, ``config`` marks
            configuration files.
        modified_time: Last modification time reported by the store.
    """

    id: str
    name: str = ""
    mime_type: str = Field(default="", alias="mimeType")
    starred: bool = False
    description: str = ""
    properties: dict[str, str] = Field(default_factory=dict)
    modified_time: datetime | None = Field(
        default=None, alias="modifiedTime"
    )

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def path(self) -> str | None:
        """Local relative path mirrored in the ``path`` property."""
        return self.properties.get("path")

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def is_config(self) -> bool:
        return self.properties.get("config") == "true"

    @property
    def is_vault_root(self) -> bool:
        return self.properties.get("vault_root") == "true"

    def modified_ms(self) -> int:
        """Return the modification time as epoch milliseconds (0 if unknown)."""
        if self.modified_time is None:
            return 0
        return int(self.modified_time.timestamp() * 1000)


class RemoteChange(BaseModel):
    """A single change-feed entry.

    Attributes:
        removed: True when the object was deleted or lost access.
        file_id: ID of the affected object.
        file: Object metadata, absent for removals.
        time: When the change happened.
    """

    removed: bool = False
    file_id: str = Field(alias="fileId")
    file: RemoteFile | None = None
    time: datetime | None = None

    model_config = {"frozen": True, "populate_by_name": True}


class ChangePage(BaseModel):
    """All change-feed entries since a cursor, with the cursor to resume from."""

    changes: list[RemoteChange] = []
    new_start_token: str | None = None

    model_config = {"frozen": True}

    @property
    def removed_ids(self) -> list[str]:
        return [c.file_id for c in self.changes if c.removed]


class QueryMatch(BaseModel):
    """One AND-group of search predicates.

    Set fields are ANDed together; a list of matches passed to
    ``DriveClient.search`` is ORed.

    Attributes:
        name: Exact name.
        name_contains: Substring of the name.
        mime_type: Exact MIME type.
        not_mime_type: Excluded MIME type.
        parent: ID of a parent folder.
        starred: Starred flag.
        full_text: Full-text search term.
        properties: Exact property key/value pairs.
        modified_after: Strict lower bound on modification time.
        modified_before: Strict upper bound on modification time.
    """

    name: str | None = None
    name_contains: str | None = None
    mime_type: str | None = None
    not_mime_type: str | None = None
    parent: str | None = None
    starred: bool | None = None
    full_text: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)
    modified_after: datetime | None = None
    modified_before: datetime | None = None

    model_config = {"frozen": True}


class BatchDeleteResult(BaseModel):
    """Outcome of one batch-delete request.

    Attributes:
        succeeded: IDs whose delete sub-request returned 2xx or 404.
        failed: Map of ID to HTTP status for sub-requests that failed.
    """

    succeeded: list[str] = []
    failed: dict[str, int] = {}

    model_config = {"frozen": True}

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)
