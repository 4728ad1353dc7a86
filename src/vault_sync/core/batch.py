"""Multipart batch envelope for deleting many remote objects in one request.

The request body is a ``multipart/mixed`` document with one pseudo-HTTP
``DELETE`` sub-request per object ID.  The response mirrors that layout with
one pseudo-HTTP status line per part; ``parse_batch_response`` turns it into
a ``BatchDeleteResult``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from .models import BatchDeleteResult

DEFAULT_BOUNDARY = "batch_boundary"

# Remote store limit on sub-requests per batch call.
MAX_BATCH_ITEMS = 100

_STATUS_RE = re.compile(r"^HTTP/\d(?:\.\d)?\s+(\d{3})", re.MULTILINE)
_CONTENT_ID_RE = re.compile(
    r"^Content-ID:\s*<?response-item-(\d+)>?", re.MULTILINE | re.IGNORECASE
)
_BOUNDARY_RE = re.compile(r'boundary="?([^";]+)"?', re.IGNORECASE)


def build_batch_delete_body(
    ids: Sequence[str], boundary: str = DEFAULT_BOUNDARY
) -> str:
    """Encode delete sub-requests for *ids* as a multipart/mixed body."""
    parts: list[str] = []
    for index, file_id in enumerate(ids, start=1):
        parts.append(
            "\r\n".join(
                [
                    f"--{boundary}",
                    "Content-Type: application/http",
                    f"Content-ID: <item-{index}>",
                    "",
                    f"DELETE /drive/v3/files/{file_id} HTTP/1.1",
                    "",
                    "",
                ]
            )
        )
    parts.append(f"--{boundary}--\r\n")
    return "".join(parts)


def boundary_from_content_type(content_type: str | None) -> str | None:
    """Extract the multipart boundary from a ``Content-Type`` header."""
    if not content_type:
        return None
    match = _BOUNDARY_RE.search(content_type)
    return match.group(1) if match else None


def parse_batch_response(
    body: str, ids: Sequence[str], boundary: str | None = None
) -> BatchDeleteResult:
    """Split a batch response into succeeded and failed IDs.

    Parts are matched to IDs by their ``Content-ID`` when present and by
    position otherwise.  A 404 counts as success since the object is gone
    either way.  IDs with no matching part are reported as failed with
    status 0.

    Args:
        body: Raw response text.
        ids: The IDs in the order they were sent.
        boundary: Response boundary; guessed from the first line if omitted.

    Returns:
        Per-item outcome.
    """
    if boundary is None:
        first = body.lstrip().split("\r\n", 1)[0].split("\n", 1)[0]
        boundary = first[2:].strip() if first.startswith("--") else ""

    statuses: dict[int, int] = {}
    if boundary:
        raw_parts = body.split(f"--{boundary}")
    else:
        raw_parts = [body]

    position = 0
    for part in raw_parts:
        status_match = _STATUS_RE.search(part)
        if status_match is None:
            continue
        id_match = _CONTENT_ID_RE.search(part)
        index = int(id_match.group(1)) - 1 if id_match else position
        statuses[index] = int(status_match.group(1))
        position += 1

    succeeded: list[str] = []
    failed: dict[str, int] = {}
    for index, file_id in enumerate(ids):
        status = statuses.get(index, 0)
        if 200 <= status < 300 or status == 404:
            succeeded.append(file_id)
        else:
            failed[file_id] = status
    return BatchDeleteResult(succeeded=succeeded, failed=failed)
