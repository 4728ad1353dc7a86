"""Per-path failure bookkeeping.

Every per-item failure of a push or pull is classified and recorded here
instead of aborting the run.  One record is kept per path; a repeated
failure overwrites the message and bumps ``retry_count``.  A record is
cleared as soon as the same path succeeds.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable

import requests

from ..core.errors import (
    PermissionDeniedError,
    RateLimitError,
    RemoteError,
    RemoteTimeoutError,
    TransientError,
)
from .models import ErrorType, SyncErrorRecord

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRIABLE_TYPES = frozenset(
    {ErrorType.NETWORK, ErrorType.TIMEOUT, ErrorType.RATE_LIMIT}
)


def now_ms() -> int:
    return int(time.time() * 1000)


def classify_error(error: BaseException) -> ErrorType:
    """Map an exception to an ``ErrorType`` using its class, status and text."""
    status = getattr(error, "status_code", None)
    text = str(error).lower()

    if (
        isinstance(error, RateLimitError)
        or status == 429
        or "rate limit" in text
        or "quota" in text
    ):
        return ErrorType.RATE_LIMIT
    if status in (401, 403) or "permission" in text or "forbidden" in text:
        return ErrorType.PERMISSION
    if status == 413 or "too large" in text or "file size" in text:
        return ErrorType.FILE_SIZE
    if (
        isinstance(error, (RemoteTimeoutError, requests.Timeout, TimeoutError))
        or status == 408
        or "timed out" in text
        or "timeout" in text
    ):
        return ErrorType.TIMEOUT
    if (
        isinstance(error, (TransientError, requests.ConnectionError, ConnectionError))
        or (status is not None and status >= 500)
        or "network" in text
    ):
        return ErrorType.NETWORK
    if isinstance(error, PermissionDeniedError):
        return ErrorType.PERMISSION
    return ErrorType.UNKNOWN


class ErrorLedger:
    """Latest classified failure for each path.

    Args:
        records: Records loaded from the error file.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        records: Iterable[SyncErrorRecord] = (),
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._records: dict[str, SyncErrorRecord] = {
            r.path: r for r in records
        }
        self._clock = clock

    def record(
        self, path: str, error: BaseException, operation: str
    ) -> SyncErrorRecord:
        """Classify *error* and store it as the latest failure of *path*."""
        now = self._clock()
        error_type = classify_error(error)
        existing = self._records.get(path)
        if existing is None:
            record = SyncErrorRecord(
                path=path,
                error_type=error_type,
                message=str(error),
                timestamp=now,
                retry_count=1,
                last_attempt=now,
                operation=operation,
            )
        else:
            record = existing.model_copy(
                update={
                    "error_type": error_type,
                    "message": str(error),
                    "retry_count": existing.retry_count + 1,
                    "last_attempt": now,
                    "operation": operation,
                }
            )
        self._records[path] = record
        level = (
            logging.DEBUG
            if isinstance(error, RemoteError) and error_type in RETRIABLE_TYPES
            else logging.WARNING
        )
        logger.log(
            level,
            "%s %s failed (%s, attempt %d): %s",
            operation,
            path,
            error_type.value,
            record.retry_count,
            error,
        )
        return record

    def clear(self, path: str) -> None:
        self._records.pop(path, None)

    def clear_all(self) -> None:
        self._records.clear()

    def get(self, path: str) -> SyncErrorRecord | None:
        return self._records.get(path)

    def is_retriable(self, path: str) -> bool:
        """True if *path* failed with a transient class and is under the cap."""
        record = self._records.get(path)
        if record is None:
            return False
        return (
            record.error_type in RETRIABLE_TYPES
            and record.retry_count < MAX_RETRIES
        )

    def records(self) -> list[SyncErrorRecord]:
        return sorted(self._records.values(), key=lambda r: r.path)

    def counts_by_type(self) -> dict[str, int]:
        return dict(
            Counter(r.error_type.value for r in self._records.values())
        )

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: object) -> bool:
        return path in self._records
