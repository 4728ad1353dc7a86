"""Exceptions raised by the remote store client.

Every HTTP or transport failure leaving ``DriveClient`` is one of these, so
callers can branch on the class instead of inspecting raw responses:

- ``NotFoundError`` -- 404, the object no longer exists remotely.
- ``RateLimitError`` -- 429, the caller must back off.
- ``TransientError`` -- 5xx, timeouts and connection failures (retryable).
- ``PermissionDeniedError`` -- any other 4xx (not retryable).
"""

from __future__ import annotations


class RemoteError(Exception):
    """Base class for remote store failures.

    Attributes:
        status_code: HTTP status when one was received, else ``None``.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(RemoteError):
    """The requested object does not exist (HTTP 404)."""


class RateLimitError(RemoteError):
    """The remote store throttled the request (HTTP 429)."""


class TransientError(RemoteError):
    """Server-side or network failure that may succeed on a later attempt."""


class RemoteTimeoutError(TransientError):
    """The request timed out before a response arrived."""


class PermissionDeniedError(RemoteError):
    """Request rejected for a reason that retrying will not fix."""


class AuthenticationError(RemoteError):
    """The access token could not be obtained from the token server."""


def error_for_status(status_code: int, message: str) -> RemoteError:
    """Map an HTTP status code to the matching ``RemoteError`` subclass."""
    match status_code:
        case 404:
            return NotFoundError(message, status_code)
        case 429:
            return RateLimitError(message, status_code)
        case 408:
            return RemoteTimeoutError(message, status_code)
        case code if code >= 500:
            return TransientError(message, status_code)
        case _:
            return PermissionDeniedError(message, status_code)
