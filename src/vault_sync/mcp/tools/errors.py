"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention.
"""

import mcp.types as types

from ...core.errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RemoteError,
    TransientError,
)
from ...sync.errors import (
    RemoteUnavailableError,
    SyncError,
    SyncInProgressError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied, sync_in_progress, validation_error, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("sync_in_progress", "A sync is already in progress", "Wait and retry.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_remote_error(error: Exception) -> types.CallToolResult:
    """Translate a remote-store or sync error to a structured error response."""
    match error:
        case SyncInProgressError():
            return build_error_response(
                "sync_in_progress",
                str(error),
                "Wait for the running sync to finish, then retry.",
            )
        case RemoteUnavailableError() | TransientError():
            return build_error_response(
                "unavailable",
                str(error),
                "Check network access and the server URL, then retry later.",
            )
        case AuthenticationError():
            return build_error_response(
                "authentication_failed",
                str(error),
                "Refresh the token (VAULT_SYNC_REFRESH_TOKEN) and restart the server.",
            )
        case PermissionDeniedError():
            return build_error_response(
                "permission_denied",
                str(error),
                "Check that the refresh token grants access to the vault.",
            )
        case RateLimitError():
            return build_error_response(
                "rate_limited",
                str(error),
                "Retry later or lower max_parallel_requests.",
            )
        case NotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                "Run vault_pull to refresh the local view of the remote store.",
            )
        case RemoteError() | SyncError():
            return build_error_response(
                "server_error",
                str(error),
                "Use vault_errors to inspect recorded failures, then retry.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Check the server log and retry.",
            )
