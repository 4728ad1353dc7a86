"""MCP tool handlers for vault sync.

This package wraps the ``VaultSync`` service with async handlers and
structured error responses.
"""

from .errors import build_error_response, translate_remote_error
from .registry import ToolRegistry, ToolSpec, load_permissions_file
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
    "ToolRegistry",
    "ToolSpec",
    "build_error_response",
    "load_permissions_file",
    "translate_remote_error",
]
