"""Remote store client and async helpers shared by the CLI and MCP server."""

from .async_utils import run_sync
from .client import DriveClient

__all__ = ["DriveClient", "run_sync"]
