"""Capability-filtered registry of MCP tools.

Each tool declares the capabilities it needs (VAULT_READ, VAULT_PULL,
VAULT_PUSH, VAULT_RESET).  An operator can hand the server a permissions
file to expose, say, a read-only view of the vault; tools whose
capabilities are not all granted are never listed and cannot be called.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...core.errors import RemoteError
from ...sync.errors import SyncError
from ...sync.service import VaultSync

logger = logging.getLogger(__name__)

KNOWN_PERMISSIONS = frozenset(
    {"VAULT_READ", "VAULT_PULL", "VAULT_PUSH", "VAULT_RESET"}
)

Handler = Callable[[VaultSync, dict], Awaitable[types.CallToolResult]]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A tool definition, the capabilities it needs and its handler.

    An empty ``permissions`` set means the tool is always available.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Handler

    def permits(self, allowed: frozenset[str] | None) -> bool:
        return allowed is None or self.permissions <= allowed


class ToolRegistry:
    """Dispatches tool calls to the specs permitted by ``allowed_permissions``.

    ``None`` grants everything.  Registration order is listing order.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {
            spec.tool.name: spec
            for spec in specs
            if spec.permits(allowed_permissions)
        }

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        sync: VaultSync,
    ) -> types.CallToolResult:
        """Run the handler registered under *name*.

        Remote and sync failures become structured error results so the
        agent sees a corrective action instead of a protocol error.

        Raises:
            ValueError: If *name* is unknown or filtered out.
        """
        from .errors import build_error_response, translate_remote_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        try:
            return await spec.handler(sync, arguments or {})
        except (RemoteError, SyncError) as e:
            logger.warning("%s failed: %s", name, e)
            return translate_remote_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log and retry.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Read granted capabilities from *path*.

    One capability per line; blank lines and ``#`` comments are ignored::

        # pull-only agent
        VAULT_READ
        VAULT_PULL

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On an unknown capability or when nothing is granted.
    """
    path = Path(path)
    granted: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        name = line.split("#", 1)[0].strip()
        if not name:
            continue
        if name not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Invalid permission '{name}' at line {line_num} in {path}. "
                f"Expected one of: {', '.join(sorted(KNOWN_PERMISSIONS))}."
            )
        granted.add(name)
    if not granted:
        raise ValueError(f"No permissions found in {path}.")
    return frozenset(granted)
