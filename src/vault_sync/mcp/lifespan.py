"""Startup and shutdown of the MCP server's sync service."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import build_config, to_config
from ..sync.service import VaultSync

logger = logging.getLogger(__name__)

REQUIRED_ENV_HINT = (
    "Ensure VAULT_SYNC_SERVER_URL, VAULT_SYNC_REFRESH_TOKEN, "
    "VAULT_SYNC_VAULT_PATH are set."
)


def _stderr_print(msg: str) -> None:
    """stderr is the only console channel once stdio carries JSON-RPC."""
    print(msg, file=sys.stderr, flush=True)


def _fail(message: str, hint: str) -> RuntimeError:
    logger.error(message)
    _stderr_print(f"ERROR: {message}")
    _stderr_print(f"  {hint}")
    return RuntimeError(f"{message}. {hint}")


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Build the VaultSync service and make sure the remote store answers.

    Configuration precedence is CLI overrides, then environment (including
    ``.env``), then YAML config files, then defaults.

    Yields:
        ``{"sync": VaultSync}``

    Raises:
        RuntimeError: On invalid configuration, when the service cannot be
            constructed, or when the token server is unreachable.
    """
    logger.info("MCP server starting")
    _stderr_print("Vault Sync MCP Server starting...")

    overrides = config_overrides or {}
    try:
        load_dotenv()
        config_files = discover_config_files()
        config = to_config(build_config(load_hierarchical_config()), overrides)
    except ValueError as e:
        raise _fail(f"Configuration error: {e}", REQUIRED_ENV_HINT) from e

    sources = []
    if config_files:
        sources.append("config files: " + ", ".join(map(str, config_files)))
    if overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    _stderr_print(f"  Configuration loaded from: {', '.join(sources)}")
    _stderr_print(f"  Vault: {config.vault_name} ({config.vault_path})")

    _stderr_print("  Checking remote store connection...")
    try:
        sync = VaultSync(config)
        reachable = await sync.ping()
    except Exception as e:
        raise _fail(
            f"Sync service failed to start: {e}",
            "See the log file for details.",
        ) from e
    if not reachable:
        raise _fail(
            f"Remote store at {config.server_url} is unreachable",
            "Check VAULT_SYNC_SERVER_URL and network access.",
        )

    logger.info(
        "Connected to %s as vault %s", config.server_url, config.vault_name
    )
    _stderr_print(f"  Connected to {config.server_url}")
    _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"sync": sync}

    logger.info("MCP server shutting down")
    _stderr_print("Vault Sync MCP Server shutting down.")
