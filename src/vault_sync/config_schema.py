"""YAML configuration schema for vault-sync.

The YAML document has four sections, all optional::

    remote:
      server_url: https://auth.example.com
      refresh_token: ${VAULT_SYNC_REFRESH_TOKEN}
    vault:
      path: ~/Notes
      name: Notes
    sync:
      max_parallel_requests: 5
      trash_option: local
    logging:
      level: INFO

Usage:
    from vault_sync.config_schema import build_config, to_fallbacks

    unified = build_config(load_hierarchical_config())
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


class RemoteConfig(BaseModel):
    """Remote store and token server settings."""

    server_url: str | None = Field(
        default=None, description="Token server URL"
    )
    refresh_token: str | None = Field(
        default=None, description="Refresh token"
    )
    api_url: str | None = Field(
        default=None, description="Remote store API base URL"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )

    model_config = {"frozen": True}


class VaultConfig(BaseModel):
    """Local vault location and layout."""

    path: str | None = Field(default=None, description="Vault directory")
    name: str | None = Field(
        default=None, description="Vault name used to scope remote objects"
    )
    config_dir: str = Field(
        default=".obsidian", description="Vault configuration directory"
    )
    plugin_id: str = Field(
        default="vault-sync",
        description="Folder under <config_dir>/plugins holding sync state",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine tuning."""

    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the remote store (1-100)",
    )
    trash_option: Literal["local", "none"] = Field(
        default="local",
        description="'local' moves deleted files to .trash, 'none' deletes them",
    )
    auto_scan_first_sync: bool = Field(
        default=True,
        description="Queue every local file when the remote vault is empty",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log line format"
    )

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """Top-level configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the merged dict from ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the YAML sections into the fallback dict ``load_config`` reads.

    Unset optional values are omitted so that environment variables and
    built-in defaults still apply.
    """
    flat: dict = {}
    for section in (unified.remote, unified.vault, unified.sync):
        for key, value in section.model_dump().items():
            if value is not None:
                flat[key] = value
    return flat


def to_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Build a validated ``Config`` from YAML values plus CLI overrides.

    Precedence is the one of ``load_config``: CLI override > environment >
    YAML > default.

    CLI overrides dict keys: server_url, refresh_token, vault_path,
    vault_name, insecure, debug.
    """
    # Import here to avoid circular imports
    from .config import load_config

    overrides = cli_overrides or {}
    return load_config(
        server_url=overrides.get("server_url"),
        refresh_token=overrides.get("refresh_token"),
        vault_path=overrides.get("vault_path"),
        vault_name=overrides.get("vault_name"),
        insecure=overrides.get("insecure", False),
        debug=overrides.get("debug", False),
        yaml_fallbacks=to_fallbacks(unified),
    )
