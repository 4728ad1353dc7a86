"""Runtime configuration for vault-sync.

Reads connection and vault settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    VAULT_SYNC_SERVER_URL: Token server URL (required)
    VAULT_SYNC_REFRESH_TOKEN: Refresh token for the remote store (required)
    VAULT_SYNC_VAULT_PATH: Local vault directory (required)
    VAULT_SYNC_VAULT_NAME: Vault name used to scope remote objects
        (optional, default: vault directory name)
    VAULT_SYNC_API_URL: Remote store API base URL (optional)
    VAULT_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    VAULT_SYNC_DEBUG: Enable debug logging (optional, default: false)
    VAULT_SYNC_MAX_PARALLEL_REQUESTS: Max in-flight remote requests
        (optional, default: 5)
    VAULT_SYNC_TRASH_OPTION: "local" (move to .trash) or "none" (hard delete)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.googleapis.com/"
TRASH_OPTIONS = ("local", "none")


@dataclass
class Config:
    server_url: str
    refresh_token: str
    vault_path: str
    vault_name: str = ""
    api_url: str = DEFAULT_API_URL
    config_dir: str = ".obsidian"
    plugin_id: str = "vault-sync"
    trash_option: str = "local"
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5
    auto_scan_first_sync: bool = True

    @property
    def vault_root(self) -> Path:
        return Path(self.vault_path)

    @property
    def state_dir(self) -> Path:
        """Directory holding data.json and error.json inside the vault."""
        return self.vault_root / self.config_dir / "plugins" / self.plugin_id

    @property
    def state_dir_relpath(self) -> str:
        return f"{self.config_dir}/plugins/{self.plugin_id}"

    @property
    def state_relpath(self) -> str:
        """Vault-relative path of the persisted settings document."""
        return f"{self.state_dir_relpath}/data.json"


def _validate_url(value: str, label: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {label} '{value}': must start with http:// or https://"
        )
    if not urlparse(value).hostname:
        raise ValueError(
            f"Invalid {label} '{value}': URL must include a hostname"
        )
    return value


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Normalizes URLs (trailing slash on the API base, none on the token
    server) and derives ``vault_name`` from the vault directory when empty.

    Raises:
        ValueError: If a URL is malformed, the refresh token is empty, the
            vault directory does not exist, or an option is out of range.
    """
    config.server_url = _validate_url(
        config.server_url, "server URL"
    ).removesuffix("/")
    config.api_url = _validate_url(config.api_url, "API URL")
    if not config.api_url.endswith("/"):
        config.api_url += "/"

    if not config.refresh_token.strip():
        raise ValueError(
            "Refresh token cannot be empty. Set VAULT_SYNC_REFRESH_TOKEN environment variable."
        )

    vault_root = Path(config.vault_path).expanduser()
    if not vault_root.is_dir():
        raise ValueError(
            f"Vault directory not found: {config.vault_path}"
        )
    config.vault_path = str(vault_root.resolve())

    if not config.vault_name.strip():
        config.vault_name = vault_root.resolve().name

    if config.trash_option not in TRASH_OPTIONS:
        raise ValueError(
            f"Invalid trash option '{config.trash_option}': expected one of {', '.join(TRASH_OPTIONS)}"
        )

    if not (1 <= config.max_parallel_requests <= 100):
        raise ValueError(
            f"Invalid max_parallel_requests {config.max_parallel_requests}: must be between 1 and 100"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    server_url: str | None = None,
    refresh_token: str | None = None,
    vault_path: str | None = None,
    vault_name: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` first.

    Args:
        server_url: Override token server URL.
        refresh_token: Override refresh token.
        vault_path: Override vault directory.
        vault_name: Override vault name.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML ``remote``,
            ``vault`` and ``sync`` sections (see ``config_schema.to_fallbacks``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a required value is missing after checking all
            sources, or validation fails.
    """
    fb = yaml_fallbacks or {}

    final_server_url = (
        server_url or os.getenv("VAULT_SYNC_SERVER_URL") or fb.get("server_url")
    )
    if not final_server_url:
        raise ValueError(
            "Server URL not found. Set VAULT_SYNC_SERVER_URL environment variable, "
            "pass --server-url, or add 'server_url' to the remote section of config.yml."
        )

    final_token = (
        refresh_token
        or os.getenv("VAULT_SYNC_REFRESH_TOKEN")
        or fb.get("refresh_token")
    )
    if not final_token:
        raise ValueError(
            "Refresh token not found. Set VAULT_SYNC_REFRESH_TOKEN environment variable, "
            "pass --refresh-token, or add 'refresh_token' to config.yml."
        )

    final_vault_path = (
        vault_path or os.getenv("VAULT_SYNC_VAULT_PATH") or fb.get("path")
    )
    if not final_vault_path:
        raise ValueError(
            "Vault path not found. Set VAULT_SYNC_VAULT_PATH environment variable, "
            "pass --vault, or add 'path' to the vault section of config.yml."
        )

    final_vault_name = (
        vault_name or os.getenv("VAULT_SYNC_VAULT_NAME") or fb.get("name") or ""
    )
    final_api_url = (
        os.getenv("VAULT_SYNC_API_URL") or fb.get("api_url") or DEFAULT_API_URL
    )
    final_trash = (
        os.getenv("VAULT_SYNC_TRASH_OPTION") or fb.get("trash_option") or "local"
    )

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("VAULT_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("VAULT_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    max_parallel_raw = os.getenv("VAULT_SYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid VAULT_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
    elif "max_parallel_requests" in fb:
        final_max_parallel = int(fb["max_parallel_requests"])
    else:
        final_max_parallel = 5

    config = Config(
        server_url=final_server_url,
        refresh_token=final_token.strip(),
        vault_path=final_vault_path.strip(),
        vault_name=final_vault_name.strip(),
        api_url=final_api_url,
        config_dir=fb.get("config_dir", ".obsidian"),
        plugin_id=fb.get("plugin_id", "vault-sync"),
        trash_option=final_trash,
        insecure=final_insecure,
        debug=final_debug,
        max_parallel_requests=final_max_parallel,
        auto_scan_first_sync=bool(fb.get("auto_scan_first_sync", True)),
    )

    validate_config(config)

    return config
