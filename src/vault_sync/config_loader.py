"""
Config file discovery and loading for vault-sync.

YAML files are found by convention, may pull in other files with
``!include``, and may reference environment variables as ``${VAR}`` or
``${VAR:-default}``.  When several files exist the project file wins over
the global one, section by section.

Usage:
    from vault_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

PROJECT_CONFIG = Path(".vault_sync") / "config.yml"
GLOBAL_CONFIG = Path(".config") / "vault_sync" / "config.yml"

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` references in *value*.

    An unset or empty variable expands to its default, or to ``""`` when no
    default is given.  A ``${`` without a closing brace is kept as is.
    """

    def _expand(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_expand, value)


def _expand_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _expand_tree(item) for key, item in node.items()}
    if isinstance(node, list):
        return [_expand_tree(item) for item in node]
    return node


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!include``.

    A subclass keeps the constructor off the global ``yaml.SafeLoader``.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by ``!include``, relative to the including file."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_stack", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {Path(loader.name).resolve()})"
        )
    return _load_yaml(target, chain=[*chain, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml(path: Path, *, chain: list[Path] | None = None) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = chain or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Looked up, in order:
        1. the file named by ``VAULT_SYNC_CONFIG``
        2. ``.vault_sync/config.yml`` in the working directory
        3. ``~/.config/vault_sync/config.yml``
    """
    candidates: list[Path] = []
    explicit = os.environ.get("VAULT_SYNC_CONFIG")
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates.append(Path.cwd() / PROJECT_CONFIG)
    candidates.append(Path.home() / GLOBAL_CONFIG)
    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# vault-sync configuration
#
# Every value can also come from the environment:
#   VAULT_SYNC_SERVER_URL, VAULT_SYNC_REFRESH_TOKEN, VAULT_SYNC_VAULT_PATH,
#   VAULT_SYNC_VAULT_NAME, VAULT_SYNC_TRASH_OPTION
#
# remote:
#   server_url: https://auth.example.com
#   refresh_token: ${VAULT_SYNC_REFRESH_TOKEN}
#
# vault:
#   path: ~/Notes
#   name: Notes
#   config_dir: .obsidian
#
# sync:
#   max_parallel_requests: 5
#   trash_option: local
#   auto_scan_first_sync: true
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to create the starter file. Defaults to
            ``.vault_sync/config.yml`` in the working directory.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    path = target or Path.cwd() / PROJECT_CONFIG
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Files are applied from lowest to highest precedence, and each one
    replaces whole top-level sections of the previous ones.  Environment
    references are expanded after the merge.  No files means ``{}``.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = _load_yaml(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _expand_tree(merged)
