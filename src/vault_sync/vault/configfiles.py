"""Selection of vault configuration files that are synced with the remote.

Top-level files of the config folder are synced except for the per-device
layout files.  Inside each plugin folder only the plugin's code, styles,
manifest and settings are synced.  The sync engine's own state folder is
never part of the set.
"""

from __future__ import annotations

from collections.abc import Iterable

from .entries import VaultFile, base_name
from .local import LocalVault

BLACKLISTED_CONFIG_FILES = frozenset(
    {"graph.json", "workspace.json", "workspace-mobile.json"}
)
WHITELISTED_PLUGIN_FILES = frozenset(
    {"manifest.json", "styles.css", "main.js", "data.json"}
)


def _files_in(vault: LocalVault, rel: str) -> list[str]:
    return [
        child
        for child in vault.list_children(rel)
        if vault.path_of(child).is_file()
    ]


def candidate_config_files(
    vault: LocalVault, exclude_dirs: Iterable[str] = ()
) -> list[str]:
    """All config files eligible for sync, regardless of modification time.

    Args:
        vault: The local vault.
        exclude_dirs: Vault-relative folders whose files are left out.
    """
    excluded = tuple(d.rstrip("/") + "/" for d in exclude_dirs)
    candidates = [
        path
        for path in _files_in(vault, vault.config_dir)
        if base_name(path) not in BLACKLISTED_CONFIG_FILES
    ]
    for plugin in vault.list_children(f"{vault.config_dir}/plugins"):
        if not vault.path_of(plugin).is_dir():
            continue
        candidates.extend(
            path
            for path in _files_in(vault, plugin)
            if base_name(path) in WHITELISTED_PLUGIN_FILES
        )
    return sorted(p for p in candidates if not p.startswith(excluded))


def config_files_to_sync(
    vault: LocalVault,
    since: int,
    exclude_dirs: Iterable[str] = (),
) -> list[str]:
    """Config files modified strictly after *since* (epoch ms)."""
    changed = []
    for path in candidate_config_files(vault, exclude_dirs):
        entry = vault.get_entry(path)
        match entry:
            case VaultFile(mtime=mtime) if mtime > since:
                changed.append(path)
            case _:
                pass
    return changed
