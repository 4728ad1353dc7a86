"""Local vault access: entries, filesystem primitives, config file selection."""

from .entries import VaultEntry, VaultFile, VaultFolder
from .local import LocalVault

__all__ = ["LocalVault", "VaultEntry", "VaultFile", "VaultFolder"]
