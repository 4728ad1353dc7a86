"""Batch reconciliation between a local vault and its remote object-store copy."""

__version__ = "0.4.0"
