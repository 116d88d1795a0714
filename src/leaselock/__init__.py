"""Lease-based distributed locks over a conditional-write key-value store."""

__all__ = ["__version__"]

__version__ = "0.1.0"
