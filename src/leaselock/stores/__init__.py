"""Store adapters implementing the conditional-write contract."""

from .base import ExpiryComparison, ExpiryFilter, LockStore
from .memory import InMemoryLockStore

__all__ = ["ExpiryComparison", "ExpiryFilter", "InMemoryLockStore", "LockStore"]
