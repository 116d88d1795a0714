"""Core lease lock primitives."""

from .errors import (
    ConditionalCheckFailedError,
    HeartbeatCancelledError,
    HeartbeatCrashedError,
    LeaseLostError,
    LockError,
    LockHandleClosedError,
    LockStoreError,
    MalformedRowError,
    ReleaseConflictError,
)
from .handle import LockHandle
from .manager import LockManager
from .models import AcquireResult, HeartbeatState, LockFilter, LockListing, LockRow
from .scope import CancelScope
from .settings import LockTableSettings, RuntimeSettings
from .tokens import LockRegistry, bind_invocation

__all__ = [
    "AcquireResult",
    "CancelScope",
    "ConditionalCheckFailedError",
    "HeartbeatCancelledError",
    "HeartbeatCrashedError",
    "HeartbeatState",
    "LeaseLostError",
    "LockError",
    "LockFilter",
    "LockHandle",
    "LockHandleClosedError",
    "LockListing",
    "LockManager",
    "LockRegistry",
    "LockRow",
    "LockStoreError",
    "LockTableSettings",
    "MalformedRowError",
    "ReleaseConflictError",
    "RuntimeSettings",
    "bind_invocation",
]
