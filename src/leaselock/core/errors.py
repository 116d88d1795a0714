"""Exception hierarchy for the lease lock protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from leaselock.core.models import LockRow


class LockError(Exception):
    """Base class for every error raised by leaselock."""


class LockStoreError(LockError):
    """Transport or store failure raised by a store adapter."""


class ConditionalCheckFailedError(LockStoreError):
    """The store rejected a conditional write because its predicate did not hold."""

    def __init__(self, key: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"conditional check failed for '{key}'")
        self.key = key


class MalformedRowError(LockError):
    """A persisted lock row could not be decoded."""

    def __init__(self, key: Optional[str], reason: str) -> None:
        label = key if key is not None else "<unknown>"
        super().__init__(f"malformed lock row '{label}': {reason}")
        self.key = key
        self.reason = reason


class LeaseLostError(LockError):
    """The heartbeat found the row fenced by another acquisition."""

    def __init__(self, key: str, fencing_token: str, existing: Optional["LockRow"] = None) -> None:
        message = f"distributed lock '{key}' has been lost (version {fencing_token})"
        if existing is not None:
            message += (
                f"; now held by version {existing.fencing_token}"
                f" acquired {existing.acquired_at.isoformat()}"
                f" active={existing.active}"
            )
            if existing.holder_log_ref:
                message += f" logs={existing.holder_log_ref}"
        super().__init__(message)
        self.key = key
        self.fencing_token = fencing_token
        self.existing = existing


class ReleaseConflictError(LockError):
    """Release found the row missing or owned by a different fencing token."""

    def __init__(self, key: str, fencing_token: str) -> None:
        super().__init__(
            f"could not unlock distributed lock '{key}', as it is not currently locked by this process"
        )
        self.key = key
        self.fencing_token = fencing_token


class LockHandleClosedError(LockError):
    """The handle was used after it was released or lost."""

    def __init__(self, key: str, state: str) -> None:
        super().__init__(f"lock handle for '{key}' is no longer usable (state={state})")
        self.key = key
        self.state = state


class HeartbeatCancelledError(LockError):
    """The heartbeat scope was cancelled while the lock was still held."""

    def __init__(self, key: str) -> None:
        super().__init__(f"heartbeat for '{key}' was cancelled without the lock being released")
        self.key = key


class HeartbeatCrashedError(LockError):
    """An unexpected exception escaped the heartbeat loop."""

    def __init__(self, key: str, cause: BaseException) -> None:
        super().__init__(f"heartbeat for '{key}' crashed: {cause!r}")
        self.key = key
