"""Data models shared across the leaselock runtime."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from leaselock.core.errors import MalformedRowError
    from leaselock.core.handle import LockHandle
    from leaselock.core.scope import CancelScope


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class LockFilter(str, Enum):
    """Which rows a lock listing returns."""

    ALL = "all"
    ACTIVE = "active"
    EXPIRED = "expired"


class HeartbeatState(str, Enum):
    """Lifecycle of a handle's heartbeat task.

    RUNNING -> RELEASED | LOST | CRASHED
    """

    RUNNING = "running"
    RELEASED = "released"
    LOST = "lost"
    CRASHED = "crashed"


class LockRow(BaseModel):
    """Immutable snapshot of a persisted lock row."""

    model_config = ConfigDict(frozen=True)

    key: str
    fencing_token: str
    acquired_at: dt.datetime
    expires_at: dt.datetime
    holder_log_ref: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def is_active(self, now: Optional[dt.datetime] = None) -> bool:
        return self.expires_at > (now or utcnow())

    @property
    def active(self) -> bool:
        return self.is_active()


@dataclass(frozen=True)
class AcquireResult:
    """Outcome of a single acquisition attempt.

    Exactly one of ``handle`` and ``existing`` is set. ``scope`` is the
    propagation scope for work that depends on the lock; it is cancelled only
    when the heartbeat fails.
    """

    scope: Optional["CancelScope"]
    handle: Optional["LockHandle"]
    existing: Optional[LockRow]

    @property
    def acquired(self) -> bool:
        return self.handle is not None


@dataclass
class LockListing:
    """Rows returned by a table scan, with rows that failed to decode kept apart."""

    locks: Dict[str, LockRow] = field(default_factory=dict)
    malformed: List["MalformedRowError"] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.locks)

    def __contains__(self, key: object) -> bool:
        return key in self.locks
