"""Abstract interface for the conditional key-value store behind a lock table."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol

RawRow = Dict[str, Any]


class ExpiryComparison(str, enum.Enum):
    AFTER = "after"
    AT_OR_BEFORE = "at_or_before"


@dataclass(frozen=True)
class ExpiryFilter:
    """Scan predicate on the expiry column.

    ``AFTER`` keeps rows expiring strictly after ``threshold_ns`` (active),
    ``AT_OR_BEFORE`` keeps the rest (expired). Rows whose expiry cannot be
    read are kept so the caller can report them as malformed.
    """

    column: str
    comparison: ExpiryComparison
    threshold_ns: int

    def matches(self, row: Mapping[str, Any]) -> bool:
        raw = row.get(self.column)
        try:
            expires = int(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return True
        if self.comparison is ExpiryComparison.AFTER:
            return expires > self.threshold_ns
        return expires <= self.threshold_ns


class LockStore(Protocol):
    """Single-row atomic operations a lock table needs from its store.

    Conditional failures raise ``ConditionalCheckFailedError``; every other
    failure raises ``LockStoreError``.
    """

    async def get(self, key: str) -> Optional[RawRow]:
        """Strongly consistent point read."""
        ...

    async def put_if_absent_or_expired(self, key: str, row: Mapping[str, Any], *, now_ns: int) -> None:
        """Write ``row`` iff no row exists for ``key`` or its expiry is ``<= now_ns``."""
        ...

    async def update_expiry(self, key: str, *, fencing_token: str, expires_ns: int) -> None:
        """Set the expiry iff the stored fencing token equals ``fencing_token``."""
        ...

    def scan(self, *, page_size: int = 100, where: Optional[ExpiryFilter] = None) -> AsyncIterator[List[RawRow]]:
        """Yield every row of the table, one page at a time."""
        ...

    async def close(self) -> None:
        ...
