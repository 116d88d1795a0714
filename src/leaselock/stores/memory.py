"""In-memory lock store for tests and single-process use."""

from __future__ import annotations

import asyncio
import copy
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from leaselock.core.codec import EXPIRES_COLUMN
from leaselock.core.errors import ConditionalCheckFailedError, LockStoreError
from leaselock.stores.base import ExpiryFilter, RawRow


class InMemoryLockStore:
    """Reference implementation of the ``LockStore`` contract.

    Every operation runs under one ``asyncio.Lock`` so conditional writes are
    atomic with respect to each other. NOT shared across processes.
    """

    def __init__(self, *, version_column: str, expires_column: str = EXPIRES_COLUMN) -> None:
        self._version_column = version_column
        self._expires_column = expires_column
        self._rows: Dict[str, RawRow] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise LockStoreError("InMemoryLockStore is closed")

    async def get(self, key: str) -> Optional[RawRow]:
        self._ensure_open()
        async with self._lock:
            row = self._rows.get(key)
            return copy.deepcopy(row) if row is not None else None

    async def put_if_absent_or_expired(self, key: str, row: Mapping[str, Any], *, now_ns: int) -> None:
        self._ensure_open()
        async with self._lock:
            existing = self._rows.get(key)
            if existing is not None:
                try:
                    expires = int(existing[self._expires_column])
                except (KeyError, TypeError, ValueError):
                    raise ConditionalCheckFailedError(key) from None
                if expires > now_ns:
                    raise ConditionalCheckFailedError(key)
            self._rows[key] = dict(row)

    async def update_expiry(self, key: str, *, fencing_token: str, expires_ns: int) -> None:
        self._ensure_open()
        async with self._lock:
            existing = self._rows.get(key)
            if existing is None or existing.get(self._version_column) != fencing_token:
                raise ConditionalCheckFailedError(key)
            existing[self._expires_column] = expires_ns

    async def scan(self, *, page_size: int = 100, where: Optional[ExpiryFilter] = None) -> AsyncIterator[List[RawRow]]:
        self._ensure_open()
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        async with self._lock:
            keys = sorted(self._rows)
        for start in range(0, len(keys), page_size):
            page: List[RawRow] = []
            async with self._lock:
                for key in keys[start : start + page_size]:
                    row = self._rows.get(key)
                    if row is None:
                        continue
                    if where is not None and not where.matches(row):
                        continue
                    page.append(copy.deepcopy(row))
            if page:
                yield page

    async def put_raw(self, key: str, row: Mapping[str, Any]) -> None:
        """Write a row unconditionally. Intended for seeding and repair tooling."""
        self._ensure_open()
        async with self._lock:
            self._rows[key] = dict(row)

    async def close(self) -> None:
        self._closed = True
