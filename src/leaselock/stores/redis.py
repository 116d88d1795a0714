"""Redis-backed lock store using Lua scripts for the conditional writes."""

from __future__ import annotations

import os
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from leaselock.core.codec import EXPIRES_COLUMN
from leaselock.core.errors import ConditionalCheckFailedError, LockStoreError
from leaselock.stores.base import ExpiryFilter, RawRow

# Unix-nano timestamps exceed the precision of Lua numbers, so they are
# compared as decimal strings (equal length first, then lexicographically).
_NUMERIC_LE = """
local function le(a, b)
    if #a ~= #b then
        return #a < #b
    end
    return a <= b
end
"""

_PUT_IF_ABSENT_OR_EXPIRED = _NUMERIC_LE + """
if redis.call('exists', KEYS[1]) == 1 then
    local expires = redis.call('hget', KEYS[1], ARGV[1])
    if not expires or not string.match(expires, '^%d+$') or not le(expires, ARGV[2]) then
        return 0
    end
    redis.call('del', KEYS[1])
end
redis.call('hset', KEYS[1], unpack(ARGV, 3))
return 1
"""

_UPDATE_IF_VERSION = """
if redis.call('hget', KEYS[1], ARGV[1]) == ARGV[2] then
    redis.call('hset', KEYS[1], ARGV[3], ARGV[4])
    return 1
end
return 0
"""


class RedisLockStore:
    """Lock table stored as one Redis hash per key under ``<prefix>:<table>:``."""

    def __init__(
        self,
        *,
        table: str,
        version_column: str,
        url: Optional[str] = None,
        key_prefix: str = "leaselock",
        expires_column: str = EXPIRES_COLUMN,
        redis: Optional[Redis] = None,
    ) -> None:
        self._redis = redis or Redis.from_url(
            url or os.getenv("REDIS_URL", "redis://localhost:6379/0"), decode_responses=True
        )
        self._namespace = f"{key_prefix}:{table}:"
        self._version_column = version_column
        self._expires_column = expires_column
        self._put_script = self._redis.register_script(_PUT_IF_ABSENT_OR_EXPIRED)
        self._update_script = self._redis.register_script(_UPDATE_IF_VERSION)

    def redis_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    @staticmethod
    def _flatten(row: Mapping[str, Any]) -> List[str]:
        args: List[str] = []
        for column, value in row.items():
            args.append(column)
            args.append(str(value))
        return args

    async def get(self, key: str) -> Optional[RawRow]:
        try:
            data: Dict[str, Any] = await self._redis.hgetall(self.redis_key(key))
        except RedisError as exc:
            raise LockStoreError(f"redis get failed for '{key}': {exc}") from exc
        return data or None

    async def put_if_absent_or_expired(self, key: str, row: Mapping[str, Any], *, now_ns: int) -> None:
        try:
            written = await self._put_script(
                keys=[self.redis_key(key)],
                args=[self._expires_column, str(now_ns), *self._flatten(row)],
            )
        except RedisError as exc:
            raise LockStoreError(f"redis conditional put failed for '{key}': {exc}") from exc
        if not int(written):
            raise ConditionalCheckFailedError(key)

    async def update_expiry(self, key: str, *, fencing_token: str, expires_ns: int) -> None:
        try:
            updated = await self._update_script(
                keys=[self.redis_key(key)],
                args=[self._version_column, fencing_token, self._expires_column, str(expires_ns)],
            )
        except RedisError as exc:
            raise LockStoreError(f"redis conditional update failed for '{key}': {exc}") from exc
        if not int(updated):
            raise ConditionalCheckFailedError(key)

    async def scan(self, *, page_size: int = 100, where: Optional[ExpiryFilter] = None) -> AsyncIterator[List[RawRow]]:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        cursor: int = 0
        pattern = f"{self._namespace}*"
        while True:
            try:
                cursor, names = await self._redis.scan(cursor=cursor, match=pattern, count=page_size)
                page: List[RawRow] = []
                if names:
                    async with self._redis.pipeline(transaction=False) as pipe:
                        for name in names:
                            pipe.hgetall(name)
                        rows = await pipe.execute()
                    for row in rows:
                        if not row:
                            continue
                        if where is not None and not where.matches(row):
                            continue
                        page.append(row)
            except RedisError as exc:
                raise LockStoreError(f"redis scan failed: {exc}") from exc
            if page:
                yield page
            if int(cursor) == 0:
                break

    async def close(self) -> None:
        await self._redis.aclose()
