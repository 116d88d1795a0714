from __future__ import annotations

import asyncio
import os
import uuid

import pytest

from leaselock.core.errors import ConditionalCheckFailedError
from leaselock.core.manager import LockManager
from leaselock.core.models import HeartbeatState, LockFilter
from leaselock.core.settings import LockTableSettings
from leaselock.core.tokens import LockRegistry
from leaselock.stores.redis import RedisLockStore

REDIS_URL = os.getenv("LEASELOCK_TEST_REDIS_URL")

pytestmark = pytest.mark.skipif(not REDIS_URL, reason="LEASELOCK_TEST_REDIS_URL not set")


def _store(table: str) -> RedisLockStore:
    return RedisLockStore(table=table, version_column="LockVersion", url=REDIS_URL, key_prefix="leaselock-test")


@pytest.mark.asyncio
async def test_conditional_put_and_update():
    store = _store(f"t-{uuid.uuid4().hex}")
    row = {"LockKey": "k", "LockVersion": "v-0", "AcquiredUnixNano": 1, "ExpiresUnixNano": 100, "Metadata": "{}"}
    try:
        await store.put_if_absent_or_expired("k", row, now_ns=50)
        with pytest.raises(ConditionalCheckFailedError):
            await store.put_if_absent_or_expired("k", {**row, "LockVersion": "v-1"}, now_ns=99)
        await store.put_if_absent_or_expired("k", {**row, "LockVersion": "v-1"}, now_ns=100)

        with pytest.raises(ConditionalCheckFailedError):
            await store.update_expiry("k", fencing_token="v-0", expires_ns=500)
        await store.update_expiry("k", fencing_token="v-1", expires_ns=500)

        stored = await store.get("k")
        assert stored["LockVersion"] == "v-1"
        assert stored["ExpiresUnixNano"] == "500"
    finally:
        await store._redis.delete(store.redis_key("k"))
        await store.close()


@pytest.mark.asyncio
async def test_manager_round_trip_against_redis():
    table = f"t-{uuid.uuid4().hex}"
    settings = LockTableSettings(table=table, lease_duration_seconds=0.4)
    holder = LockManager(_store(table), settings, registry=LockRegistry("a"))
    rival = LockManager(_store(table), settings, registry=LockRegistry("b"))
    try:
        first = await holder.acquire("job", {"n": 1})
        assert first.acquired
        second = await rival.acquire("job")
        assert second.existing.fencing_token == first.handle.fencing_token

        await asyncio.sleep(0.5)
        assert first.handle.state is HeartbeatState.RUNNING
        assert first.handle.renewals >= 1
        assert set((await rival.list_locks(LockFilter.ACTIVE)).locks) == {"job"}

        await first.handle.release()
        assert set((await rival.list_locks(LockFilter.EXPIRED)).locks) == {"job"}
    finally:
        await holder.store._redis.delete(holder.store.redis_key("job"))
        await holder.close()
        await rival.close()
