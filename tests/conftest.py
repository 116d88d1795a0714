from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

import pytest

from leaselock.core.errors import LockStoreError
from leaselock.core.manager import LockManager
from leaselock.core.settings import LockTableSettings
from leaselock.core.tokens import LockRegistry
from leaselock.stores.memory import InMemoryLockStore

LEASE_SECONDS = 0.2


class FlakyLockStore(InMemoryLockStore):
    """In-memory store whose renewals can be made to fail on demand."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_updates = False
        self.update_exception: Optional[BaseException] = None
        self.update_calls = 0

    async def update_expiry(self, key: str, *, fencing_token: str, expires_ns: int) -> None:
        self.update_calls += 1
        if self.fail_updates:
            raise LockStoreError("connection reset by peer")
        if self.update_exception is not None:
            raise self.update_exception
        await super().update_expiry(key, fencing_token=fencing_token, expires_ns=expires_ns)


@pytest.fixture
def table_settings() -> LockTableSettings:
    return LockTableSettings(table="test-locks", lease_duration_seconds=LEASE_SECONDS, scan_page_size=2)


@pytest.fixture
def store(table_settings: LockTableSettings) -> FlakyLockStore:
    return FlakyLockStore(version_column=table_settings.version_column)


@pytest.fixture
def make_manager(store: FlakyLockStore, table_settings: LockTableSettings) -> Callable[..., LockManager]:
    def factory(run_id: Optional[str] = None, **kwargs) -> LockManager:
        return LockManager(store, table_settings, registry=LockRegistry(run_id), **kwargs)

    return factory


@pytest.fixture
def manager(make_manager: Callable[..., LockManager]) -> LockManager:
    return make_manager("holder-a")


async def wait_until(predicate: Callable[[], bool], *, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def utc(seconds: float) -> dt.datetime:
    return dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc) + dt.timedelta(seconds=seconds)


@pytest.fixture
def codec_log(caplog: pytest.LogCaptureFixture):
    """caplog wired to the codec logger, which does not propagate to root."""
    logger = logging.getLogger("leaselock.LockRowCodec")
    logger.addHandler(caplog.handler)
    try:
        yield caplog
    finally:
        logger.removeHandler(caplog.handler)
