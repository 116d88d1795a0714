from __future__ import annotations

import asyncio
import datetime as dt

import pytest
from fastapi.testclient import TestClient

from leaselock.app.main import create_app
from leaselock.core.manager import LockManager
from leaselock.core.models import LockRow, utcnow
from leaselock.core.settings import LockTableSettings, RuntimeSettings
from leaselock.core.tokens import LockRegistry
from leaselock.stores.memory import InMemoryLockStore


@pytest.fixture
def client():
    settings = RuntimeSettings(table=LockTableSettings(table="api-locks"))
    store = InMemoryLockStore(version_column=settings.table.version_column)
    manager = LockManager(store, settings.table, registry=LockRegistry("api"))

    async def seed() -> None:
        now = utcnow()
        for key, offset in (("live", 60), ("stale", -60)):
            row = LockRow(
                key=key,
                fencing_token=f"{key}-0",
                acquired_at=now - dt.timedelta(minutes=5),
                expires_at=now + dt.timedelta(seconds=offset),
                metadata={"job": key},
            )
            await store.put_raw(key, manager.codec.encode(row))
        await store.put_raw("junk", {"LockKey": "junk"})

    asyncio.run(seed())
    with TestClient(create_app(settings, manager=manager)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "backend": "memory", "table": "api-locks"}


def test_list_all_locks_reports_malformed_rows(client):
    body = client.get("/locks").json()

    assert body["state"] == "all"
    assert [lock["key"] for lock in body["locks"]] == ["live", "stale"]
    assert body["malformed"][0]["key"] == "junk"


@pytest.mark.parametrize("state, keys", [("active", ["live"]), ("expired", ["stale"])])
def test_list_locks_by_state(client, state, keys):
    body = client.get("/locks", params={"state": state}).json()

    assert [lock["key"] for lock in body["locks"]] == keys
    assert all(lock["active"] is (state == "active") for lock in body["locks"])


def test_get_single_lock(client):
    response = client.get("/locks/live")

    assert response.status_code == 200
    body = response.json()
    assert body["version"] == "live-0"
    assert body["metadata"] == {"job": "live"}
    assert body["active"] is True


def test_missing_and_malformed_lock_rows(client):
    assert client.get("/locks/nope").status_code == 404
    assert client.get("/locks/junk").status_code == 422


def test_invalid_state_is_rejected(client):
    assert client.get("/locks", params={"state": "queued"}).status_code == 422
