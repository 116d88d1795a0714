"""FastAPI application exposing read-only views of a lock table."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query

from leaselock.app.models import HealthState, LockListResponse, LockSummary, MalformedSummary
from leaselock.core.errors import MalformedRowError
from leaselock.core.factory import create_lock_manager
from leaselock.core.manager import LockManager
from leaselock.core.models import LockFilter, LockRow
from leaselock.core.settings import RuntimeSettings
from leaselock.utils.logging import get_logger


logger = get_logger("LockAPI")


def _summary(row: LockRow) -> LockSummary:
    return LockSummary(
        key=row.key,
        version=row.fencing_token,
        acquired_at=row.acquired_at,
        expires_at=row.expires_at,
        active=row.active,
        logs_url=row.holder_log_ref,
        metadata=row.metadata,
    )


def create_app(settings: RuntimeSettings, *, manager: Optional[LockManager] = None) -> FastAPI:
    lock_manager = manager or create_lock_manager(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("Serving lock table %s (%s backend)", settings.table.table, settings.backend)
        yield
        await lock_manager.close()

    app = FastAPI(title="leaselock", lifespan=lifespan)

    @app.get("/health", response_model=HealthState)
    async def health() -> HealthState:
        return HealthState(status="ok", backend=settings.backend, table=settings.table.table)

    @app.get("/locks", response_model=LockListResponse)
    async def list_locks(state: LockFilter = Query(default=LockFilter.ALL)) -> LockListResponse:
        listing = await lock_manager.list_locks(state)
        return LockListResponse(
            state=state.value,
            locks=[_summary(row) for _, row in sorted(listing.locks.items())],
            malformed=[MalformedSummary(key=err.key, reason=err.reason) for err in listing.malformed],
        )

    @app.get("/locks/{key}", response_model=LockSummary)
    async def get_lock(key: str) -> LockSummary:
        try:
            row = await lock_manager.get_lock(key)
        except MalformedRowError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        if row is None:
            raise HTTPException(status_code=404, detail=f"no lock row for '{key}'")
        return _summary(row)

    return app


def app_from_env() -> FastAPI:
    """ASGI factory for ``uvicorn --factory leaselock.app.main:app_from_env``."""
    config_path = Path(os.getenv("LEASELOCK_CONFIG", "config/leaselock.example.yml"))
    return create_app(RuntimeSettings.from_file(config_path))
