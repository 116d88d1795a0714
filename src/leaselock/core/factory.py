"""Wiring helpers that build stores and managers from runtime settings."""

from __future__ import annotations

from typing import Optional

from leaselock.core.manager import LockManager
from leaselock.core.settings import RuntimeSettings
from leaselock.core.tokens import LockRegistry
from leaselock.services.audit_logger import AuditLogger
from leaselock.stores.base import LockStore
from leaselock.stores.memory import InMemoryLockStore
from leaselock.utils.logging import get_logger

logger = get_logger("LockFactory")


def create_lock_store(settings: RuntimeSettings) -> LockStore:
    table = settings.table
    if settings.backend == "redis":
        # Imported lazily so the memory backend works without a Redis server.
        from leaselock.stores.redis import RedisLockStore

        logger.info("Using Redis lock store for table %s", table.table)
        return RedisLockStore(
            table=table.table,
            version_column=table.version_column,
            url=settings.redis.url,
            key_prefix=settings.redis.key_prefix,
        )
    logger.info("Using in-memory lock store for table %s", table.table)
    return InMemoryLockStore(version_column=table.version_column)


def create_lock_manager(
    settings: RuntimeSettings,
    *,
    registry: Optional[LockRegistry] = None,
    store: Optional[LockStore] = None,
) -> LockManager:
    audit_logger = AuditLogger(settings.audit_log_path) if settings.audit_log_path else None
    return LockManager(
        store or create_lock_store(settings),
        settings.table,
        registry=registry,
        audit_logger=audit_logger,
    )
