"""Lease lock manager for a single lock table."""

from __future__ import annotations

import asyncio
import datetime as dt
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Dict, Mapping, Optional, Set, TypeVar

from leaselock.core.codec import EXPIRES_COLUMN, LockRowCodec, to_unix_nano
from leaselock.core.errors import (
    ConditionalCheckFailedError,
    LeaseLostError,
    LockError,
    LockStoreError,
    MalformedRowError,
    ReleaseConflictError,
)
from leaselock.core.handle import LockHandle
from leaselock.core.models import AcquireResult, LockFilter, LockListing, LockRow, utcnow
from leaselock.core.scope import CancelScope
from leaselock.core.settings import LockTableSettings
from leaselock.core.tokens import LockRegistry
from leaselock.services.audit_logger import AuditEvent, AuditLogger, AuditRecord
from leaselock.services.log_links import holder_log_ref_from_environment
from leaselock.stores.base import ExpiryComparison, ExpiryFilter, LockStore
from leaselock.utils.logging import get_logger

# A conflicting row can disappear between the conditional put and the read
# back; retry the put this many times before giving up.
_ACQUIRE_ATTEMPTS = 2

T = TypeVar("T")


class LockManager:
    """Acquires, renews and releases leases on one lock table."""

    def __init__(
        self,
        store: LockStore,
        settings: LockTableSettings,
        *,
        registry: Optional[LockRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.registry = registry or LockRegistry()
        self.codec = LockRowCodec(key_column=settings.key_column, version_column=settings.version_column)
        self.logger = get_logger("LockManager")
        self._audit = audit_logger
        self._lease = dt.timedelta(seconds=settings.lease_duration_seconds)
        self._background: Set["asyncio.Task[None]"] = set()

    @property
    def lease_duration(self) -> dt.timedelta:
        return self._lease

    @property
    def heartbeat_interval(self) -> float:
        return self.settings.heartbeat_interval_seconds

    # -- acquire -----------------------------------------------------------

    async def acquire(
        self,
        key: str,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        scope: Optional[CancelScope] = None,
        holder_log_ref: Optional[str] = None,
    ) -> AcquireResult:
        """Try to take the lease on ``key`` without waiting.

        Contention is not an error: the current holder's row comes back in
        ``AcquireResult.existing``. Store faults are raised unchanged.
        """
        if not key:
            raise ValueError("key must not be empty")
        meta = self._normalize_metadata(metadata)
        log_ref = holder_log_ref or holder_log_ref_from_environment()

        for _ in range(_ACQUIRE_ATTEMPTS):
            version = self.registry.next_token(key)
            acquired_at = utcnow()
            row = LockRow(
                key=key,
                fencing_token=version,
                acquired_at=acquired_at,
                expires_at=acquired_at + self._lease,
                holder_log_ref=log_ref,
                metadata=meta,
            )
            try:
                await self._scoped(
                    scope,
                    self.store.put_if_absent_or_expired(
                        key, self.codec.encode(row), now_ns=to_unix_nano(utcnow())
                    ),
                )
            except ConditionalCheckFailedError:
                existing = await self._scoped(scope, self.get_lock(key))
                if existing is None:
                    self.logger.debug("Lock row for %s vanished after conflict; retrying", key)
                    continue
                self.logger.info(
                    "Distributed lock acquisition failed, lock already held "
                    "(lock_key=%s lock_version=%s existing_version=%s existing_acquired=%s "
                    "existing_active=%s existing_logs=%s)",
                    key,
                    version,
                    existing.fencing_token,
                    existing.acquired_at.isoformat(),
                    existing.active,
                    existing.holder_log_ref,
                )
                await self._record(
                    AuditEvent.CONTENDED,
                    key,
                    version,
                    existing_version=existing.fencing_token,
                    existing_logs=existing.holder_log_ref,
                )
                return AcquireResult(scope=scope, handle=None, existing=existing)

            handle = self._start_handle(row, scope)
            self.logger.info("Distributed lock acquired (lock_key=%s lock_version=%s)", key, version)
            await self._record(AuditEvent.ACQUIRED, key, version, expires_at=row.expires_at, logs=log_ref)
            return AcquireResult(scope=handle.scope, handle=handle, existing=None)

        raise LockStoreError(f"lock row for '{key}' kept changing during acquisition")

    def _start_handle(self, row: LockRow, parent: Optional[CancelScope]) -> LockHandle:
        # Two independent signals: one stops the heartbeat, the other tells
        # dependents the lease is gone.
        release_scope = CancelScope(parent, name=f"release:{row.key}")
        propagation_scope = CancelScope(parent, name=f"lock:{row.key}")
        handle = LockHandle(
            self,
            row,
            release_scope=release_scope,
            propagation_scope=propagation_scope,
            heartbeat_interval=self.heartbeat_interval,
        )
        handle._start()
        return handle

    @staticmethod
    async def _scoped(scope: Optional[CancelScope], awaitable: Awaitable[T]) -> T:
        if scope is None:
            return await awaitable
        return await scope.run(awaitable)

    @staticmethod
    def _normalize_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if not metadata:
            return {}
        try:
            return json.loads(json.dumps(dict(metadata)))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"lock metadata must be JSON serializable: {exc}") from exc

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        scope: Optional[CancelScope] = None,
    ) -> AsyncIterator[AcquireResult]:
        """Acquire ``key`` for the duration of an ``async with`` block.

        The block always runs; check ``result.acquired``. A held lease is
        released on exit.
        """
        result = await self.acquire(key, metadata, scope=scope)
        try:
            yield result
        finally:
            if result.handle is not None and not result.handle.released:
                await self.release(result.handle)

    # -- heartbeat ---------------------------------------------------------

    async def _renew(self, handle: LockHandle) -> None:
        self.logger.debug(
            "Distributed lock heartbeat (lock_key=%s lock_version=%s)", handle.key, handle.fencing_token
        )
        expires_at = utcnow() + self._lease
        try:
            await self.store.update_expiry(
                handle.key, fencing_token=handle.fencing_token, expires_ns=to_unix_nano(expires_at)
            )
        except ConditionalCheckFailedError:
            existing: Optional[LockRow] = None
            try:
                existing = await self.get_lock(handle.key)
            except LockError as exc:
                self.logger.error("Could not read lock row %s after losing it: %s", handle.key, exc)
            raise LeaseLostError(handle.key, handle.fencing_token, existing) from None
        handle._mark_renewed(expires_at)

    def _on_heartbeat_failure(self, handle: LockHandle, error: LockError) -> None:
        if isinstance(error, LeaseLostError):
            self.logger.error("%s", error)
            event = AuditEvent.LOST
        else:
            self.logger.error(
                "Distributed lock heartbeat stopped (lock_key=%s lock_version=%s): %s",
                handle.key,
                handle.fencing_token,
                error,
            )
            event = AuditEvent.HEARTBEAT_FAILED
        if self._audit:
            details: Dict[str, Any] = {"error": str(error), "renewals": handle.renewals}
            if isinstance(error, LeaseLostError) and error.existing is not None:
                details["existing_version"] = error.existing.fencing_token
                details["existing_logs"] = error.existing.holder_log_ref
            task = asyncio.get_running_loop().create_task(
                self._record(event, handle.key, handle.fencing_token, **details)
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    # -- release -----------------------------------------------------------

    async def release(self, handle: LockHandle) -> None:
        """Void the lease early.

        A heartbeat failure is raised in preference to the release outcome.
        Otherwise a fencing mismatch raises ``ReleaseConflictError``.
        """
        if handle.manager is not self:
            raise ValueError("handle belongs to a different LockManager")
        if handle.released:
            raise ReleaseConflictError(handle.key, handle.fencing_token)

        heartbeat_error = await handle._stop_heartbeat()
        try:
            await self.store.update_expiry(
                handle.key, fencing_token=handle.fencing_token, expires_ns=to_unix_nano(utcnow())
            )
        except ConditionalCheckFailedError as exc:
            if heartbeat_error is not None:
                raise heartbeat_error
            raise ReleaseConflictError(handle.key, handle.fencing_token) from exc
        except LockStoreError:
            if heartbeat_error is not None:
                raise heartbeat_error
            raise

        if heartbeat_error is not None:
            raise heartbeat_error
        self.logger.info(
            "Distributed lock released (lock_key=%s lock_version=%s)", handle.key, handle.fencing_token
        )
        await self._record(AuditEvent.RELEASED, handle.key, handle.fencing_token, renewals=handle.renewals)

    # -- queries -----------------------------------------------------------

    async def get_lock(self, key: str) -> Optional[LockRow]:
        """Consistent read of one lock row; None when the key was never locked."""
        item = await self.store.get(key)
        if item is None:
            return None
        return self.codec.decode(item, key_hint=key)

    async def list_locks(self, lock_filter: LockFilter = LockFilter.ALL) -> LockListing:
        now = utcnow()
        where: Optional[ExpiryFilter] = None
        if lock_filter is LockFilter.ACTIVE:
            where = ExpiryFilter(EXPIRES_COLUMN, ExpiryComparison.AFTER, to_unix_nano(now))
        elif lock_filter is LockFilter.EXPIRED:
            where = ExpiryFilter(EXPIRES_COLUMN, ExpiryComparison.AT_OR_BEFORE, to_unix_nano(now))

        listing = LockListing()
        async for page in self.store.scan(page_size=self.settings.scan_page_size, where=where):
            for item in page:
                key_hint = item.get(self.settings.key_column)
                try:
                    row = self.codec.decode(item, key_hint=key_hint if isinstance(key_hint, str) else None)
                except MalformedRowError as exc:
                    self.logger.error("Skipping malformed lock row: %s", exc)
                    listing.malformed.append(exc)
                    continue
                if lock_filter is LockFilter.ACTIVE and not row.is_active(now):
                    continue
                if lock_filter is LockFilter.EXPIRED and row.is_active(now):
                    continue
                listing.locks[row.key] = row
        return listing

    async def get_all_locks(self) -> Dict[str, LockRow]:
        return (await self.list_locks(LockFilter.ALL)).locks

    async def get_active_locks(self) -> Dict[str, LockRow]:
        return (await self.list_locks(LockFilter.ACTIVE)).locks

    async def get_expired_locks(self) -> Dict[str, LockRow]:
        return (await self.list_locks(LockFilter.EXPIRED)).locks

    async def close(self) -> None:
        await self.store.close()

    async def _record(self, event: AuditEvent, key: str, fencing_token: str, **details: Any) -> None:
        if not self._audit:
            return
        record = AuditRecord(
            event=event, table=self.settings.table, key=key, fencing_token=fencing_token, details=details
        )
        try:
            await self._audit.record(record)
        except Exception:
            self.logger.debug("Failed to persist audit log", exc_info=True)
