"""Live lock handle and its heartbeat task."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import TYPE_CHECKING, Any, Dict, Optional

from leaselock.core.errors import (
    HeartbeatCancelledError,
    HeartbeatCrashedError,
    LeaseLostError,
    LockError,
    LockHandleClosedError,
)
from leaselock.core.models import HeartbeatState, LockRow
from leaselock.core.scope import CancelScope

if TYPE_CHECKING:
    from leaselock.core.manager import LockManager


class LockHandle:
    """A lease held by this process.

    The handle owns two scopes: ``_release_scope`` stops the heartbeat and is
    cancelled by ``release()`` (or by the caller's parent scope), while
    ``scope`` is the propagation scope handed to dependent work and is only
    cancelled when the heartbeat fails.
    """

    def __init__(
        self,
        manager: "LockManager",
        row: LockRow,
        *,
        release_scope: CancelScope,
        propagation_scope: CancelScope,
        heartbeat_interval: float,
    ) -> None:
        self._manager = manager
        self._row = row
        self._expires_at = row.expires_at
        self._release_scope = release_scope
        self._scope = propagation_scope
        self._interval = heartbeat_interval
        self._held = True
        self._released = False
        self._state = HeartbeatState.RUNNING
        self._error: Optional[LockError] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._renewals = 0

    # -- lock data ---------------------------------------------------------

    @property
    def key(self) -> str:
        return self._row.key

    @property
    def fencing_token(self) -> str:
        return self._row.fencing_token

    @property
    def acquired_at(self) -> dt.datetime:
        return self._row.acquired_at

    @property
    def expires_at(self) -> dt.datetime:
        """Expiry as last written by this handle."""
        return self._expires_at

    @property
    def holder_log_ref(self) -> Optional[str]:
        return self._row.holder_log_ref

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self._row.metadata)

    @property
    def info(self) -> LockRow:
        return self._row.model_copy(update={"expires_at": self._expires_at})

    # -- lifecycle ---------------------------------------------------------

    @property
    def manager(self) -> "LockManager":
        return self._manager

    @property
    def scope(self) -> CancelScope:
        return self._scope

    @property
    def held(self) -> bool:
        return self._held

    @property
    def released(self) -> bool:
        return self._released

    @property
    def state(self) -> HeartbeatState:
        return self._state

    @property
    def error(self) -> Optional[LockError]:
        return self._error

    @property
    def renewals(self) -> int:
        return self._renewals

    def ensure_held(self) -> None:
        """Raise if the lease can no longer be relied on."""
        if self._held:
            return
        if self._error is not None:
            raise self._error
        raise LockHandleClosedError(self.key, self._state.value)

    async def release(self) -> None:
        await self._manager.release(self)

    def _start(self) -> None:
        self._task = asyncio.create_task(
            self._run_heartbeat(), name=f"lock-heartbeat-{self.key}-{self.fencing_token}"
        )

    def _mark_renewed(self, expires_at: dt.datetime) -> None:
        self._expires_at = expires_at
        self._renewals += 1

    async def _stop_heartbeat(self) -> Optional[LockError]:
        """Stop renewing for a voluntary release and return the heartbeat's error, if any."""
        self._released = True
        self._held = False
        self._release_scope.cancel()
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self._error

    # -- heartbeat ---------------------------------------------------------

    async def _run_heartbeat(self) -> None:
        try:
            await self._heartbeat_loop()
        except LeaseLostError as exc:
            self._fail(HeartbeatState.LOST, exc)
        except LockError as exc:
            self._fail(HeartbeatState.CRASHED, exc)
        except asyncio.CancelledError:
            if self._held:
                self._fail(HeartbeatState.CRASHED, HeartbeatCancelledError(self.key))
            else:
                self._state = HeartbeatState.RELEASED
            raise
        except Exception as exc:
            error = HeartbeatCrashedError(self.key, exc)
            error.__cause__ = exc
            self._fail(HeartbeatState.CRASHED, error)

    async def _heartbeat_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._release_scope.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                await self._renew_once()
                continue

            if self._held:
                # Parent scope cancelled without a release.
                raise HeartbeatCancelledError(self.key)
            self._state = HeartbeatState.RELEASED
            return

    async def _renew_once(self) -> None:
        renewal = asyncio.ensure_future(self._manager._renew(self))
        stopper = asyncio.ensure_future(self._release_scope.wait())
        try:
            await asyncio.wait({renewal, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            renewal.cancel()
            raise
        finally:
            stopper.cancel()

        if renewal.done():
            renewal.result()
            return
        if not self._held:
            # A release is waiting on us; let the renewal land before the final write.
            await renewal
            return
        renewal.cancel()
        await asyncio.gather(renewal, return_exceptions=True)
        raise HeartbeatCancelledError(self.key)

    def _fail(self, state: HeartbeatState, error: LockError) -> None:
        self._state = state
        self._error = error
        self._held = False
        self._scope.cancel(error)
        self._manager._on_heartbeat_failure(self, error)

    def __repr__(self) -> str:
        return (
            f"LockHandle(key={self.key!r}, version={self.fencing_token!r}, "
            f"state={self._state.value}, held={self._held})"
        )
