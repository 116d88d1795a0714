from __future__ import annotations

import asyncio

import pytest

from leaselock.core.errors import LeaseLostError
from leaselock.core.scope import CancelScope


def test_cancel_cascades_to_children_only():
    parent = CancelScope(name="parent")
    child = parent.child(name="child")
    sibling = parent.child(name="sibling")

    child.cancel()
    assert child.cancelled
    assert not parent.cancelled
    assert not sibling.cancelled

    reason = RuntimeError("shutdown")
    parent.cancel(reason)
    assert sibling.cancelled
    assert sibling.reason is reason
    assert child.reason is None


def test_child_of_cancelled_parent_starts_cancelled():
    parent = CancelScope()
    parent.cancel()

    assert parent.child().cancelled


@pytest.mark.asyncio
async def test_run_returns_result_when_not_cancelled():
    scope = CancelScope()

    async def work() -> int:
        await asyncio.sleep(0)
        return 7

    assert await scope.run(work()) == 7


@pytest.mark.asyncio
async def test_run_raises_reason_and_cancels_work():
    scope = CancelScope()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def work() -> None:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    async def lose_lease() -> None:
        await started.wait()
        scope.cancel(LeaseLostError("job", "v-0"))

    with pytest.raises(LeaseLostError):
        await asyncio.gather(scope.run(work()), lose_lease())
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_wait_returns_after_cancel():
    scope = CancelScope()
    asyncio.get_running_loop().call_later(0.01, scope.cancel)

    await asyncio.wait_for(scope.wait(), timeout=1)
    assert scope.cancelled
