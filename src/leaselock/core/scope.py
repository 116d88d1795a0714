"""Cancellation scopes used to signal lease loss to dependent work."""

from __future__ import annotations

import asyncio
import weakref
from typing import Awaitable, NoReturn, Optional, TypeVar

T = TypeVar("T")


class CancelScope:
    """One-shot cancellation signal that cascades to child scopes.

    A scope carries the reason it was cancelled (usually the exception that
    ended a heartbeat). Children created from a scope are cancelled together
    with it; cancelling a child never touches its parent.
    """

    def __init__(self, parent: Optional["CancelScope"] = None, *, name: Optional[str] = None) -> None:
        self.name = name
        self._event = asyncio.Event()
        self._reason: Optional[BaseException] = None
        self._children: "weakref.WeakSet[CancelScope]" = weakref.WeakSet()
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "CancelScope") -> None:
        if self.cancelled:
            child.cancel(self._reason)
            return
        self._children.add(child)

    def child(self, *, name: Optional[str] = None) -> "CancelScope":
        return CancelScope(self, name=name)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def cancel(self, reason: Optional[BaseException] = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        children = list(self._children)
        self._children.clear()
        for child in children:
            child.cancel(reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the scope is cancelled first.

        On cancellation the inner work is cancelled and the scope's reason is
        raised, or ``asyncio.CancelledError`` when no reason was given.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self._raise()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work.done():
            return work.result()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        self._raise()

    def _raise(self) -> NoReturn:
        if self._reason is not None:
            raise self._reason
        raise asyncio.CancelledError(f"scope {self.name or id(self)} cancelled")

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "open"
        return f"CancelScope(name={self.name!r}, {state})"
