"""Per-invocation execution context, e.g. a serverless request."""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class Invocation:
    request_id: str
    log_ref: Optional[str] = None


_current_invocation: contextvars.ContextVar[Optional[Invocation]] = contextvars.ContextVar(
    "leaselock_invocation", default=None
)


@contextmanager
def bind_invocation(request_id: str, *, log_ref: Optional[str] = None) -> Iterator[Invocation]:
    """Bind an invocation for the current task and everything it spawns."""
    invocation = Invocation(request_id=request_id, log_ref=log_ref)
    token = _current_invocation.set(invocation)
    try:
        yield invocation
    finally:
        _current_invocation.reset(token)


def current_invocation() -> Optional[Invocation]:
    return _current_invocation.get()
