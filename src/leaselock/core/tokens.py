"""Fencing token generation and holder identity."""

from __future__ import annotations

import itertools
import threading
import uuid
from typing import Dict, Optional

from leaselock.services.invocation import bind_invocation, current_invocation

__all__ = ["LockRegistry", "bind_invocation", "current_invocation"]


class LockRegistry:
    """Process-scoped state shared by lock managers.

    Holds the run identifier and the per-key acquisition counters that make
    fencing tokens unique without a central token authority. Create one per
    application and pass it to every ``LockManager`` that should share
    counters.
    """

    def __init__(self, run_id: Optional[str] = None) -> None:
        self.run_id = (run_id or str(uuid.uuid4())).lower()
        self._counters: Dict[str, "itertools.count[int]"] = {}
        self._lock = threading.Lock()

    def resolve_holder_id(self) -> str:
        invocation = current_invocation()
        if invocation is not None:
            return invocation.request_id
        return f"local/{self.run_id}"

    def next_sequence(self, key: str) -> int:
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                counter = self._counters[key] = itertools.count()
            return next(counter)

    def next_token(self, key: str, holder_id: Optional[str] = None) -> str:
        holder = holder_id or self.resolve_holder_id()
        return f"{holder}-{self.next_sequence(key)}"
