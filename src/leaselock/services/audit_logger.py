"""Append-only JSON Lines trail of lock lifecycle events."""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class AuditEvent(str, Enum):
    ACQUIRED = "lock.acquired"
    CONTENDED = "lock.contended"
    RELEASED = "lock.released"
    LOST = "lock.lost"
    HEARTBEAT_FAILED = "lock.heartbeat_failed"


def _json_default(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class AuditRecord:
    """One line of the trail.

    ``fencing_token`` is the version the event is about: the held version for
    acquisitions, releases and heartbeat failures, the attempted version for
    contention.
    """

    event: AuditEvent
    table: str
    key: str
    fencing_token: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    def to_json(self) -> str:
        return json.dumps(
            {
                "timestamp": self.timestamp.isoformat(),
                "event": self.event.value,
                "table": self.table,
                "lock_key": self.key,
                "fencing_token": self.fencing_token,
                "details": self.details,
            },
            ensure_ascii=True,
            default=_json_default,
        )

    @classmethod
    def from_json(cls, line: str) -> "AuditRecord":
        raw = json.loads(line)
        return cls(
            event=AuditEvent(raw["event"]),
            table=raw["table"],
            key=raw["lock_key"],
            fencing_token=raw["fencing_token"],
            details=raw.get("details") or {},
            timestamp=dt.datetime.fromisoformat(raw["timestamp"]),
        )


class AuditLogger:
    """Persist the lock audit trail; writes happen off the event loop."""

    def __init__(self, path: Optional[Path] = None) -> None:
        target = path or Path(os.getenv("LEASELOCK_AUDIT_LOG", "artifacts/lock-audit.log"))
        target.parent.mkdir(parents=True, exist_ok=True)
        self._path = target
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def record(self, record: AuditRecord) -> None:
        async with self._lock:
            await asyncio.to_thread(self._append_line, record.to_json())

    def history(self, key: Optional[str] = None) -> List[AuditRecord]:
        """Records in write order, optionally only those for ``key``."""
        if not self._path.exists():
            return []
        records = []
        with self._path.open("r", encoding="utf-8") as fh:
            for line in fh:
                if not line.strip():
                    continue
                record = AuditRecord.from_json(line)
                if key is None or record.key == key:
                    records.append(record)
        return records

    def _append_line(self, line: str) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line)
            fh.write("\n")
