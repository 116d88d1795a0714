from pydantic import BaseModel
from typing import Any, Dict, List, Optional

import datetime as dt


class LockSummary(BaseModel):
    key: str
    version: str
    acquired_at: dt.datetime
    expires_at: dt.datetime
    active: bool
    logs_url: Optional[str] = None
    metadata: Dict[str, Any] = {}


class MalformedSummary(BaseModel):
    key: Optional[str]
    reason: str


class LockListResponse(BaseModel):
    state: str
    locks: List[LockSummary]
    malformed: List[MalformedSummary]


class HealthState(BaseModel):
    status: str
    backend: str
    table: str
