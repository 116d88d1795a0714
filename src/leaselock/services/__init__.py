"""Diagnostics services used by the lock manager."""

from .audit_logger import AuditEvent, AuditLogger, AuditRecord
from .invocation import Invocation, bind_invocation, current_invocation
from .log_links import holder_log_ref_from_environment, request_log_stream_url

__all__ = [
    "AuditEvent",
    "AuditLogger",
    "AuditRecord",
    "Invocation",
    "bind_invocation",
    "current_invocation",
    "holder_log_ref_from_environment",
    "request_log_stream_url",
]
