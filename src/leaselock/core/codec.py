"""Translation between ``LockRow`` and the flat record persisted by a store."""

from __future__ import annotations

import datetime as dt
import json
from typing import Any, Dict, Mapping, Optional

from leaselock.core.errors import MalformedRowError
from leaselock.core.models import LockRow
from leaselock.utils.logging import get_logger

META_COLUMN = "Metadata"
ACQUIRED_COLUMN = "AcquiredUnixNano"
LOGS_URL_COLUMN = "LogsUrl"
EXPIRES_COLUMN = "ExpiresUnixNano"

logger = get_logger("LockRowCodec")


def to_unix_nano(value: dt.datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    delta = value - dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


def from_unix_nano(value: int) -> dt.datetime:
    seconds, remainder = divmod(value, 1_000_000_000)
    return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc) + dt.timedelta(
        microseconds=remainder // 1_000
    )


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean is not a timestamp")
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return int(value.strip())
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise TypeError(f"unsupported timestamp type {type(value).__name__}")


def _parse_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, str):
        return value
    raise TypeError(f"expected string, got {type(value).__name__}")


class LockRowCodec:
    """Encodes lock rows using the table's configured key and version columns."""

    def __init__(self, *, key_column: str, version_column: str) -> None:
        if not key_column:
            raise ValueError("key_column must not be empty")
        if not version_column:
            raise ValueError("version_column must not be empty")
        if key_column == version_column:
            raise ValueError("key_column and version_column must differ")
        self.key_column = key_column
        self.version_column = version_column

    def encode(self, row: LockRow) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            self.key_column: row.key,
            self.version_column: row.fencing_token,
            ACQUIRED_COLUMN: to_unix_nano(row.acquired_at),
            EXPIRES_COLUMN: to_unix_nano(row.expires_at),
            META_COLUMN: json.dumps(row.metadata or {}, separators=(",", ":"), sort_keys=True),
        }
        if row.holder_log_ref:
            record[LOGS_URL_COLUMN] = row.holder_log_ref
        return record

    def decode(self, item: Optional[Mapping[str, Any]], *, key_hint: Optional[str] = None) -> LockRow:
        """Decode a stored record.

        Required columns raise ``MalformedRowError``. The optional log
        reference and metadata columns are best effort: a bad value is logged
        and dropped.
        """
        if not item:
            raise MalformedRowError(key_hint, "row is empty")

        key = self._required_str(item, self.key_column, "key", key_hint)
        version = self._required_str(item, self.version_column, "version", key)
        acquired = self._required_time(item, ACQUIRED_COLUMN, "acquired", key)
        expires = self._required_time(item, EXPIRES_COLUMN, "expires", key)

        logs_url: Optional[str] = None
        if LOGS_URL_COLUMN in item:
            try:
                logs_url = _parse_str(item[LOGS_URL_COLUMN]) or None
            except (TypeError, UnicodeDecodeError):
                logger.error("Logs URL field in lock row %s is not of expected type", key)

        metadata: Dict[str, Any] = {}
        if META_COLUMN in item:
            metadata = self._decode_metadata(item[META_COLUMN], key)

        return LockRow(
            key=key,
            fencing_token=version,
            acquired_at=acquired,
            expires_at=expires,
            holder_log_ref=logs_url,
            metadata=metadata,
        )

    @staticmethod
    def _required_str(item: Mapping[str, Any], column: str, label: str, key: Optional[str]) -> str:
        if column not in item:
            raise MalformedRowError(key, f"no {label} field in lock row")
        try:
            return _parse_str(item[column])
        except (TypeError, UnicodeDecodeError) as exc:
            raise MalformedRowError(key, f"{label} field is not of expected type") from exc

    @staticmethod
    def _required_time(item: Mapping[str, Any], column: str, label: str, key: Optional[str]) -> dt.datetime:
        if column not in item:
            raise MalformedRowError(key, f"no {label} field in lock row")
        try:
            nanos = _parse_int(item[column])
        except (TypeError, ValueError) as exc:
            raise MalformedRowError(key, f"{label} field is not of expected type") from exc
        try:
            return from_unix_nano(nanos)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedRowError(key, f"{label} field is out of range: {nanos}") from exc

    @staticmethod
    def _decode_metadata(raw: Any, key: str) -> Dict[str, Any]:
        try:
            text = _parse_str(raw)
        except (TypeError, UnicodeDecodeError):
            logger.error("Metadata field in lock row %s is not of expected type", key)
            return {}
        try:
            decoded = json.loads(text)
        except ValueError:
            logger.error("Metadata field in lock row %s is not valid JSON: %r", key, text)
            return {}
        if not isinstance(decoded, dict):
            logger.error("Metadata field in lock row %s is not a JSON object: %r", key, text)
            return {}
        return decoded
