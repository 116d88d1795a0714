from __future__ import annotations

from pathlib import Path

import pytest

from leaselock.core.factory import create_lock_manager, create_lock_store
from leaselock.core.settings import LockTableSettings, RuntimeSettings
from leaselock.stores.memory import InMemoryLockStore


def _write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


def test_from_file_applies_defaults_and_resolves_paths(tmp_path):
    config = _write(
        tmp_path / "locks.yml",
        "table:\n  table: jobs\naudit_log_path: logs/audit.log\n",
    )

    settings = RuntimeSettings.from_file(config)

    assert settings.backend == "memory"
    assert settings.table.key_column == "LockKey"
    assert settings.table.version_column == "LockVersion"
    assert settings.table.lease_duration_seconds == 20
    assert settings.table.heartbeat_interval_seconds == 10
    assert settings.audit_log_path == (tmp_path / "logs" / "audit.log").resolve()


def test_backend_can_be_overridden_from_environment(tmp_path, monkeypatch):
    config = _write(tmp_path / "locks.yml", "backend: memory\ntable:\n  table: jobs\n")
    monkeypatch.setenv("LEASELOCK_BACKEND", "REDIS")

    assert RuntimeSettings.from_file(config).backend == "redis"


@pytest.mark.parametrize(
    "body",
    [
        "table:\n  table: ''\n",
        "table:\n  table: jobs\n  lease_duration_seconds: 0\n",
        "table:\n  table: jobs\n  key_column: '  '\n",
        "backend: dynamo\ntable:\n  table: jobs\n",
        "{}\n",
    ],
)
def test_invalid_settings_raise_value_error(tmp_path, body):
    config = _write(tmp_path / "locks.yml", body)

    with pytest.raises(ValueError):
        RuntimeSettings.from_file(config)


def test_factory_builds_memory_manager(tmp_path):
    settings = RuntimeSettings(
        table=LockTableSettings(table="jobs", lease_duration_seconds=4),
        audit_log_path=tmp_path / "audit.log",
    )

    assert isinstance(create_lock_store(settings), InMemoryLockStore)
    manager = create_lock_manager(settings)
    assert manager.heartbeat_interval == 2
    assert manager.lease_duration.total_seconds() == 4
