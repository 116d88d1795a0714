from __future__ import annotations

import pytest

from leaselock.services.audit_logger import AuditLogger
from scripts.locks import hold_lock, show_history


@pytest.mark.asyncio
async def test_hold_reports_current_holder_on_contention(make_manager, capsys):
    holder = make_manager("holder-a")
    first = await holder.acquire("job-cli")

    code = await hold_lock(make_manager("holder-b"), "job-cli", 0.01, {})

    assert code == 2
    assert "held by local/holder-a-0" in capsys.readouterr().out
    await first.handle.release()


@pytest.mark.asyncio
async def test_hold_releases_after_the_requested_time(manager):
    code = await hold_lock(manager, "job-cli-2", 0.01, {"who": "cli"})

    assert code == 0
    row = await manager.get_lock("job-cli-2")
    assert row.metadata == {"who": "cli"}
    assert not row.active


@pytest.mark.asyncio
async def test_history_lists_audit_records_for_key(make_manager, tmp_path, capsys):
    audit = AuditLogger(tmp_path / "audit.log")
    manager = make_manager("holder-a", audit_logger=audit)
    await hold_lock(manager, "job-cli-3", 0.01, {})
    capsys.readouterr()

    assert show_history(audit, "job-cli-3") == 0
    out = capsys.readouterr().out
    assert "lock.acquired" in out
    assert "lock.released" in out
    assert show_history(audit, "never-locked") == 1
