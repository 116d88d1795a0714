"""CLI entrypoint to inspect and exercise a lock table."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from rich.console import Console
from rich.table import Table

from leaselock.core.factory import create_lock_manager
from leaselock.core.manager import LockManager
from leaselock.core.models import LockFilter
from leaselock.core.settings import RuntimeSettings
from leaselock.services.audit_logger import AuditLogger
from leaselock.utils.logging import get_logger


logger = get_logger("LockCLI")
console = Console()


async def list_locks(manager: LockManager, state: LockFilter) -> int:
    listing = await manager.list_locks(state)
    table = Table(title=f"{state.value} locks in {manager.settings.table}")
    table.add_column("key")
    table.add_column("version")
    table.add_column("acquired")
    table.add_column("expires")
    table.add_column("active")
    table.add_column("logs")
    for key, row in sorted(listing.locks.items()):
        table.add_row(
            key,
            row.fencing_token,
            row.acquired_at.isoformat(),
            row.expires_at.isoformat(),
            "yes" if row.active else "no",
            row.holder_log_ref or "",
        )
    console.print(table)
    for err in listing.malformed:
        console.print(f"[red]malformed[/red] {err.key}: {err.reason}")
    return 1 if listing.malformed else 0


async def hold_lock(manager: LockManager, key: str, seconds: float, metadata: dict) -> int:
    result = await manager.acquire(key, metadata)
    existing = result.existing
    if existing is not None:
        console.print(
            f"Lock {key} is held by {existing.fencing_token} "
            f"(active={existing.active}, expires {existing.expires_at.isoformat()})"
        )
        return 2

    handle = result.handle
    console.print(f"Holding {key} as {handle.fencing_token} for {seconds:g}s")
    try:
        await result.scope.run(asyncio.sleep(seconds))
    finally:
        await handle.release()
    console.print(f"Released {key} after {handle.renewals} renewals")
    return 0


def show_history(audit: AuditLogger, key: str) -> int:
    records = audit.history(key)
    table = Table(title=f"audit trail for {key}")
    table.add_column("time", no_wrap=True)
    table.add_column("event", no_wrap=True)
    table.add_column("version", no_wrap=True)
    table.add_column("details")
    for record in records:
        table.add_row(
            record.timestamp.isoformat(),
            record.event.value,
            record.fencing_token,
            json.dumps(record.details, sort_keys=True),
        )
    console.print(table)
    return 0 if records else 1


async def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect or hold leases in a lock table.")
    parser.add_argument("--config", type=Path, default=Path("config/leaselock.example.yml"), help="Path to runtime YAML")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List lock rows")
    list_cmd.add_argument("--state", choices=[f.value for f in LockFilter], default=LockFilter.ALL.value)

    hold_cmd = sub.add_parser("hold", help="Acquire a key and keep it while heartbeating")
    hold_cmd.add_argument("key")
    hold_cmd.add_argument("--seconds", type=float, default=60.0)
    hold_cmd.add_argument("--metadata", default="{}", help="JSON object stored with the lock")

    history_cmd = sub.add_parser("history", help="Show the audit trail for a key")
    history_cmd.add_argument("key")

    args = parser.parse_args()
    settings = RuntimeSettings.from_file(args.config)
    if args.command == "history":
        if settings.audit_log_path is None:
            console.print("[red]audit_log_path is not configured[/red]")
            return 1
        return show_history(AuditLogger(settings.audit_log_path), args.key)

    manager = create_lock_manager(settings)
    try:
        if args.command == "list":
            return await list_locks(manager, LockFilter(args.state))
        return await hold_lock(manager, args.key, args.seconds, json.loads(args.metadata))
    finally:
        await manager.close()


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
