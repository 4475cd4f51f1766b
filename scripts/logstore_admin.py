#!/usr/bin/env python3
"""
Log store maintenance.

Usage:
    # Copy a SQLite log set into PostgreSQL now (same checksum gate as close())
    python3 scripts/logstore_admin.py migrate --name visits

    # Ignore the stored checksum and rescan every row
    python3 scripts/logstore_admin.py migrate --name visits --force

    # SQL text dump of the SQLite file
    python3 scripts/logstore_admin.py backup --name visits --dest backups/visits.sql

    # Print entries as JSON lines
    python3 scripts/logstore_admin.py show --name visits --limit 20 --offset 40

    # Current vs. last migrated checksum
    python3 scripts/logstore_admin.py checksum --name visits
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from logstore.config import RelationalConfig, StoreSettings
from logstore.db import LogMigrator, SQLiteLogBackend, database_file_path, file_checksum
from logstore.logging_utils import get_logger

logger = get_logger("logstore.admin")


async def cmd_migrate(args: argparse.Namespace, settings: StoreSettings) -> int:
    migrator = LogMigrator(args.name, config=RelationalConfig.from_env(), settings=settings)
    if args.force and migrator.checksum_file.exists():
        migrator.checksum_file.unlink()
    stats = await migrator.migrate()
    if stats is None:
        print(f"{args.name}: nothing to migrate")
        return 0
    print(
        f"{stats.name}: {stats.migrated} migrated, {stats.skipped} skipped "
        f"of {stats.total} ({stats.duration_ms} ms)"
    )
    return 0


async def cmd_backup(args: argparse.Namespace, settings: StoreSettings) -> int:
    backend = SQLiteLogBackend(args.name, settings=replace(settings, backup_on_exit=False))
    try:
        dest = args.dest or backend.default_backup_path()
        path = await backend.backup(dest)
    finally:
        await backend.close()
    print(path)
    return 0


async def cmd_show(args: argparse.Namespace, settings: StoreSettings) -> int:
    backend = SQLiteLogBackend(args.name, settings=replace(settings, backup_on_exit=False))
    try:
        entries = await backend.get_logs(limit=args.limit, offset=args.offset)
    finally:
        await backend.close()
    for entry in entries:
        print(json.dumps(entry.to_dict(), ensure_ascii=False, default=str))
    return 0


async def cmd_checksum(args: argparse.Namespace, settings: StoreSettings) -> int:
    migrator = LogMigrator(args.name, settings=settings)
    current = file_checksum(database_file_path(args.name, settings))
    print(f"file:     {migrator.sqlite_path}")
    print(f"current:  {current or '-'}")
    print(f"migrated: {migrator.stored_checksum() or '-'}")
    print(f"changed:  {migrator.checksum_changed()}")
    return 0


COMMANDS = {
    "migrate": cmd_migrate,
    "backup": cmd_backup,
    "show": cmd_show,
    "checksum": cmd_checksum,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Log store maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_name(p: argparse.ArgumentParser) -> None:
        p.add_argument("--name", default=None, help="Logical log set name (default: LOGSTORE_DEFAULT_NAME)")

    migrate = sub.add_parser("migrate", help="Copy SQLite rows into PostgreSQL")
    add_name(migrate)
    migrate.add_argument("--force", action="store_true", help="Ignore the stored checksum")

    backup = sub.add_parser("backup", help="Write an SQL dump of the SQLite file")
    add_name(backup)
    backup.add_argument("--dest", type=Path, default=None, help="Output file (default: backup dir)")

    show = sub.add_parser("show", help="Print entries as JSON lines")
    add_name(show)
    show.add_argument("--limit", type=int, default=None)
    show.add_argument("--offset", type=int, default=None)

    checksum = sub.add_parser("checksum", help="Show migration checksum state")
    add_name(checksum)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = StoreSettings.from_env()
    args.name = args.name or settings.default_name
    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
