"""
SQLite -> PostgreSQL log migration.

One-way and additive: rows are copied from the SQLite file of a logical name
into the PostgreSQL backend of the same name, and rows whose id already exists
in PostgreSQL are never overwritten. A SHA-256 checksum of the SQLite file is
stored under the migrations directory after every complete pass; while the
file is unchanged, migrate() returns without opening either store.

A <name>.lock marker, held with an exclusive flock for the duration of a pass,
keeps two processes from migrating the same name at once.
"""

from __future__ import annotations

import fcntl
import hashlib
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, Optional

from logstore.config import RelationalConfig, StoreSettings
from logstore.logging_utils import get_logger

from .postgres_backend import PostgresLogBackend
from .sqlite_backend import SQLiteLogBackend, database_file_path

logger = get_logger(__name__)

_CHUNK_SIZE = 1024 * 1024


def file_checksum(path: Path) -> Optional[str]:
    """SHA-256 of a SQLite file plus its -wal sidecar. None if the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    digest = hashlib.sha256()
    for part in (path, path.with_name(path.name + "-wal")):
        if not part.exists():
            continue
        with open(part, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    return digest.hexdigest()


@dataclass
class MigrationStats:
    name: str
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    duration_ms: int = 0


class LogMigrator:
    """Copies one logical name's SQLite rows into PostgreSQL."""

    def __init__(
        self,
        name: str,
        config: Optional[RelationalConfig] = None,
        settings: Optional[StoreSettings] = None,
    ):
        self.name = name
        self.config = config
        self.settings = settings or StoreSettings.from_env()
        self.sqlite_path = database_file_path(name, self.settings)
        migrations_dir = self.settings.migrations_dir
        self.checksum_file = migrations_dir / f"{name or 'logs'}.checksum"
        self.lock_file = migrations_dir / f"{name or 'logs'}.lock"

    # =========================================================================
    # CHECKSUM GATE
    # =========================================================================

    def stored_checksum(self) -> Optional[str]:
        if not self.checksum_file.exists():
            return None
        return self.checksum_file.read_text(encoding="utf-8").strip()

    def checksum_changed(self, save: bool = False) -> bool:
        """
        True if the SQLite file differs from the last migrated state.

        With save=True a changed checksum is written as the new baseline.
        """
        current = file_checksum(self.sqlite_path)
        changed = current != self.stored_checksum()
        if save and changed and current is not None:
            self._save_checksum(current)
        return changed

    def _save_checksum(self, checksum: str) -> None:
        self.checksum_file.parent.mkdir(parents=True, exist_ok=True)
        self.checksum_file.write_text(checksum, encoding="utf-8")

    @contextmanager
    def _lock(self) -> Iterator[bool]:
        """Yield True if this process holds the migration lock for the name."""
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_file), os.O_CREAT | os.O_RDWR)
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                yield False
                return
            os.ftruncate(fd, 0)
            os.write(fd, str(os.getpid()).encode())
            try:
                yield True
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    # =========================================================================
    # MIGRATION
    # =========================================================================

    async def migrate(self, sqlite: Optional[SQLiteLogBackend] = None) -> Optional[MigrationStats]:
        """
        Run one migration pass.

        Pass an already-open SQLite backend for the same name to reuse it; it is
        checkpointed first and left open. Returns None if the pass was skipped.
        Errors propagate and leave the stored checksum untouched.
        """
        if sqlite is not None and not sqlite.is_closed():
            await sqlite.checkpoint()

        # Taken before the copy so rows written during the pass are picked up next time.
        checksum = file_checksum(self.sqlite_path)
        if checksum is None:
            logger.debug(f"No SQLite file for '{self.name}', nothing to migrate")
            return None
        if checksum == self.stored_checksum():
            logger.debug(f"SQLite checksum unchanged for '{self.name}', skipping migration")
            return None

        with self._lock() as acquired:
            if not acquired:
                logger.info(f"Migration for '{self.name}' already running elsewhere, skipping")
                return None
            stats = await self._copy_rows(sqlite)
            self._save_checksum(checksum)
            return stats

    async def _copy_rows(self, sqlite: Optional[SQLiteLogBackend]) -> MigrationStats:
        start = time.monotonic()
        stats = MigrationStats(name=self.name)
        owns_sqlite = sqlite is None or sqlite.is_closed()
        if owns_sqlite:
            sqlite = SQLiteLogBackend(
                self.name, settings=replace(self.settings, backup_on_exit=False)
            )
        postgres: Optional[PostgresLogBackend] = None
        try:
            postgres = PostgresLogBackend(self.name, config=self.config, settings=self.settings)
            await postgres.wait_ready()

            for entry in await sqlite.get_logs():
                stats.total += 1
                if await postgres.get_log_by_id(entry.id):
                    stats.skipped += 1
                    logger.debug(f"Skipping existing log id={entry.id}")
                    continue
                await postgres.add_log(entry, update=False)
                stats.migrated += 1
                logger.debug(f"Migrated log id={entry.id}")
        finally:
            if owns_sqlite:
                await sqlite.close()
            if postgres is not None:
                await postgres.close()

        stats.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Migrated '{self.name}': {stats.migrated} copied, {stats.skipped} already present "
            f"({stats.total} rows, {stats.duration_ms} ms)"
        )
        return stats
