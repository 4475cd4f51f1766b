"""
SQLite Backend

File-based log store: one SQLite file per logical name inside the cache
directory. Writes replace whole rows (no merge). An SQL text dump of the file
can be taken with the external sqlite3 tool, and one is taken automatically at
process exit unless disabled.
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles

from logstore.codec import DEFAULT_CODEC, DataCodec
from logstore.config import StoreSettings
from logstore.logging_utils import get_logger
from logstore.shutdown import register_shutdown_hook, unregister_shutdown_hook

from .base import (
    LOG_TZ,
    BackendKind,
    LogBackend,
    LogEntry,
    LogFilter,
    LogId,
    apply_filter,
    now_timestamp,
)

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS logs (
    id TEXT PRIMARY KEY,
    data TEXT,
    message TEXT,
    timestamp TEXT
)
"""


def database_file_path(name: str, settings: Optional[StoreSettings] = None) -> Path:
    """Deterministic SQLite file path for a logical name."""
    settings = settings or StoreSettings.from_env()
    return (settings.cache_dir / f"{name}.db").resolve()


def make_dump_idempotent(dump: str) -> str:
    """Rewrite the dump so replaying it over an existing database does not fail on CREATE TABLE."""
    return dump.replace("CREATE TABLE logs", "CREATE TABLE IF NOT EXISTS logs")


class SQLiteLogBackend(LogBackend):
    """
    SQLite log store.

    Environment (via StoreSettings):
        LOGSTORE_CACHE_DIR=.cache (default)
        LOGSTORE_SQLITE_ASYNC_WRAP=true|false (default: false)
        LOGSTORE_BACKUP_ON_EXIT=true|false (default: true)
        LOGSTORE_DUMP_COMMAND=sqlite3 (default)
    """

    kind = BackendKind.SQLITE

    def __init__(
        self,
        name: Optional[str] = None,
        settings: Optional[StoreSettings] = None,
        codec: DataCodec = DEFAULT_CODEC,
    ):
        self.settings = settings or StoreSettings.from_env()
        self.name = name or self.settings.default_name
        self.codec = codec
        self.settings.cache_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = database_file_path(self.name, self.settings)
        self._async_wrap = self.settings.sqlite_async_wrap
        self._closed = False
        self._exit_hook: Optional[int] = None
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = self._open()
        if self.settings.backup_on_exit:
            self.register_exit_backup()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute(SCHEMA)
        conn.commit()
        return conn

    async def _run_sync(self, func, *args, **kwargs):
        """Run a blocking call, in a worker thread when async wrapping is enabled."""
        if self._async_wrap:
            def _locked():
                with self._lock:
                    return func(*args, **kwargs)

            return await asyncio.to_thread(_locked)
        return func(*args, **kwargs)

    def _get_conn(self) -> sqlite3.Connection:
        self._check_open()
        return self._conn

    def _row_to_entry(self, row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            id=row["id"],
            data=self.codec.decode(row["data"]),
            message=row["message"],
            timestamp=row["timestamp"],
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def is_closed(self) -> bool:
        return self._closed

    async def close(self, keep_exit_backup: bool = True) -> None:
        """Close the connection. The exit-time backup stays registered unless keep_exit_backup is False."""
        if self._closed:
            return
        if not keep_exit_backup and self._exit_hook is not None:
            unregister_shutdown_hook(self._exit_hook)
            self._exit_hook = None
        self._conn.close()
        self._conn = None
        self._closed = True

    async def checkpoint(self) -> None:
        """Fold the WAL back into the main database file."""
        conn = self._get_conn()
        await self._run_sync(lambda: conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchall())

    # =========================================================================
    # LOG OPERATIONS
    # =========================================================================

    async def add_log(self, entry: Union[LogEntry, Dict[str, Any]], **options: Any) -> None:
        entry = LogEntry.coerce(entry)
        conn = self._get_conn()
        timestamp = entry.timestamp or now_timestamp()
        params = (str(entry.id), self.codec.encode(entry.data), entry.message, timestamp)

        def _sync_add():
            conn.execute(
                "INSERT OR REPLACE INTO logs (id, data, message, timestamp) VALUES (?, ?, ?, ?)",
                params,
            )
            conn.commit()

        await self._run_sync(_sync_add)

    async def remove_log(self, log_id: LogId) -> bool:
        conn = self._get_conn()

        def _sync_remove():
            cursor = conn.execute("DELETE FROM logs WHERE id = ?", (str(log_id),))
            conn.commit()
            return cursor.rowcount

        return await self._run_sync(_sync_remove) > 0

    async def get_log_by_id(self, log_id: LogId) -> Optional[LogEntry]:
        conn = self._get_conn()
        row = await self._run_sync(
            lambda: conn.execute("SELECT * FROM logs WHERE id = ?", (str(log_id),)).fetchone()
        )
        if not row:
            return None
        return self._row_to_entry(row)

    async def get_logs(
        self,
        filter_fn: Optional[LogFilter] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[LogEntry]:
        conn = self._get_conn()
        sql = "SELECT * FROM logs ORDER BY rowid"
        params: List[int] = []
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
            if offset:
                sql += " OFFSET ?"
                params.append(offset)

        rows = await self._run_sync(lambda: conn.execute(sql, params).fetchall())
        return await apply_filter([self._row_to_entry(r) for r in rows], filter_fn)

    async def query(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        conn = self._get_conn()

        def _sync_query():
            cursor = conn.execute(sql, params)
            rows = cursor.fetchall()
            conn.commit()
            return [dict(r) for r in rows]

        return await self._run_sync(_sync_query)

    # =========================================================================
    # BACKUP
    # =========================================================================

    def default_backup_path(self) -> Path:
        stamp = datetime.now(LOG_TZ).strftime("%Y%m%d-%H%M%S")
        return self.settings.backup_dir / f"{self.name}-backup-{stamp}.sql"

    def _dump_args(self) -> List[str]:
        return [self.settings.dump_command, str(self.db_path), ".dump"]

    def _dump_env(self) -> Dict[str, str]:
        """Environment for the dump tool, with a bin/ directory in the working directory searched first."""
        env = dict(os.environ)
        env["PATH"] = os.pathsep.join([str(Path.cwd() / "bin"), env.get("PATH", "")])
        return env

    @staticmethod
    def _check_dump(returncode: int, stderr: bytes) -> None:
        if returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise RuntimeError(f"Backup failed with exit code {returncode}: {detail}")

    async def backup(self, dest_path: Union[str, Path]) -> Path:
        """
        Write an SQL text dump of the database file to dest_path.

        Uses the external dump tool (sqlite3 <file> .dump). The CREATE TABLE
        statement is made idempotent so the dump can be replayed into an
        existing database.
        """
        dest = Path(dest_path)
        dest.parent.mkdir(parents=True, exist_ok=True)

        proc = await asyncio.create_subprocess_exec(
            *self._dump_args(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._dump_env(),
        )
        stdout, stderr = await proc.communicate()
        self._check_dump(proc.returncode, stderr)

        content = make_dump_idempotent(stdout.decode("utf-8"))
        async with aiofiles.open(dest, "w", encoding="utf-8") as f:
            await f.write(content)
        logger.info(f"Backup completed: {dest}")
        return dest

    def backup_blocking(self, dest_path: Union[str, Path], timeout: Optional[float] = None) -> Path:
        """
        Same dump as backup(), without an event loop or worker threads.

        Used at interpreter exit, where no new threads can be started.
        """
        dest = Path(dest_path)
        dest.parent.mkdir(parents=True, exist_ok=True)

        proc = subprocess.run(
            self._dump_args(),
            capture_output=True,
            env=self._dump_env(),
            timeout=timeout,
        )
        self._check_dump(proc.returncode, proc.stderr)

        dest.write_text(make_dump_idempotent(proc.stdout.decode("utf-8")), encoding="utf-8")
        logger.info(f"Backup completed: {dest}")
        return dest

    def register_exit_backup(self) -> None:
        """Take a best-effort backup at process exit (or on run_shutdown_hooks())."""
        if self._exit_hook is not None:
            return

        async def _backup_on_exit():
            try:
                self.backup_blocking(self.default_backup_path(), timeout=self.settings.backup_timeout)
            except Exception as e:
                logger.error(f"Failed to backup database '{self.name}' on exit: {e}")

        self._exit_hook = register_shutdown_hook(
            f"sqlite-backup:{self.db_path}",
            _backup_on_exit,
            timeout=self.settings.backup_timeout,
        )
