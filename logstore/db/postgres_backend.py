"""
PostgreSQL Backend

Log store on top of PostgresHelper. Same contract as the SQLite backend with
one deliberate difference: add_log() with update=True shallow-merges the new
data dict over the stored one instead of replacing it.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Optional, Union

from logstore.codec import DEFAULT_CODEC, DataCodec
from logstore.config import RelationalConfig, StoreSettings
from logstore.logging_utils import get_logger

from .base import (
    BackendKind,
    LogBackend,
    LogEntry,
    LogFilter,
    LogId,
    apply_filter,
    now_timestamp,
)
from .postgres_helper import PostgresHelper, quote_ident

logger = get_logger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$-]{0,62}$")

DEFAULT_WRITE_TIMEOUT = 60.0


class PostgresLogBackend(LogBackend):
    """
    PostgreSQL log store.

    The database defaults to the logical name unless the config names one.

    Environment (via RelationalConfig):
        LOGSTORE_DB_HOST, LOGSTORE_DB_PORT, LOGSTORE_DB_USER,
        LOGSTORE_DB_PASSWORD, LOGSTORE_DB_NAME, LOGSTORE_DB_TABLE=logs
    """

    kind = BackendKind.POSTGRES

    def __init__(
        self,
        name: Optional[str] = None,
        config: Optional[RelationalConfig] = None,
        settings: Optional[StoreSettings] = None,
        codec: DataCodec = DEFAULT_CODEC,
        helper: Optional[PostgresHelper] = None,
    ):
        self.settings = settings or StoreSettings.from_env()
        self.name = name or self.settings.default_name
        config = config or RelationalConfig.from_env()
        if not config.database:
            config = config.with_overrides(database=self.name)
        for ident in (config.database, config.table):
            if not _IDENT_RE.match(ident):
                raise ValueError(f"Invalid PostgreSQL identifier: {ident!r}")
        self.config = config
        self.codec = codec
        self.helper = helper or PostgresHelper(config, self.settings)
        self._table = quote_ident(config.table)
        self._table_ready = False
        self._closed = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def wait_ready(self) -> None:
        """Initialize the pool and create the logs table if needed."""
        self._check_open()
        if not self.helper.ready:
            await self.helper.initialize()
        if self._table_ready:
            return
        await self.helper.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                id VARCHAR(255) PRIMARY KEY,
                data TEXT,
                message TEXT,
                timestamp VARCHAR(40)
            )
            """
        )
        self._table_ready = True

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        await self.helper.close()
        self._closed = True

    # =========================================================================
    # LOG OPERATIONS
    # =========================================================================

    def _row_to_entry(self, row: Dict[str, Any]) -> LogEntry:
        return LogEntry(
            id=row["id"],
            data=self.codec.decode(row["data"]),
            message=row["message"],
            timestamp=row["timestamp"],
        )

    async def add_log(
        self,
        entry: Union[LogEntry, Dict[str, Any]],
        timeout: Optional[float] = DEFAULT_WRITE_TIMEOUT,
        update: bool = True,
        **options: Any,
    ) -> None:
        """
        Insert or replace an entry.

        With update=True an existing row's data dict is shallow-merged under
        the new one before writing. timeout caps the write itself.
        """
        entry = LogEntry.coerce(entry)
        await self.wait_ready()
        data = entry.data
        if update:
            existing = await self.get_log_by_id(entry.id)
            if existing and isinstance(data, dict) and isinstance(existing.data, dict):
                data = {**existing.data, **data}

        write = self.helper.execute(
            f"""
            INSERT INTO {self._table} (id, data, message, timestamp)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET
                data = EXCLUDED.data,
                message = EXCLUDED.message,
                timestamp = EXCLUDED.timestamp
            """,
            str(entry.id),
            self.codec.encode(data),
            entry.message,
            entry.timestamp or now_timestamp(),
        )
        if timeout:
            await asyncio.wait_for(write, timeout=timeout)
        else:
            await write

    async def remove_log(self, log_id: LogId) -> bool:
        await self.wait_ready()
        result = await self.helper.execute(f"DELETE FROM {self._table} WHERE id = $1", str(log_id))
        return result.affected_rows > 0

    async def get_log_by_id(self, log_id: LogId) -> Optional[LogEntry]:
        await self.wait_ready()
        rows = await self.helper.query(
            f"SELECT id, data, message, timestamp FROM {self._table} WHERE id = $1", str(log_id)
        )
        if not rows:
            return None
        return self._row_to_entry(rows[0])

    async def get_logs(
        self,
        filter_fn: Optional[LogFilter] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[LogEntry]:
        await self.wait_ready()
        sql = f"SELECT id, data, message, timestamp FROM {self._table} ORDER BY ctid"
        params: List[int] = []
        if limit:
            sql += " LIMIT $1"
            params.append(limit)
            if offset:
                sql += " OFFSET $2"
                params.append(offset)

        rows = await self.helper.query(sql, *params)
        return await apply_filter([self._row_to_entry(r) for r in rows], filter_fn)

    async def query(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        await self.wait_ready()
        return await self.helper.query(sql, *params)

    async def process_list(self) -> List[Dict[str, Any]]:
        """Sessions connected to this backend's database."""
        return await self.query(
            """
            SELECT pid, usename, application_name, client_addr, state, query_start, query
            FROM pg_stat_activity
            WHERE datname = $1
            """,
            self.config.database,
        )
