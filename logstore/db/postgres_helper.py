"""
PostgreSQL Helper

Thin asyncpg pool wrapper: lazy database bootstrap, pool lifecycle and
query/execute/transaction primitives. Every pooled connection goes through
acquire(), which returns it on every exit path.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import aiofiles
import asyncpg

from logstore.config import RelationalConfig, StoreSettings
from logstore.logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def quote_ident(name: str) -> str:
    """Quote an SQL identifier for PostgreSQL."""
    return '"' + name.replace('"', '""') + '"'


def affected_rows(status: str) -> int:
    """Row count from an asyncpg status tag such as 'DELETE 3' or 'INSERT 0 1'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


@dataclass
class ExecuteResult:
    affected_rows: int
    insert_id: Optional[Any] = None


class PostgresHelper:
    """
    Connection pool owner for one PostgreSQL database.

    Raises ValueError at construction if host, user, password or database
    is missing.
    """

    def __init__(self, config: RelationalConfig, settings: Optional[StoreSettings] = None):
        missing = config.missing_fields()
        if missing:
            raise ValueError(f"Missing PostgreSQL configuration: {', '.join(missing)}")
        self.config = config
        self.settings = settings or StoreSettings.from_env()
        self._pool: Optional[asyncpg.Pool] = None
        self._init_task: Optional[asyncio.Task] = None
        self.ready = False

    @property
    def schema_marker(self) -> Path:
        return self.settings.schema_marker_dir / f"{self.config.database}.schema"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Create the database if needed and open the pool. Concurrent callers share one attempt."""
        if self.ready:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except BaseException:
            if self._init_task is task and task.done():
                self._init_task = None
            raise

    async def _initialize(self) -> None:
        if not self.schema_marker.exists():
            await self._ensure_database()
            self.schema_marker.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.schema_marker, "w", encoding="utf-8") as f:
                await f.write(f"Initialized at {datetime.now(timezone.utc).isoformat()}\n")

        self._pool = await asyncpg.create_pool(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            database=self.config.database,
            min_size=1,
            max_size=self.config.connection_limit,
            timeout=self.config.connect_timeout,
        )
        self.ready = True
        logger.info(
            f"PostgreSQL pool ready: {self.config.host}:{self.config.port}/{self.config.database} "
            f"(max {self.config.connection_limit} connections)"
        )

    async def _ensure_database(self) -> None:
        """Create the target database through an administrative connection."""
        admin = await asyncpg.connect(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            database=self.config.admin_database,
            timeout=self.config.connect_timeout,
        )
        try:
            exists = await admin.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1", self.config.database
            )
            if not exists:
                await admin.execute(f"CREATE DATABASE {quote_ident(self.config.database)}")
                logger.info(f"Created database {self.config.database}")
        finally:
            await admin.close()

    async def close(self) -> None:
        """Close the pool. No-op when not initialized."""
        if not self.ready:
            return
        pool, self._pool = self._pool, None
        self.ready = False
        self._init_task = None
        await pool.close()

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    @asynccontextmanager
    async def acquire(self):
        """
        Borrow a connection from the pool.

        The connection is released to the pool it came from. If the pool was
        replaced while the connection was out, the connection is closed
        instead of being handed to a pool that does not own it.
        """
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool is not initialized")
        pool = self._pool
        conn = await pool.acquire()
        try:
            yield conn
        finally:
            if self._pool is pool:
                await pool.release(conn)
            else:
                await conn.close()

    async def query(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        async with self.acquire() as conn:
            rows = await conn.fetch(sql, *params)
            return [dict(r) for r in rows]

    async def execute(self, sql: str, *params: Any) -> ExecuteResult:
        """Run a mutating statement. A RETURNING clause supplies insert_id."""
        async with self.acquire() as conn:
            if "RETURNING" in sql.upper():
                row = await conn.fetchrow(sql, *params)
                if row is None:
                    return ExecuteResult(affected_rows=0)
                return ExecuteResult(affected_rows=1, insert_id=row[0])
            status = await conn.execute(sql, *params)
            return ExecuteResult(affected_rows=affected_rows(status))

    async def transaction(self, fn: Callable[[Any], Awaitable[T]]) -> T:
        """Run fn(conn) inside a transaction; roll back and re-raise on failure."""
        async with self.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                result = await fn(conn)
            except BaseException:
                await tx.rollback()
                raise
            await tx.commit()
            return result
