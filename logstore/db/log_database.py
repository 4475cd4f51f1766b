"""
LogDatabase facade.

Chooses a backend on first use and delegates every operation to it:
- type="sqlite": SQLite file under the cache directory
- type="postgres": PostgreSQL, configuration errors propagate
- no type: try PostgreSQL, fall back to SQLite on any error

Closing a SQLite-backed facade copies its rows to PostgreSQL (see
LogMigrator). A failed copy is remembered in shared preferences and retried
on a later close(), whichever backend is active then.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from logstore.config import RelationalConfig, StoreSettings
from logstore.logging_utils import get_logger
from logstore.prefs import SharedPreferences

from .base import BackendKind, LogBackend, LogEntry, LogFilter, LogId
from .migration import LogMigrator, MigrationStats
from .postgres_backend import PostgresLogBackend
from .sqlite_backend import SQLiteLogBackend

logger = get_logger(__name__)

PREFS_NAMESPACE = "LogDatabase"

# "mysql" is routed to PostgreSQL.
_RELATIONAL_TYPES = {"postgres", "postgresql", "pg", "mysql"}


class LogDatabase:
    """Backend-agnostic log store for one logical name."""

    def __init__(
        self,
        name: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        settings: Optional[StoreSettings] = None,
    ):
        self.options: Dict[str, Any] = dict(options or {})
        self.settings = settings or StoreSettings.from_env()
        self.name = name or self.settings.default_name
        self.type: Optional[str] = self._normalize_type(self.options.get("type"))
        self.store: Optional[LogBackend] = None
        self.pref = SharedPreferences(PREFS_NAMESPACE, self.settings.prefs_dir)

    @staticmethod
    def _normalize_type(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).lower()
        if value == BackendKind.SQLITE.value:
            return BackendKind.SQLITE.value
        if value in _RELATIONAL_TYPES:
            return BackendKind.POSTGRES.value
        raise ValueError(f"Unknown log database type: {value}. Use: sqlite, postgres (or mysql)")

    def _relational_config(self) -> RelationalConfig:
        overrides = {k: v for k, v in self.options.items() if k != "type"}
        return RelationalConfig.from_env(**overrides)

    @property
    def _migration_flag(self) -> str:
        return f"needs_migration:{self.name}"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Instantiate the backend. Called lazily by every operation."""
        if self.store is not None:
            return

        safe_options = dict(self.options)
        for secret in ("user", "password"):
            if safe_options.get(secret):
                safe_options[secret] = "***"
        logger.info(f"Initializing LogDatabase name='{self.name}' options={safe_options}")

        if self.type == BackendKind.SQLITE.value:
            self.store = SQLiteLogBackend(self.name, settings=self.settings)
        elif self.type == BackendKind.POSTGRES.value:
            self.store = PostgresLogBackend(
                self.name, config=self._relational_config(), settings=self.settings
            )
        else:
            self.store = await self._auto_backend()

    async def _auto_backend(self) -> LogBackend:
        postgres: Optional[PostgresLogBackend] = None
        try:
            postgres = PostgresLogBackend(
                self.name, config=self._relational_config(), settings=self.settings
            )
            await postgres.wait_ready()
            return postgres
        except Exception as e:
            logger.warning(f"PostgreSQL unavailable for '{self.name}' ({e}), falling back to SQLite")
            if postgres is not None:
                try:
                    await postgres.close()
                except Exception as close_error:
                    logger.debug(f"Error closing failed PostgreSQL backend: {close_error}")
            return SQLiteLogBackend(self.name, settings=self.settings)

    async def _ensure_store(self) -> LogBackend:
        if self.store is None:
            await self.initialize()
        return self.store

    @property
    def backend_kind(self) -> Optional[BackendKind]:
        return self.store.kind if self.store is not None else None

    async def get_type(self) -> Dict[str, str]:
        store = await self._ensure_store()
        return {
            "options_type": self.type or BackendKind.SQLITE.value,
            "backend_kind": store.kind.value,
        }

    def is_closed(self) -> bool:
        """True when no backend is open."""
        if self.store is None:
            return True
        return self.store.is_closed()

    async def wait_ready(self) -> None:
        store = await self._ensure_store()
        await store.wait_ready()

    async def migrate(self, sqlite: Optional[SQLiteLogBackend] = None) -> Optional[MigrationStats]:
        """Copy this name's SQLite rows into PostgreSQL (see LogMigrator)."""
        migrator = LogMigrator(self.name, config=self._relational_config(), settings=self.settings)
        return await migrator.migrate(sqlite=sqlite)

    async def close(self) -> None:
        """
        Migrate if needed, then close the backend.

        Migration errors are logged and recorded for a later attempt; they
        never reach the caller.
        """
        if self.store is None:
            return
        store = self.store
        if store.kind == BackendKind.SQLITE or self.pref.get_boolean(self._migration_flag, False):
            try:
                sqlite = store if store.kind == BackendKind.SQLITE else None
                await self.migrate(sqlite=sqlite)
                self.pref.remove(self._migration_flag)
            except Exception as e:
                logger.error(f"Migration error for '{self.name}': {e}")
                self.pref.put_boolean(self._migration_flag, True)
        try:
            await store.close()
        finally:
            self.store = None

    async def __aenter__(self) -> "LogDatabase":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # LOG OPERATIONS
    # =========================================================================

    async def add_log(self, entry: Union[LogEntry, Dict[str, Any]], **options: Any) -> None:
        store = await self._ensure_store()
        await store.add_log(entry, **options)

    async def remove_log(self, log_id: LogId) -> bool:
        store = await self._ensure_store()
        return await store.remove_log(log_id)

    async def get_log_by_id(self, log_id: LogId) -> Optional[LogEntry]:
        store = await self._ensure_store()
        return await store.get_log_by_id(log_id)

    async def get_logs(
        self,
        filter_fn: Optional[LogFilter] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[LogEntry]:
        store = await self._ensure_store()
        return await store.get_logs(filter_fn, limit=limit, offset=offset)

    async def query(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        store = await self._ensure_store()
        return await store.query(sql, *params)

    async def process_list(self) -> List[Dict[str, Any]]:
        """Connected PostgreSQL sessions; empty on SQLite."""
        store = await self._ensure_store()
        if store.kind == BackendKind.POSTGRES:
            return await store.process_list()
        logger.info("process_list is only available for PostgreSQL backends")
        return []


def create_log_database(
    name: Optional[str] = None,
    options: Optional[Dict[str, Any]] = None,
    settings: Optional[StoreSettings] = None,
) -> LogDatabase:
    """Build a LogDatabase for the application to own and pass around."""
    return LogDatabase(name, options, settings=settings)
