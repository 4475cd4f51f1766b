"""
Log Persistence Layer

One interface over a local SQLite file and a PostgreSQL table, with a one-way
SQLite -> PostgreSQL migration that runs when a SQLite-backed store is closed.

Usage:
    from logstore.db import create_log_database

    logs = create_log_database("visits")          # auto: PostgreSQL, else SQLite
    await logs.add_log({"id": "1", "data": {"foo": "bar"}, "message": "hello"})
    entry = await logs.get_log_by_id("1")
    page = await logs.get_logs(limit=2, offset=2)
    await logs.close()

The application owns the LogDatabase it creates and passes it to whatever
needs to log; there is no module-level instance.

Configuration (environment variables):
    LOGSTORE_DB_HOST / LOGSTORE_DB_PORT / LOGSTORE_DB_USER / LOGSTORE_DB_PASSWORD
    LOGSTORE_DB_NAME (default: the logical name) / LOGSTORE_DB_TABLE (default: logs)
    LOGSTORE_DEFAULT_NAME (default: default)
    LOGSTORE_CONNECT_TIMEOUT (seconds, default: 60)
"""

from .base import BackendKind, LogBackend, LogEntry, now_timestamp
from .log_database import LogDatabase, create_log_database
from .migration import LogMigrator, MigrationStats, file_checksum
from .postgres_backend import PostgresLogBackend
from .postgres_helper import ExecuteResult, PostgresHelper
from .sqlite_backend import SQLiteLogBackend, database_file_path

__all__ = [
    "BackendKind",
    "ExecuteResult",
    "LogBackend",
    "LogDatabase",
    "LogEntry",
    "LogMigrator",
    "MigrationStats",
    "PostgresHelper",
    "PostgresLogBackend",
    "SQLiteLogBackend",
    "create_log_database",
    "database_file_path",
    "file_checksum",
    "now_timestamp",
]
