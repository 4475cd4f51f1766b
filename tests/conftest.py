"""
Pytest configuration and fixtures for logstore tests.
"""
from __future__ import annotations

import re
import warnings
from typing import Any, Dict, List

import pytest

from logstore import shutdown
from logstore.config import StoreSettings
from logstore.db.postgres_helper import ExecuteResult

# Filter ResourceWarnings globally before any imports
warnings.filterwarnings("ignore", category=ResourceWarning)


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path, monkeypatch):
    """
    Run every test in its own working directory with no LOGSTORE_* settings.

    Cache, prefs, migration and schema-marker paths all resolve against the
    working directory, so nothing leaks between tests. Shutdown hooks left
    behind by a test are discarded rather than run at interpreter exit.
    """
    import os

    for key in list(os.environ):
        if key.startswith("LOGSTORE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    shutdown._hooks.clear()


@pytest.fixture
def settings(tmp_path) -> StoreSettings:
    """Settings rooted in tmp_path with exit-time backups disabled."""
    return StoreSettings(
        cache_dir=tmp_path / ".cache",
        schema_marker_dir=tmp_path / "tmp" / "database",
        backup_on_exit=False,
    )


class FakePostgresHelper:
    """
    In-memory stand-in for PostgresHelper.

    Understands the handful of statements PostgresLogBackend issues, keeping
    rows in insertion order like a heap table. Records every statement so
    tests can assert on writes.
    """

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.statements: List[str] = []
        self.ready = False
        self.initialize_calls = 0
        self.closed = False

    async def initialize(self) -> None:
        self.initialize_calls += 1
        self.ready = True

    async def close(self) -> None:
        self.ready = False
        self.closed = True

    @property
    def writes(self) -> List[str]:
        return [s for s in self.statements if s.startswith(("INSERT", "DELETE"))]

    async def query(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        sql = " ".join(sql.split())
        self.statements.append(sql)
        if sql.startswith("SELECT") and "WHERE id = $1" in sql:
            row = self.rows.get(params[0])
            return [dict(row)] if row else []
        if sql.startswith("SELECT"):
            rows = [dict(r) for r in self.rows.values()]
            limit = re.search(r"LIMIT \$1", sql)
            if limit:
                offset = params[1] if len(params) > 1 else 0
                rows = rows[offset:offset + params[0]]
            return rows
        return []

    async def execute(self, sql: str, *params: Any) -> ExecuteResult:
        sql = " ".join(sql.split())
        self.statements.append(sql)
        if sql.startswith("INSERT"):
            log_id, data, message, timestamp = params
            row = {"id": log_id, "data": data, "message": message, "timestamp": timestamp}
            if log_id in self.rows:
                del self.rows[log_id]
            self.rows[log_id] = row
            return ExecuteResult(affected_rows=1)
        if sql.startswith("DELETE"):
            removed = self.rows.pop(params[0], None)
            return ExecuteResult(affected_rows=1 if removed else 0)
        return ExecuteResult(affected_rows=0)


@pytest.fixture
def fake_helper() -> FakePostgresHelper:
    return FakePostgresHelper()


@pytest.fixture
def patch_postgres(monkeypatch, fake_helper):
    """
    Make every PostgresLogBackend built by the facade or the migrator share
    fake_helper instead of a real pool.
    """
    from logstore.db import log_database, migration
    from logstore.db.postgres_backend import PostgresLogBackend

    def factory(name=None, config=None, settings=None, **kwargs):
        kwargs.setdefault("helper", fake_helper)
        return PostgresLogBackend(name, config=config, settings=settings, **kwargs)

    monkeypatch.setattr(log_database, "PostgresLogBackend", factory)
    monkeypatch.setattr(migration, "PostgresLogBackend", factory)
    return fake_helper
