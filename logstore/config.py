"""
Configuration for the log store.

Two groups of settings:
- RelationalConfig: PostgreSQL connection parameters
- StoreSettings: local paths and behaviour of the SQLite side

Both read LOGSTORE_* environment variables; keyword overrides win over the
environment. Relative paths resolve against the working directory at the time
from_env() is called.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

TRUTHY = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


@dataclass
class RelationalConfig:
    """PostgreSQL connection parameters."""

    host: Optional[str] = None
    port: int = 5432
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    table: str = "logs"
    admin_database: str = "postgres"
    connect_timeout: float = 60.0
    connection_limit: int = 5

    REQUIRED = ("host", "user", "password", "database")

    @classmethod
    def from_env(cls, **overrides: Any) -> "RelationalConfig":
        config = cls(
            host=os.environ.get("LOGSTORE_DB_HOST") or None,
            port=_env_int("LOGSTORE_DB_PORT", 5432),
            user=os.environ.get("LOGSTORE_DB_USER") or None,
            password=os.environ.get("LOGSTORE_DB_PASSWORD") or None,
            database=os.environ.get("LOGSTORE_DB_NAME") or None,
            table=os.environ.get("LOGSTORE_DB_TABLE") or "logs",
            admin_database=os.environ.get("LOGSTORE_DB_ADMIN_NAME") or "postgres",
            connect_timeout=_env_float("LOGSTORE_CONNECT_TIMEOUT", 60.0),
            connection_limit=_env_int("LOGSTORE_CONNECTION_LIMIT", 5),
        )
        return config.with_overrides(**overrides)

    def with_overrides(self, **overrides: Any) -> "RelationalConfig":
        """Return a copy with known, non-None overrides applied. Unknown keys are ignored."""
        known = {f.name for f in fields(self)}
        applied = {k: v for k, v in overrides.items() if k in known and v is not None}
        if "port" in applied:
            applied["port"] = int(applied["port"])
        return replace(self, **applied)

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED if not getattr(self, name)]

    def safe_dict(self) -> Dict[str, Any]:
        """Dict view with credentials masked, suitable for logging."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for secret in ("user", "password"):
            if data.get(secret):
                data[secret] = "***"
        return data


@dataclass
class StoreSettings:
    """Local paths and SQLite-side behaviour."""

    default_name: str = "default"
    cache_dir: Path = Path(".cache")
    schema_marker_dir: Path = Path("tmp/database")
    backup_on_exit: bool = True
    backup_timeout: float = 30.0
    sqlite_async_wrap: bool = False
    dump_command: str = "sqlite3"

    @property
    def backup_dir(self) -> Path:
        return self.cache_dir / "database" / "backup"

    @property
    def migrations_dir(self) -> Path:
        return self.cache_dir / "migrations"

    @property
    def prefs_dir(self) -> Path:
        return self.cache_dir / "prefs"

    @classmethod
    def from_env(cls) -> "StoreSettings":
        cwd = Path.cwd()
        return cls(
            default_name=os.environ.get("LOGSTORE_DEFAULT_NAME") or "default",
            cache_dir=cwd / os.environ.get("LOGSTORE_CACHE_DIR", ".cache"),
            schema_marker_dir=cwd / os.environ.get("LOGSTORE_SCHEMA_MARKER_DIR", "tmp/database"),
            backup_on_exit=_env_bool("LOGSTORE_BACKUP_ON_EXIT", True),
            backup_timeout=_env_float("LOGSTORE_BACKUP_TIMEOUT", 30.0),
            sqlite_async_wrap=_env_bool("LOGSTORE_SQLITE_ASYNC_WRAP", False),
            dump_command=os.environ.get("LOGSTORE_DUMP_COMMAND") or "sqlite3",
        )
