"""
Abstract Base Class for Log Backends

Defines the log-store contract shared by the SQLite and PostgreSQL backends.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

# Timestamps are always written in a fixed UTC+7 offset (Asia/Jakarta, no DST).
LOG_TZ = timezone(timedelta(hours=7))

LogId = Union[str, int]
LogFilter = Callable[["LogEntry"], Union[bool, Awaitable[bool]]]


def now_timestamp() -> str:
    """Current time as YYYY-MM-DDTHH:MM:SS+07:00."""
    return datetime.now(LOG_TZ).isoformat(timespec="seconds")


class BackendKind(str, Enum):
    SQLITE = "sqlite"
    POSTGRES = "postgres"


@dataclass
class LogEntry:
    """A single persisted log record."""
    id: LogId
    data: Any = None
    message: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def coerce(cls, entry: Union["LogEntry", Dict[str, Any]]) -> "LogEntry":
        if isinstance(entry, LogEntry):
            return entry
        if "id" not in entry:
            raise ValueError("log entry requires an 'id'")
        return cls(
            id=entry["id"],
            data=entry.get("data"),
            message=entry.get("message"),
            timestamp=entry.get("timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def apply_filter(entries: List[LogEntry], filter_fn: Optional[LogFilter]) -> List[LogEntry]:
    """Keep entries for which filter_fn is truthy. Async predicates are awaited concurrently."""
    if filter_fn is None:
        return entries
    verdicts = [filter_fn(entry) for entry in entries]
    pending = [v for v in verdicts if inspect.isawaitable(v)]
    if pending:
        resolved = iter(await asyncio.gather(*pending))
        verdicts = [next(resolved) if inspect.isawaitable(v) else v for v in verdicts]
    return [entry for entry, keep in zip(entries, verdicts) if keep]


class LogBackend(ABC):
    """
    Abstract base class for log backends.

    All methods are async so the facade can treat backends uniformly.
    """

    kind: BackendKind

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def wait_ready(self) -> None:
        """Make sure the store is usable. No-op unless overridden."""
        return None

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying store. Must be idempotent."""

    @abstractmethod
    def is_closed(self) -> bool:
        pass

    def _check_open(self) -> None:
        if self.is_closed():
            raise RuntimeError(f"{type(self).__name__} is closed")

    # =========================================================================
    # LOG OPERATIONS
    # =========================================================================

    @abstractmethod
    async def add_log(self, entry: Union[LogEntry, Dict[str, Any]], **options: Any) -> None:
        """Insert or replace an entry by id."""

    @abstractmethod
    async def remove_log(self, log_id: LogId) -> bool:
        """Delete by id. Returns True if a row was removed."""

    @abstractmethod
    async def get_log_by_id(self, log_id: LogId) -> Optional[LogEntry]:
        pass

    @abstractmethod
    async def get_logs(
        self,
        filter_fn: Optional[LogFilter] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[LogEntry]:
        """All entries in storage order, optionally paginated, then filtered in memory."""

    @abstractmethod
    async def query(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        """Raw SQL passthrough."""
