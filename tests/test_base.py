"""
Tests for shared backend types and helpers.
"""
import re
from datetime import datetime

import pytest

from logstore.db.base import LOG_TZ, LogEntry, apply_filter, now_timestamp


def test_now_timestamp_format():
    stamp = now_timestamp()
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\+07:00$", stamp)
    assert datetime.fromisoformat(stamp).utcoffset() == LOG_TZ.utcoffset(None)


def test_coerce_dict():
    entry = LogEntry.coerce({"id": 1, "data": {"a": 1}, "message": "m"})
    assert entry == LogEntry(id=1, data={"a": 1}, message="m", timestamp=None)
    assert LogEntry.coerce(entry) is entry


def test_coerce_requires_id():
    with pytest.raises(ValueError):
        LogEntry.coerce({"message": "m"})


def test_to_dict():
    assert LogEntry(id="1", data=[1], message="m", timestamp="t").to_dict() == {
        "id": "1", "data": [1], "message": "m", "timestamp": "t",
    }


@pytest.mark.asyncio
async def test_apply_filter_mixed_sync_and_async_results():
    entries = [LogEntry(id=str(i)) for i in range(4)]

    async def is_async_keep():
        return True

    def predicate(entry):
        if entry.id == "0":
            return True
        if entry.id == "1":
            return is_async_keep()
        return False

    kept = await apply_filter(entries, predicate)
    assert [e.id for e in kept] == ["0", "1"]


@pytest.mark.asyncio
async def test_apply_filter_none_returns_all():
    entries = [LogEntry(id="a")]
    assert await apply_filter(entries, None) == entries
