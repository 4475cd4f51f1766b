"""
Tests for scripts/logstore_admin.py.
"""
import asyncio
import json

import pytest

from logstore.config import StoreSettings
from logstore.db import SQLiteLogBackend
from scripts.logstore_admin import build_parser, main


def _seed(name, *entries):
    async def _run():
        backend = SQLiteLogBackend(name, settings=StoreSettings.from_env())
        for entry in entries:
            await backend.add_log(entry)
        await backend.close()

    asyncio.run(_run())


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_show_prints_json_lines(capsys):
    _seed("cli", {"id": "a", "data": {"n": 1}}, {"id": "b", "message": "hi"}, {"id": "c"})
    assert main(["show", "--name", "cli", "--limit", "1", "--offset", "1"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["id"] == "b"


def test_checksum_without_file(capsys):
    assert main(["checksum", "--name", "absent"]) == 0
    out = capsys.readouterr().out
    assert "current:  -" in out
    assert "changed:  False" in out


def test_migrate_nothing_to_do(capsys):
    assert main(["migrate", "--name", "absent"]) == 0
    assert "nothing to migrate" in capsys.readouterr().out


def test_migrate_and_force(capsys, patch_postgres):
    _seed("cli", {"id": "a"})
    assert main(["migrate", "--name", "cli"]) == 0
    assert "1 migrated, 0 skipped of 1" in capsys.readouterr().out
    assert list(patch_postgres.rows) == ["a"]

    assert main(["migrate", "--name", "cli"]) == 0
    assert "nothing to migrate" in capsys.readouterr().out

    assert main(["migrate", "--name", "cli", "--force"]) == 0
    assert "0 migrated, 1 skipped of 1" in capsys.readouterr().out


def test_migrate_without_config_fails(caplog):
    _seed("cli", {"id": "a"})
    assert main(["migrate", "--name", "cli"]) == 1
    assert "migrate failed" in caplog.text


def test_backup_failure_returns_error(monkeypatch):
    monkeypatch.setenv("LOGSTORE_DUMP_COMMAND", "false")
    _seed("cli", {"id": "a"})
    assert main(["backup", "--name", "cli"]) == 1
