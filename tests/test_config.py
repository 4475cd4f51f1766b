"""
Tests for environment-driven configuration.
"""
from pathlib import Path

from logstore.config import RelationalConfig, StoreSettings


class TestRelationalConfig:
    def test_defaults(self):
        config = RelationalConfig.from_env()
        assert config.host is None
        assert config.port == 5432
        assert config.table == "logs"
        assert config.connect_timeout == 60.0
        assert config.connection_limit == 5
        assert config.missing_fields() == ["host", "user", "password", "database"]

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LOGSTORE_DB_HOST", "db.example")
        monkeypatch.setenv("LOGSTORE_DB_PORT", "6543")
        monkeypatch.setenv("LOGSTORE_DB_USER", "writer")
        monkeypatch.setenv("LOGSTORE_DB_PASSWORD", "secret")
        monkeypatch.setenv("LOGSTORE_DB_NAME", "logs_db")
        monkeypatch.setenv("LOGSTORE_DB_TABLE", "entries")
        monkeypatch.setenv("LOGSTORE_CONNECT_TIMEOUT", "5")
        config = RelationalConfig.from_env()
        assert (config.host, config.port, config.user) == ("db.example", 6543, "writer")
        assert (config.database, config.table) == ("logs_db", "entries")
        assert config.connect_timeout == 5.0
        assert config.missing_fields() == []

    def test_overrides_win_and_unknown_keys_ignored(self, monkeypatch):
        monkeypatch.setenv("LOGSTORE_DB_HOST", "env-host")
        config = RelationalConfig.from_env(host="opt-host", port="7000", colour="blue", user=None)
        assert config.host == "opt-host"
        assert config.port == 7000
        assert config.user is None

    def test_safe_dict_masks_credentials(self):
        config = RelationalConfig(host="h", user="u", password="p", database="d")
        safe = config.safe_dict()
        assert safe["user"] == "***"
        assert safe["password"] == "***"
        assert safe["host"] == "h"


class TestStoreSettings:
    def test_paths_resolve_against_cwd(self, tmp_path):
        settings = StoreSettings.from_env()
        assert settings.cache_dir == tmp_path / ".cache"
        assert settings.migrations_dir == tmp_path / ".cache" / "migrations"
        assert settings.backup_dir == tmp_path / ".cache" / "database" / "backup"
        assert settings.schema_marker_dir == tmp_path / "tmp" / "database"

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LOGSTORE_DEFAULT_NAME", "visits")
        monkeypatch.setenv("LOGSTORE_CACHE_DIR", str(tmp_path / "elsewhere"))
        monkeypatch.setenv("LOGSTORE_BACKUP_ON_EXIT", "no")
        monkeypatch.setenv("LOGSTORE_SQLITE_ASYNC_WRAP", "true")
        settings = StoreSettings.from_env()
        assert settings.default_name == "visits"
        assert settings.cache_dir == Path(tmp_path / "elsewhere")
        assert settings.backup_on_exit is False
        assert settings.sqlite_async_wrap is True
