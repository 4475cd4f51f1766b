"""logstore: pluggable log persistence (SQLite / PostgreSQL)."""

__version__ = "1.0.0"
