"""Local persistence: store protocols and the DuckDB implementation."""

from notesync.store.base import LocalStore, SettingsStore
from notesync.store.duckdb_store import DuckDBStore

__all__ = ["LocalStore", "SettingsStore", "DuckDBStore"]
