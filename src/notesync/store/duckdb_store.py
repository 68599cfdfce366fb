"""DuckDB-backed local store.

One DuckDB database file (or ``:memory:``) holds four tables:

- ``notes`` and ``groups`` – the synced entities, plus a local-only
  ``needs_sync`` flag,
- ``sync_queue`` – the durable mutation queue,
- ``user_settings`` – string key/value pairs (``lastSyncTime`` watermark).

Timestamps are stored as normalised ISO strings (see
:func:`notesync.models.to_iso`) so ``ORDER BY``/range predicates on them are
chronological.

Usage::

    store = DuckDBStore("notes.duckdb")
    await store.upsert("notes", note.to_row())
    rows = await store.query("notes", Filter().eq("user_id", uid), order_by="updated_at DESC")

    # Inspection views for the UI return Polars DataFrames
    df = store.frame("sync_queue", Filter().eq("user_id", uid), order_by="created_at")
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from notesync.errors import StoreError, UnknownTableError
from notesync.filters import Filter
from notesync.models import GROUPS, NOTES, SYNC_QUEUE, USER_SETTINGS, to_iso, utcnow

_SCHEMA: dict[str, str] = {
    GROUPS: """
        CREATE TABLE IF NOT EXISTS groups (
            id          VARCHAR PRIMARY KEY,
            name        VARCHAR NOT NULL,
            color       VARCHAR DEFAULT '#14b8a6',
            user_id     VARCHAR,
            created_at  VARCHAR,
            updated_at  VARCHAR,
            version     INTEGER DEFAULT 1,
            is_deleted  BOOLEAN DEFAULT FALSE,
            needs_sync  BOOLEAN DEFAULT FALSE
        )
    """,
    NOTES: """
        CREATE TABLE IF NOT EXISTS notes (
            id                VARCHAR PRIMARY KEY,
            title             VARCHAR NOT NULL DEFAULT 'Untitled',
            content           VARCHAR DEFAULT '{}',
            content_markdown  VARCHAR DEFAULT '',
            content_plain     VARCHAR DEFAULT '',
            group_id          VARCHAR,
            user_id           VARCHAR,
            created_at        VARCHAR,
            updated_at        VARCHAR,
            version           INTEGER DEFAULT 1,
            is_deleted        BOOLEAN DEFAULT FALSE,
            deleted_at        VARCHAR,
            needs_sync        BOOLEAN DEFAULT FALSE
        )
    """,
    SYNC_QUEUE: """
        CREATE TABLE IF NOT EXISTS sync_queue (
            id           VARCHAR PRIMARY KEY,
            table_name   VARCHAR NOT NULL,
            record_id    VARCHAR NOT NULL,
            operation    VARCHAR NOT NULL,
            data         VARCHAR NOT NULL,
            user_id      VARCHAR NOT NULL,
            created_at   VARCHAR NOT NULL,
            retry_count  INTEGER DEFAULT 0,
            last_error   VARCHAR,
            seq          BIGINT DEFAULT 0
        )
    """,
    USER_SETTINGS: """
        CREATE TABLE IF NOT EXISTS user_settings (
            key         VARCHAR PRIMARY KEY,
            value       VARCHAR,
            updated_at  VARCHAR
        )
    """,
}

_ORDER_RE = re.compile(r"^\s*[a-z_]+(\s+(ASC|DESC))?\s*$", re.IGNORECASE)


def _order_clause(order_by: str | None) -> str:
    if not order_by:
        return ""
    for part in order_by.split(","):
        if not _ORDER_RE.match(part):
            raise ValueError(f"Invalid order_by: {order_by!r}")
    return f" ORDER BY {order_by}"


class DuckDBStore:
    """Local row store and settings store over a single DuckDB connection."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn: duckdb.DuckDBPyConnection = duckdb.connect(self._db_path)
        except duckdb.Error as exc:
            raise StoreError(f"Cannot open local store {self._db_path}: {exc}") from exc
        self._columns: dict[str, list[str]] = {}
        self._create_schema()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_schema(self) -> None:
        for table, ddl in _SCHEMA.items():
            self.conn.execute(ddl)
            rows = self.conn.execute(
                "SELECT column_name FROM information_schema.columns "
                "WHERE table_name = ? ORDER BY ordinal_position",
                [table],
            ).fetchall()
            self._columns[table] = [r[0] for r in rows]

    def _table_columns(self, table: str) -> list[str]:
        try:
            return self._columns[table]
        except KeyError:
            raise UnknownTableError(table) from None

    # ------------------------------------------------------------------
    # Low-level execution
    # ------------------------------------------------------------------

    def _fetch(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        try:
            cursor = self.conn.execute(sql, params or [])
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc

    def _execute(self, sql: str, params: list[Any] | None = None) -> None:
        try:
            self.conn.execute(sql, params or [])
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc

    def _where(self, filter: Filter | None) -> tuple[str, list[Any]]:
        if not filter:
            return "", []
        fragment, params = filter.to_sql()
        return f" WHERE {fragment}", params

    # ------------------------------------------------------------------
    # LocalStore
    # ------------------------------------------------------------------

    async def get(self, table: str, id: str) -> dict[str, Any] | None:
        self._table_columns(table)
        rows = self._fetch(f"SELECT * FROM {table} WHERE id = ?", [id])
        return rows[0] if rows else None

    async def upsert(self, table: str, row: dict[str, Any]) -> None:
        columns = [c for c in self._table_columns(table) if c in row]
        if "id" not in columns:
            raise StoreError(f"Row for {table} has no id")
        placeholders = ", ".join("?" for _ in columns)
        self._execute(
            f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [row[c] for c in columns],
        )

    async def query(
        self,
        table: str,
        filter: Filter | None = None,
        *,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._table_columns(table)
        where, params = self._where(filter)
        sql = f"SELECT * FROM {table}{where}{_order_clause(order_by)}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return self._fetch(sql, params)

    async def count(self, table: str, filter: Filter | None = None) -> int:
        self._table_columns(table)
        where, params = self._where(filter)
        return int(self._fetch(f"SELECT COUNT(*) AS n FROM {table}{where}", params)[0]["n"])

    async def delete(self, table: str, id: str) -> None:
        self._table_columns(table)
        self._execute(f"DELETE FROM {table} WHERE id = ?", [id])

    async def delete_where(self, table: str, filter: Filter) -> int:
        if not filter:
            raise ValueError("delete_where requires at least one clause")
        removed = await self.count(table, filter)
        if removed:
            where, params = self._where(filter)
            self._execute(f"DELETE FROM {table}{where}", params)
        return removed

    # ------------------------------------------------------------------
    # SettingsStore
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> str | None:
        rows = self._fetch("SELECT value FROM user_settings WHERE key = ?", [key])
        return rows[0]["value"] if rows else None

    async def set_setting(self, key: str, value: str) -> None:
        self._execute(
            "INSERT OR REPLACE INTO user_settings (key, value, updated_at) VALUES (?, ?, ?)",
            [key, value, to_iso(utcnow())],
        )

    async def delete_setting(self, key: str) -> None:
        self._execute("DELETE FROM user_settings WHERE key = ?", [key])

    async def all_settings(self) -> dict[str, str]:
        return {r["key"]: r["value"] for r in self._fetch("SELECT key, value FROM user_settings")}

    # ------------------------------------------------------------------
    # Inspection views
    # ------------------------------------------------------------------

    def sql(self, query: str, params: list[Any] | None = None) -> pl.DataFrame:
        """Run a raw SQL query and return a Polars DataFrame."""
        return self.conn.execute(query, params or []).pl()

    def frame(
        self,
        table: str,
        filter: Filter | None = None,
        *,
        order_by: str | None = None,
    ) -> pl.DataFrame:
        """Return the rows of *table* matching *filter* as a Polars DataFrame."""
        self._table_columns(table)
        where, params = self._where(filter)
        return self.sql(f"SELECT * FROM {table}{where}{_order_clause(order_by)}", params)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "DuckDBStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
