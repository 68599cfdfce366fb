"""Local store protocols."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from notesync.filters import Filter


@runtime_checkable
class LocalStore(Protocol):
    """Id-addressed row store with basic predicate queries.

    Rows are plain dicts.  Every table has a string ``id`` primary key.
    """

    async def get(self, table: str, id: str) -> dict[str, Any] | None:
        """Fetch one row by *id* (tombstones included), or ``None``."""
        ...

    async def upsert(self, table: str, row: dict[str, Any]) -> None:
        """Insert *row* or replace the existing row with the same id."""
        ...

    async def query(
        self,
        table: str,
        filter: Filter | None = None,
        *,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching *filter*."""
        ...

    async def count(self, table: str, filter: Filter | None = None) -> int:
        ...

    async def delete(self, table: str, id: str) -> None:
        """Delete one row; deleting a missing row is a no-op."""
        ...

    async def delete_where(self, table: str, filter: Filter) -> int:
        """Delete every row matching *filter*; returns the number removed."""
        ...


@runtime_checkable
class SettingsStore(Protocol):
    """String key/value settings (persists the sync watermark)."""

    async def get_setting(self, key: str) -> str | None: ...

    async def set_setting(self, key: str, value: str) -> None: ...

    async def delete_setting(self, key: str) -> None: ...

    async def all_settings(self) -> dict[str, str]: ...
