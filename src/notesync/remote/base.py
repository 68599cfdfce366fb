"""Remote store and realtime-feed protocols."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from notesync.filters import Filter
from notesync.models import ChangeEvent, new_id

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


@runtime_checkable
class RemoteTable(Protocol):
    """Table-scoped view of the shared, authoritative store."""

    name: str

    async def insert(self, row: dict[str, Any]) -> None:
        """Insert a new row; a duplicate id is an error."""
        ...

    async def update(self, id: str, patch: dict[str, Any]) -> None:
        """Apply *patch* to the row with *id* (no-op if absent)."""
        ...

    async def select(self, filter: Filter | None = None) -> list[dict[str, Any]]:
        ...

    async def delete(self, filter: Filter) -> int:
        """Hard-delete matching rows; returns the number removed."""
        ...

    async def count(self, filter: Filter | None = None) -> int:
        ...


@runtime_checkable
class RemoteStore(Protocol):
    def table(self, name: str) -> RemoteTable: ...


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`RealtimeSource.subscribe`."""

    table: str
    filter: Filter
    handler: ChangeHandler
    id: str = field(default_factory=new_id)
    active: bool = True


@runtime_checkable
class RealtimeSource(Protocol):
    """Push-style change feed, scoped by table and a row filter."""

    def subscribe(self, table: str, filter: Filter, handler: ChangeHandler) -> Subscription: ...

    def unsubscribe(self, subscription: Subscription) -> None: ...


@runtime_checkable
class SessionProvider(Protocol):
    async def current_user_id(self) -> str | None: ...


class StaticSession:
    """Session provider with a user id set by the host application."""

    def __init__(self, user_id: str | None = None) -> None:
        self.user_id = user_id

    async def current_user_id(self) -> str | None:
        return self.user_id
