"""In-process remote store with a realtime change feed.

Useful for tests and offline development: every mutation is fanned out to the
matching subscriptions as a :class:`~notesync.models.ChangeEvent`, exactly like
the hosted backend's realtime channel.  Deliveries are scheduled as tasks on
the running loop; :meth:`MemoryRemoteStore.flush` waits for them.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from loguru import logger

from notesync.errors import RemoteResponseError
from notesync.filters import Filter
from notesync.models import ChangeEvent, Operation
from notesync.remote.base import ChangeHandler, Subscription


class MemoryTable:
    def __init__(self, store: "MemoryRemoteStore", name: str) -> None:
        self._store = store
        self.name = name
        self.rows: dict[str, dict[str, Any]] = {}

    async def insert(self, row: dict[str, Any]) -> None:
        if row.get("id") is None:
            raise RemoteResponseError(400, f"{self.name}: row has no id")
        if row["id"] in self.rows:
            raise RemoteResponseError(409, f"duplicate key value violates unique constraint on {self.name}.id")
        self.rows[row["id"]] = copy.deepcopy(row)
        self._store._publish(self.name, Operation.INSERT, new=self.rows[row["id"]])

    async def update(self, id: str, patch: dict[str, Any]) -> None:
        current = self.rows.get(id)
        if current is None:
            return
        old = copy.deepcopy(current)
        current.update(copy.deepcopy(patch))
        self._store._publish(self.name, Operation.UPDATE, new=current, old=old)

    async def select(self, filter: Filter | None = None) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.rows.values() if filter is None or filter.matches(r)]

    async def delete(self, filter: Filter) -> int:
        if not filter:
            raise ValueError("refusing to delete without a filter")
        doomed = [id for id, r in self.rows.items() if filter.matches(r)]
        for id in doomed:
            old = self.rows.pop(id)
            self._store._publish(self.name, Operation.DELETE, old=old)
        return len(doomed)

    async def count(self, filter: Filter | None = None) -> int:
        return sum(1 for r in self.rows.values() if filter is None or filter.matches(r))


class MemoryRemoteStore:
    """Remote table store and :class:`RealtimeSource` held in memory."""

    def __init__(self) -> None:
        self._tables: dict[str, MemoryTable] = {}
        self._subscriptions: list[Subscription] = []
        self._deliveries: set[asyncio.Task] = set()

    def table(self, name: str) -> MemoryTable:
        if name not in self._tables:
            self._tables[name] = MemoryTable(self, name)
        return self._tables[name]

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def subscribe(self, table: str, filter: Filter, handler: ChangeHandler) -> Subscription:
        subscription = Subscription(table=table, filter=filter, handler=handler)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def _publish(
        self,
        table: str,
        event_type: Operation,
        *,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
    ) -> None:
        row = new if new is not None else old or {}
        for subscription in self._subscriptions:
            if subscription.table != table or not subscription.filter.matches(row):
                continue
            event = ChangeEvent(
                event_type=event_type,
                table=table,
                new=copy.deepcopy(new),
                old=copy.deepcopy(old),
            )
            self._deliver(subscription, event)

    def _deliver(self, subscription: Subscription, event: ChangeEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; dropping {} event on {}", event.event_type.value, event.table)
            return
        task = loop.create_task(subscription.handler(event))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def flush(self) -> None:
        """Wait until every scheduled change event has been handled."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
