"""Durable per-user mutation queue.

Every committed local write enqueues one :class:`~notesync.models.QueueItem`
holding a JSON snapshot of the entity.  The sync engine drains the queue
oldest-first; a failed push bumps ``retry_count`` and, once it reaches
``max_retries``, the item is no longer offered by :meth:`MutationQueue.pending`
and is left for the cleanup sweeper to purge.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from notesync.config import BATCH_SIZE, MAX_RETRIES
from notesync.filters import Filter
from notesync.models import SYNC_QUEUE, Operation, QueueItem, new_id, to_iso, utcnow
from notesync.store.base import LocalStore


class MutationQueue:
    def __init__(
        self,
        store: LocalStore,
        *,
        max_retries: int = MAX_RETRIES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.max_retries = max_retries
        self._clock = clock
        self._seq: int | None = None

    async def _next_seq(self) -> int:
        if self._seq is None:
            last = await self._store.query(SYNC_QUEUE, order_by="seq DESC", limit=1)
            self._seq = int(last[0]["seq"]) if last else 0
        self._seq += 1
        return self._seq

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        table: str,
        record_id: str,
        operation: Operation | str,
        payload: dict[str, Any],
        user_id: str,
    ) -> QueueItem:
        item = QueueItem(
            id=new_id(),
            table_name=table,
            record_id=record_id,
            operation=Operation(operation),
            data=json.dumps(payload),
            user_id=user_id,
            created_at=to_iso(self._clock()),
            seq=await self._next_seq(),
        )
        await self._store.upsert(SYNC_QUEUE, item.to_row())
        logger.debug("Queued {} {}/{} as {}", item.operation.value, table, record_id, item.id)
        return item

    async def remove(self, id: str) -> None:
        await self._store.delete(SYNC_QUEUE, id)

    async def record_failure(self, id: str, error: str) -> None:
        row = await self._store.get(SYNC_QUEUE, id)
        if row is None:
            return
        row["retry_count"] = int(row["retry_count"] or 0) + 1
        row["last_error"] = error
        await self._store.upsert(SYNC_QUEUE, row)

    async def retry_failed(self, id: str) -> None:
        """Give an exhausted item a fresh set of attempts."""
        row = await self._store.get(SYNC_QUEUE, id)
        if row is None:
            return
        row["retry_count"] = 0
        row["last_error"] = None
        await self._store.upsert(SYNC_QUEUE, row)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def _pushable(self, user_id: str) -> Filter:
        return Filter().eq("user_id", user_id).lt("retry_count", self.max_retries)

    def _exhausted(self, user_id: str) -> Filter:
        return Filter().eq("user_id", user_id).gte("retry_count", self.max_retries)

    async def pending(self, user_id: str, limit: int = BATCH_SIZE) -> list[QueueItem]:
        rows = await self._store.query(
            SYNC_QUEUE, self._pushable(user_id), order_by="created_at ASC, seq ASC", limit=limit
        )
        return [QueueItem.from_row(r) for r in rows]

    async def size(self, user_id: str) -> int:
        return await self._store.count(SYNC_QUEUE, self._pushable(user_id))

    async def failed(self, user_id: str) -> list[QueueItem]:
        rows = await self._store.query(
            SYNC_QUEUE, self._exhausted(user_id), order_by="created_at DESC, seq DESC"
        )
        return [QueueItem.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def purge_exhausted(self, user_id: str) -> int:
        removed = await self._store.delete_where(SYNC_QUEUE, self._exhausted(user_id))
        if removed:
            logger.info("Purged {} exhausted queue items for {}", removed, user_id)
        return removed

    async def purge_older_than(self, cutoff: datetime) -> int:
        removed = await self._store.delete_where(SYNC_QUEUE, Filter().lt("created_at", cutoff))
        if removed:
            logger.info("Purged {} queue items created before {}", removed, to_iso(cutoff))
        return removed

    async def clear(self, user_id: str) -> int:
        return await self._store.delete_where(SYNC_QUEUE, Filter().eq("user_id", user_id))
