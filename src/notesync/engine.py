"""Push/pull sync engine.

One cycle
---------
1. **Push** – read up to ``batch_size`` pending queue items (oldest first) and
   apply each to the remote store.  A failing item has its failure recorded
   and the loop moves on; successful items are removed.
2. **Pull** – fetch remote notes, then groups, with
   ``updated_at >= lastSyncTime``.  Each row is written locally when it is
   unknown or wins :func:`~notesync.conflict.resolve` (``latest``); such
   writes are tagged synced and never enqueued.
3. **Finalize** – persist ``lastSyncTime = now`` and broadcast status.

Any exception while reading the queue, pulling or finalizing aborts the
cycle; the watermark then stays where it was so the next cycle re-pulls the
same window.

Only one cycle runs at a time: a second :meth:`SyncEngine.start_sync` while
one is in flight returns immediately.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from notesync.config import BATCH_SIZE, SYNC_INTERVAL
from notesync.conflict import resolve
from notesync.errors import SyncError, UnknownTableError
from notesync.events import BackgroundTasks, Signal
from notesync.filters import Filter
from notesync.models import (
    EPOCH,
    NOTES,
    SYNCED_TABLES,
    Operation,
    QueueItem,
    SyncResult,
    SyncStatus,
    entity_from_row,
    parse_instant,
    to_iso,
    to_local_row,
    utcnow,
)
from notesync.network import NetworkMonitor
from notesync.queue import MutationQueue
from notesync.remote.base import RemoteStore, SessionProvider
from notesync.store.base import LocalStore, SettingsStore

LAST_SYNC_KEY = "lastSyncTime"

# Columns a remote UPDATE may not rewrite.
_IMMUTABLE = frozenset({"id", "user_id", "created_at"})


class SyncEngine:
    """Reconciles the local store with the remote store.

    Args:
        store: Local row store holding notes and groups.
        settings: Settings store holding the ``lastSyncTime`` watermark.
        queue: Mutation queue drained by the push phase.
        remote: Remote table store.
        network: Connectivity source; without one the engine assumes online.
        session: Resolves the current user when ``start_sync`` gets none.
        batch_size: Maximum queue items pushed per cycle.
        clock: Returns the current UTC time (injected by tests).
    """

    def __init__(
        self,
        store: LocalStore,
        settings: SettingsStore,
        queue: MutationQueue,
        remote: RemoteStore,
        *,
        network: NetworkMonitor | None = None,
        session: SessionProvider | None = None,
        batch_size: int = BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._queue = queue
        self._remote = remote
        self._session = session
        self.batch_size = batch_size
        self._clock = clock

        self._is_syncing = False
        self._user_id: str | None = None
        self._periodic: asyncio.Task | None = None
        self._tasks = BackgroundTasks("sync-trigger")
        self.status_changed: Signal[SyncStatus] = Signal("sync_status")
        self._last_status: SyncStatus | None = None

        self._network = network
        self._online = network.online if network is not None else True
        self._detach_network = network.subscribe(self._on_network_change) if network is not None else None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def last_status(self) -> SyncStatus | None:
        return self._last_status

    def add_status_listener(self, listener: Callable[[SyncStatus], None]) -> None:
        self.status_changed.connect(listener)

    def remove_status_listener(self, listener: Callable[[SyncStatus], None]) -> None:
        self.status_changed.disconnect(listener)

    def _notify(self, status: SyncStatus) -> None:
        self._last_status = status
        self.status_changed.emit(status)

    def _on_network_change(self, online: bool) -> None:
        was_online, self._online = self._online, online
        if online and not was_online:
            logger.info("Back online, triggering sync")
            self._tasks.spawn(self.start_sync(self._user_id))

    # ------------------------------------------------------------------
    # Watermark
    # ------------------------------------------------------------------

    async def last_sync_time(self) -> datetime | None:
        raw = await self._settings.get_setting(LAST_SYNC_KEY)
        return parse_instant(raw) if raw else None

    async def _pending_count(self, user_id: str) -> int:
        try:
            return await self._queue.size(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not count pending queue items: {}", exc)
            return self._last_status.pending_operations if self._last_status else 0

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def start_sync(self, user_id: str | None = None) -> SyncResult:
        """Run one push/pull cycle; never raises.

        Returns a skipped result when offline, when a cycle is already in
        flight, or when no user is signed in.
        """
        if not self._online or self._is_syncing:
            return SyncResult(skipped=True)
        self._is_syncing = True
        try:
            if user_id is None and self._session is not None:
                user_id = await self._session.current_user_id()
            if not user_id:
                logger.debug("No active session, skipping sync")
                return SyncResult(skipped=True)
            self._user_id = user_id
            return await self._run_cycle(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Sync failed before the cycle started: {}", exc)
            return SyncResult(error=str(exc))
        finally:
            self._is_syncing = False

    async def force_sync_now(self, user_id: str) -> SyncResult:
        return await self.start_sync(user_id)

    async def _run_cycle(self, user_id: str) -> SyncResult:
        result = SyncResult()
        previous = await self._safe_last_sync_time()
        self._notify(
            SyncStatus(
                is_syncing=True,
                pending_operations=await self._pending_count(user_id),
                last_sync_time=previous,
                is_online=self._online,
            )
        )
        logger.info("Sync cycle started for {}", user_id)

        try:
            await self._push(user_id, result)
            await self._pull(user_id, result)
            finished = self._clock()
            await self._settings.set_setting(LAST_SYNC_KEY, to_iso(finished))
        except Exception as exc:  # noqa: BLE001
            result.error = str(exc) or type(exc).__name__
            logger.exception("Sync cycle aborted: {}", result.error)
            self._notify(
                SyncStatus(
                    is_syncing=False,
                    pending_operations=await self._pending_count(user_id),
                    last_sync_time=previous,
                    error=result.error,
                    is_online=self._online,
                )
            )
            return result

        self._notify(
            SyncStatus(
                is_syncing=False,
                pending_operations=await self._pending_count(user_id),
                last_sync_time=finished,
                is_online=self._online,
            )
        )
        logger.info(
            "Sync cycle finished: pushed={} failed={} pulled={}/{} applied={}",
            result.pushed,
            result.failed,
            result.pulled_notes,
            result.pulled_groups,
            result.applied,
        )
        return result

    async def _safe_last_sync_time(self) -> datetime | None:
        try:
            return await self.last_sync_time()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not read watermark: {}", exc)
            return None

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def _push(self, user_id: str, result: SyncResult) -> None:
        items = await self._queue.pending(user_id, self.batch_size)
        if not items:
            return
        logger.debug("Pushing {} queued mutations", len(items))
        for item in items:
            try:
                await self.push_item(item)
            except Exception as exc:  # noqa: BLE001
                message = str(exc) or type(exc).__name__
                logger.warning("Failed to push queue item {} ({} {}): {}", item.id, item.operation.value, item.record_id, message)
                await self._queue.record_failure(item.id, message)
                result.failed += 1
                continue
            await self._queue.remove(item.id)
            result.pushed += 1

    async def push_item(self, item: QueueItem) -> None:
        """Apply one queue item to the remote store."""
        if item.table_name not in SYNCED_TABLES:
            raise UnknownTableError(item.table_name)
        payload = item.payload
        table = self._remote.table(item.table_name)

        if item.operation is Operation.DELETE:
            await table.update(item.record_id, _soft_delete_patch(item.table_name, payload))
            return

        row = entity_from_row(item.table_name, payload).to_remote()
        if item.operation is Operation.INSERT:
            await table.insert(row)
        else:
            await table.update(item.record_id, {k: v for k, v in row.items() if k not in _IMMUTABLE})

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def _pull(self, user_id: str, result: SyncResult) -> None:
        since = await self.last_sync_time() or EPOCH
        for name in SYNCED_TABLES:
            rows = await self._remote.table(name).select(
                Filter().eq("user_id", user_id).gte("updated_at", since)
            )
            if rows is None:
                raise SyncError(f"Remote returned no data for {name}")
            if name == NOTES:
                result.pulled_notes = len(rows)
            else:
                result.pulled_groups = len(rows)
            for row in rows:
                if await self.apply_remote(name, row):
                    result.applied += 1

    async def apply_remote(self, table: str, row: dict[str, Any]) -> bool:
        """Write *row* locally if it is new or wins last-write-wins.

        Returns ``True`` when the local store was written.
        """
        local = await self._store.get(table, row["id"])
        if local is not None and resolve(local, row, "latest") is not row:
            return False
        await self._store.upsert(table, to_local_row(table, row))
        return True

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    def start_periodic_sync(self, interval: float = SYNC_INTERVAL, user_id: str | None = None) -> None:
        self.stop_periodic_sync()
        if user_id is not None:
            self._user_id = user_id
        self._periodic = asyncio.get_running_loop().create_task(
            self._periodic_loop(interval), name="periodic-sync"
        )

    def stop_periodic_sync(self) -> None:
        if self._periodic is not None:
            self._periodic.cancel()
            self._periodic = None

    @property
    def periodic_running(self) -> bool:
        return self._periodic is not None and not self._periodic.done()

    async def _periodic_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._online:
                await self.start_sync(self._user_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def join_background(self) -> None:
        """Wait for syncs triggered by network transitions to finish."""
        await self._tasks.join()

    def close(self) -> None:
        """Detach from the network monitor and cancel every timer/task."""
        self.stop_periodic_sync()
        self._tasks.cancel_all()
        if self._detach_network is not None:
            self._detach_network()
            self._detach_network = None


def _soft_delete_patch(table: str, payload: dict[str, Any]) -> dict[str, Any]:
    patch: dict[str, Any] = {"is_deleted": True}
    for key in ("updated_at", "version"):
        if payload.get(key) is not None:
            patch[key] = payload[key]
    if table == NOTES and payload.get("deleted_at") is not None:
        patch["deleted_at"] = payload["deleted_at"]
    return patch
