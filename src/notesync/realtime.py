"""Realtime reconciler: applies remote change events as they arrive.

The reconciler is the push-driven half of sync.  It listens to the remote
change feed for the signed-in user, writes incoming rows locally when they
are newer, and keeps the engine's periodic timer and foreground trigger
wired up while it is active.

Failed events are retried with jittered exponential backoff.  Retries are
keyed by collection and a newer failure replaces the pending retry for the
same collection, so at most one timer per collection is ever outstanding.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from loguru import logger

from notesync.config import RETRY_BASE_DELAY, RETRY_MAX_DELAY, SYNC_INTERVAL
from notesync.conflict import updated_at
from notesync.errors import UnknownTableError
from notesync.events import BackgroundTasks
from notesync.filters import Filter
from notesync.models import GROUPS, NOTES, SYNCED_TABLES, AppState, ChangeEvent, Operation, SyncResult
from notesync.network import AppStateMonitor
from notesync.remote.base import RealtimeSource, Subscription
from notesync.repository import GroupsRepository, NotesRepository

if TYPE_CHECKING:
    from notesync.cleanup import CleanupSweeper
    from notesync.engine import SyncEngine


@dataclass(frozen=True)
class WorkerStatus:
    is_active: bool
    is_online: bool
    is_syncing: bool


class RealtimeReconciler:
    """Keeps the local store current from the remote change feed.

    Args:
        engine: Sync engine used for the initial, periodic and foreground syncs.
        notes: Notes repository that server-driven writes go through.
        groups: Groups repository that server-driven writes go through.
        realtime: Change feed; without one only the timers are managed.
        app_state: Foreground/background source; a switch to active syncs once.
        sync_interval: Period handed to the engine's timer.
        retry_base_delay: Backoff base in seconds.
        retry_max_delay: Backoff cap in seconds.
        rng: Returns a float in ``[0, 1)``; drives the backoff jitter.
        cleanup: Sweeper whose local step runs in maintenance syncs.
    """

    def __init__(
        self,
        engine: "SyncEngine",
        notes: NotesRepository,
        groups: GroupsRepository,
        realtime: RealtimeSource | None = None,
        *,
        app_state: AppStateMonitor | None = None,
        sync_interval: float = SYNC_INTERVAL,
        retry_base_delay: float = RETRY_BASE_DELAY,
        retry_max_delay: float = RETRY_MAX_DELAY,
        rng: Callable[[], float] = random.random,
        cleanup: "CleanupSweeper | None" = None,
    ) -> None:
        self._engine = engine
        self._repos: dict[str, NotesRepository | GroupsRepository] = {NOTES: notes, GROUPS: groups}
        self._realtime = realtime
        self._app_state = app_state
        self.sync_interval = sync_interval
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._rng = rng
        self._cleanup = cleanup

        self._active = False
        self._user_id: str | None = None
        self._subscriptions: list[Subscription] = []
        self._detach_app_state: Callable[[], None] | None = None
        self._retries: dict[str, asyncio.Task] = {}
        self._tasks = BackgroundTasks("foreground-sync")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def pending_retries(self) -> dict[str, asyncio.Task]:
        return dict(self._retries)

    async def start(self, user_id: str) -> None:
        """Subscribe for *user_id*, start the periodic timer and sync once.

        Calling ``start`` while already active does nothing.
        """
        if self._active:
            return
        self._active = True
        self._user_id = user_id

        if self._realtime is not None:
            scope = Filter().eq("user_id", user_id)
            self._subscriptions = [
                self._realtime.subscribe(table, scope, self.handle_event) for table in SYNCED_TABLES
            ]
        if self._app_state is not None:
            self._detach_app_state = self._app_state.subscribe(self._on_app_state)

        self._engine.start_periodic_sync(self.sync_interval, user_id)
        logger.info("Realtime sync started for {}", user_id)
        await self._engine.start_sync(user_id)

    def stop(self) -> None:
        """Tear down subscriptions, timers and pending retries."""
        if self._realtime is not None:
            for subscription in self._subscriptions:
                self._realtime.unsubscribe(subscription)
        self._subscriptions = []

        self._engine.stop_periodic_sync()

        for task in self._retries.values():
            task.cancel()
        self._retries.clear()

        if self._detach_app_state is not None:
            self._detach_app_state()
            self._detach_app_state = None
        self._tasks.cancel_all()

        if self._active:
            logger.info("Realtime sync stopped")
        self._active = False

    def _on_app_state(self, state: AppState) -> None:
        if state is AppState.ACTIVE and self._active:
            logger.debug("App returned to foreground, syncing")
            self._tasks.spawn(self._engine.start_sync(self._user_id))

    def status(self) -> WorkerStatus:
        return WorkerStatus(
            is_active=self._active,
            is_online=self._engine.is_online,
            is_syncing=self._engine.is_syncing,
        )

    async def perform_maintenance_sync(self, user_id: str | None = None) -> SyncResult:
        """Run the local retention sweep, then force a sync cycle."""
        if self._cleanup is not None:
            try:
                await self._cleanup.cleanup_local()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Maintenance cleanup failed: {}", exc)
        return await self._engine.force_sync_now(user_id or self._user_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_event(self, event: ChangeEvent) -> None:
        """Apply one change event; failures schedule a retry and never raise."""
        try:
            await self.apply(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to apply {} on {}: {}", event.event_type.value, event.table, exc)
            self.schedule_retry(event.table, event, 1)

    async def apply(self, event: ChangeEvent) -> bool:
        """Write *event* to the local store; returns ``True`` if anything changed."""
        repo = self._repos.get(event.table)
        if repo is None:
            raise UnknownTableError(event.table)

        if event.event_type is Operation.DELETE:
            row = event.old or event.new or {}
            if not row.get("id"):
                return False
            if event.table == NOTES:
                return await self._repos[NOTES].tombstone_from_sync(row["id"], row.get("deleted_at"))
            return await self._repos[GROUPS].tombstone_from_sync(row["id"])

        row = event.new
        if not row or not row.get("id"):
            return False
        local = await repo.get(row["id"], include_deleted=True)
        if local is not None and updated_at(row) <= updated_at(local):
            return False
        await repo.upsert_from_sync(row)
        return True

    # ------------------------------------------------------------------
    # Retries
    # ------------------------------------------------------------------

    def retry_delay(self, attempt: int = 1) -> float:
        """Backoff before retry number *attempt*: doubles each time, jittered up to 2x, capped."""
        return min(self.retry_base_delay * 2 ** (attempt - 1) * (1 + self._rng()), self.retry_max_delay)

    def schedule_retry(self, key: str, event: ChangeEvent, attempt: int) -> asyncio.Task:
        """Schedule *event* to be re-applied, replacing any retry pending on *key*."""
        previous = self._retries.pop(key, None)
        if previous is not None:
            previous.cancel()
        delay = self.retry_delay(attempt)
        logger.debug("Retrying {} event on {} in {:.2f}s (attempt {})", event.event_type.value, key, delay, attempt)
        task = asyncio.get_running_loop().create_task(
            self._retry_after(key, event, attempt, delay), name=f"realtime-retry-{key}"
        )
        self._retries[key] = task
        return task

    async def _retry_after(self, key: str, event: ChangeEvent, attempt: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._retries.get(key) is asyncio.current_task():
            del self._retries[key]
        try:
            await self.apply(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Retry {} of {} event on {} failed: {}", attempt, event.event_type.value, key, exc)
            self.schedule_retry(key, event, attempt + 1)
