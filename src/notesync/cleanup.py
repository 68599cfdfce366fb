"""Retention sweeps and user-initiated deletion.

Tombstones are kept for ``deleted_retention_days`` so every device has a
chance to pull them, then hard-deleted locally and remotely.  Queue items
expire after ``queue_retention_days`` whatever their state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from notesync.config import CLEANUP_INTERVAL, DELETED_RETENTION_DAYS, QUEUE_RETENTION_DAYS
from notesync.errors import NotesyncError, NotFoundError, SyncError
from notesync.filters import Filter
from notesync.models import GROUPS, NOTES, SYNC_OPERATIONS, Note, to_iso, utcnow
from notesync.queue import MutationQueue
from notesync.remote.base import RemoteStore, SessionProvider
from notesync.repository import GroupsRepository, NotesRepository


@dataclass
class CleanupReport:
    local_notes: int = 0
    queue_expired: int = 0
    queue_exhausted: int = 0
    remote_notes: int = 0
    remote_groups: int = 0
    remote_operations: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class CleanupStats:
    deleted_notes: int
    deleted_groups: int
    old_sync_operations: int
    next_cleanup: datetime


def _owned(user_id: str) -> Filter:
    return Filter().eq("user_id", user_id)


class CleanupSweeper:
    def __init__(
        self,
        notes: NotesRepository,
        groups: GroupsRepository,
        queue: MutationQueue,
        remote: RemoteStore,
        session: SessionProvider | None = None,
        *,
        interval: float = CLEANUP_INTERVAL,
        deleted_retention_days: int = DELETED_RETENTION_DAYS,
        queue_retention_days: int = QUEUE_RETENTION_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._notes = notes
        self._groups = groups
        self._queue = queue
        self._remote = remote
        self._session = session
        self.interval = interval
        self.deleted_retention = timedelta(days=deleted_retention_days)
        self.queue_retention = timedelta(days=queue_retention_days)
        self._clock = clock
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> CleanupReport:
        """Sweep once now, then every ``interval`` seconds until stopped."""
        self.stop()
        report = await self.run()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="cleanup")
        logger.info("Periodic cleanup started (every {}s)", self.interval)
        return report

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Periodic cleanup stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run()

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def _user_id(self) -> str | None:
        if self._session is None:
            return None
        try:
            return await self._session.current_user_id()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not resolve session for cleanup: {}", exc)
            return None

    async def _require_user(self) -> str:
        user_id = await self._user_id()
        if not user_id:
            raise SyncError("User not authenticated")
        return user_id

    async def run(self) -> CleanupReport:
        """Run the local step and, with a session, the remote step.

        Each step is isolated: a failure is logged and recorded in the report
        and the other step still runs.  Never raises.
        """
        report = CleanupReport()
        user_id = await self._user_id()
        try:
            await self.cleanup_local(user_id, report)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Local cleanup failed: {}", exc)
            report.errors.append(f"local: {exc}")
        if user_id:
            try:
                await self.cleanup_remote(user_id, report)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Remote cleanup failed: {}", exc)
                report.errors.append(f"remote: {exc}")
        logger.info(
            "Cleanup finished: local_notes={} queue={}/{} remote={}/{}/{}",
            report.local_notes,
            report.queue_expired,
            report.queue_exhausted,
            report.remote_notes,
            report.remote_groups,
            report.remote_operations,
        )
        return report

    perform_cleanup = run

    async def force_cleanup_now(self) -> CleanupReport:
        return await self.run()

    async def cleanup_local(self, user_id: str | None = None, report: CleanupReport | None = None) -> CleanupReport:
        report = report if report is not None else CleanupReport()
        now = self._clock()
        report.local_notes = await self._notes.purge_deleted_before(now - self.deleted_retention)
        report.queue_expired = await self._queue.purge_older_than(now - self.queue_retention)
        if user_id:
            report.queue_exhausted = await self._queue.purge_exhausted(user_id)
        return report

    async def cleanup_remote(self, user_id: str, report: CleanupReport | None = None) -> CleanupReport:
        report = report if report is not None else CleanupReport()
        now = self._clock()
        tombstone_cutoff = now - self.deleted_retention

        report.remote_notes = await self._remote.table(NOTES).delete(
            _owned(user_id).eq("is_deleted", True).lt("deleted_at", tombstone_cutoff)
        )
        report.remote_groups = await self._remote.table(GROUPS).delete(
            _owned(user_id).eq("is_deleted", True).lt("updated_at", tombstone_cutoff)
        )
        report.remote_operations = await self._remote.table(SYNC_OPERATIONS).delete(
            _owned(user_id).eq("processed", True).lt("created_at", now - self.queue_retention)
        )
        return report

    async def cleanup_stats(self) -> CleanupStats:
        user_id = await self._require_user()
        return CleanupStats(
            deleted_notes=await self._remote.table(NOTES).count(_owned(user_id).eq("is_deleted", True)),
            deleted_groups=await self._remote.table(GROUPS).count(_owned(user_id).eq("is_deleted", True)),
            old_sync_operations=await self._remote.table(SYNC_OPERATIONS).count(
                _owned(user_id).eq("processed", True).lt("created_at", self._clock() - self.queue_retention)
            ),
            next_cleanup=self._clock() + timedelta(seconds=self.interval),
        )

    # ------------------------------------------------------------------
    # User-initiated deletion
    # ------------------------------------------------------------------

    async def soft_delete_note(self, id: str) -> None:
        if not await self._notes.delete(id):
            raise NotFoundError(f"Note not found: {id}")
        logger.info("Note {} soft deleted", id)

    async def soft_delete_group(self, id: str) -> None:
        """Move the group's notes into "Uncategorized", then tombstone it."""
        group = await self._groups.get(id)
        if group is None:
            raise NotFoundError(f"Group not found: {id}")
        user_id = await self._require_user()
        fallback = await self._groups.uncategorized(user_id)
        if fallback is None:
            raise NotFoundError("Uncategorized group not found")
        if fallback.id == group.id:
            raise NotesyncError("The Uncategorized group cannot be deleted")
        await self._notes.move_to_group(group.id, fallback.id, user_id)
        await self._groups.delete(group.id)
        logger.info("Group {} soft deleted, notes moved to {}", id, fallback.id)

    async def restore_deleted_note(self, id: str) -> Note | None:
        """Undelete a note remotely and, if it is known here, locally."""
        user_id = await self._require_user()
        now = to_iso(self._clock())
        patch: dict[str, Any] = {"is_deleted": False, "deleted_at": None, "updated_at": now}
        local = await self._notes.get(id, include_deleted=True)
        if local is not None:
            patch["version"] = local.version + 1
        await self._remote.table(NOTES).update(id, patch)

        if local is None:
            return None
        row = local.to_remote()
        row.update(patch)
        await self._notes.upsert_from_sync(row)
        logger.info("Note {} restored for {}", id, user_id)
        return await self._notes.get(id)

    async def permanently_delete_note(self, id: str) -> None:
        user_id = await self._require_user()
        await self._remote.table(NOTES).delete(Filter().eq("id", id).eq("user_id", user_id))
        await self._notes.hard_delete(id)
        logger.info("Note {} permanently deleted", id)

    async def deleted_notes(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._remote.table(NOTES).select(Filter().eq("user_id", user_id).eq("is_deleted", True))
        return sorted(rows, key=lambda r: r.get("deleted_at") or "", reverse=True)

    async def deleted_groups(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._remote.table(GROUPS).select(Filter().eq("user_id", user_id).eq("is_deleted", True))
        return sorted(rows, key=lambda r: r.get("updated_at") or "", reverse=True)
