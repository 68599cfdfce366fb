"""Local mutation path for notes and groups.

Every create/update/delete here is a *local* write: it bumps ``version`` by
one, stamps ``updated_at`` with the commit time, marks the row
``needs_sync`` and enqueues a snapshot for the next push.  Server-driven
writes go through :meth:`upsert_from_sync` instead, which never enqueues.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping

from loguru import logger

from notesync.filters import Filter
from notesync.models import GROUPS, NOTES, Group, Note, Operation, new_id, to_iso, to_local_row, utcnow
from notesync.queue import MutationQueue
from notesync.store.base import LocalStore

UNCATEGORIZED = "Uncategorized"

DEFAULT_GROUPS: list[tuple[str, str]] = [
    ("Work", "#3b82f6"),
    ("Personal", "#10b981"),
    ("Ideas", "#f59e0b"),
    ("Tasks", "#ef4444"),
    (UNCATEGORIZED, "#6b7280"),
]

_NOTE_FIELDS = frozenset({"title", "content", "content_markdown", "content_plain", "group_id"})
_GROUP_FIELDS = frozenset({"name", "color"})


class _Repository:
    table: str

    def __init__(
        self,
        store: LocalStore,
        queue: MutationQueue,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._queue = queue
        self._clock = clock

    def _now(self) -> str:
        return to_iso(self._clock())

    async def _commit(self, entity: Note | Group, operation: Operation) -> None:
        await self._store.upsert(self.table, entity.to_row())
        await self._queue.enqueue(self.table, entity.id, operation, entity.to_remote(), entity.user_id)

    async def upsert_from_sync(self, row: Mapping[str, Any]) -> None:
        """Write a server-provided row locally, tagged as already synced."""
        await self._store.upsert(self.table, to_local_row(self.table, row))

    async def hard_delete(self, id: str) -> None:
        await self._store.delete(self.table, id)


class NotesRepository(_Repository):
    table = NOTES

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, id: str, *, include_deleted: bool = False) -> Note | None:
        row = await self._store.get(NOTES, id)
        if row is None or (row["is_deleted"] and not include_deleted):
            return None
        return Note.from_row(row)

    async def all_notes(self, user_id: str) -> list[Note]:
        rows = await self._store.query(
            NOTES,
            Filter().eq("user_id", user_id).eq("is_deleted", False),
            order_by="updated_at DESC",
        )
        return [Note.from_row(r) for r in rows]

    async def notes_by_group(self, user_id: str, group_id: str | None) -> list[Note]:
        rows = await self._store.query(
            NOTES,
            Filter().eq("user_id", user_id).eq("group_id", group_id).eq("is_deleted", False),
            order_by="updated_at DESC",
        )
        return [Note.from_row(r) for r in rows]

    async def deleted_notes(self, user_id: str) -> list[Note]:
        rows = await self._store.query(
            NOTES, Filter().eq("user_id", user_id).eq("is_deleted", True), order_by="deleted_at DESC"
        )
        return [Note.from_row(r) for r in rows]

    async def search(self, user_id: str, query: str) -> list[Note]:
        """Case-insensitive substring search across title and plain text."""
        q = query.lower()
        return [
            n for n in await self.all_notes(user_id)
            if q in n.title.lower() or q in n.content_plain.lower()
        ]

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        user_id: str,
        *,
        title: str = "Untitled",
        content: dict[str, Any] | None = None,
        content_markdown: str = "",
        content_plain: str = "",
        group_id: str | None = None,
        id: str | None = None,
    ) -> Note:
        now = self._now()
        note = Note(
            id=id or new_id(),
            user_id=user_id,
            title=title,
            content=content or {},
            content_markdown=content_markdown,
            content_plain=content_plain,
            group_id=group_id,
            created_at=now,
            updated_at=now,
            version=1,
            needs_sync=True,
        )
        await self._commit(note, Operation.INSERT)
        return note

    async def update(self, id: str, **changes: Any) -> Note | None:
        unknown = set(changes) - _NOTE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update note fields: {', '.join(sorted(unknown))}")
        existing = await self.get(id)
        if existing is None:
            return None
        note = replace(
            existing,
            **changes,
            updated_at=self._now(),
            version=existing.version + 1,
            needs_sync=True,
        )
        await self._commit(note, Operation.UPDATE)
        return note

    async def delete(self, id: str) -> bool:
        """Tombstone a note; returns ``False`` if it was missing or already deleted."""
        existing = await self.get(id)
        if existing is None:
            return False
        now = self._now()
        note = replace(
            existing,
            is_deleted=True,
            deleted_at=now,
            updated_at=now,
            version=existing.version + 1,
            needs_sync=True,
        )
        await self._commit(note, Operation.DELETE)
        return True

    async def restore(self, id: str) -> Note | None:
        existing = await self.get(id, include_deleted=True)
        if existing is None or not existing.is_deleted:
            return None
        note = replace(
            existing,
            is_deleted=False,
            deleted_at=None,
            updated_at=self._now(),
            version=existing.version + 1,
            needs_sync=True,
        )
        await self._commit(note, Operation.UPDATE)
        return note

    async def move_to_group(self, from_group_id: str, to_group_id: str, user_id: str) -> int:
        notes = await self.notes_by_group(user_id, from_group_id)
        for note in notes:
            await self.update(note.id, group_id=to_group_id)
        if notes:
            logger.info("Moved {} notes from group {} to {}", len(notes), from_group_id, to_group_id)
        return len(notes)

    # ------------------------------------------------------------------
    # Server-driven
    # ------------------------------------------------------------------

    async def tombstone_from_sync(self, id: str, deleted_at: str | None = None) -> bool:
        """Apply a remote delete locally without enqueueing it."""
        row = await self._store.get(NOTES, id)
        if row is None:
            return False
        now = self._now()
        stamp = to_iso(deleted_at) if deleted_at else row["deleted_at"] or now
        row.update(is_deleted=True, deleted_at=stamp, updated_at=now, needs_sync=False)
        await self._store.upsert(NOTES, row)
        return True

    async def purge_deleted_before(self, cutoff: datetime) -> int:
        return await self._store.delete_where(
            NOTES, Filter().eq("is_deleted", True).lt("deleted_at", cutoff)
        )


class GroupsRepository(_Repository):
    table = GROUPS

    async def get(self, id: str, *, include_deleted: bool = False) -> Group | None:
        row = await self._store.get(GROUPS, id)
        if row is None or (row["is_deleted"] and not include_deleted):
            return None
        return Group.from_row(row)

    async def all_groups(self, user_id: str) -> list[Group]:
        rows = await self._store.query(
            GROUPS, Filter().eq("user_id", user_id).eq("is_deleted", False), order_by="name"
        )
        return [Group.from_row(r) for r in rows]

    async def uncategorized(self, user_id: str) -> Group | None:
        rows = await self._store.query(
            GROUPS,
            Filter().eq("user_id", user_id).eq("name", UNCATEGORIZED).eq("is_deleted", False),
            limit=1,
        )
        return Group.from_row(rows[0]) if rows else None

    async def create(self, name: str, user_id: str, *, color: str = "#14b8a6", id: str | None = None) -> Group:
        now = self._now()
        group = Group(
            id=id or new_id(),
            name=name,
            user_id=user_id,
            color=color,
            created_at=now,
            updated_at=now,
            version=1,
            needs_sync=True,
        )
        await self._commit(group, Operation.INSERT)
        return group

    async def update(self, id: str, **changes: Any) -> Group | None:
        unknown = set(changes) - _GROUP_FIELDS
        if unknown:
            raise ValueError(f"Cannot update group fields: {', '.join(sorted(unknown))}")
        existing = await self.get(id)
        if existing is None:
            return None
        group = replace(existing, **changes, updated_at=self._now(), version=existing.version + 1, needs_sync=True)
        await self._commit(group, Operation.UPDATE)
        return group

    async def delete(self, id: str) -> bool:
        existing = await self.get(id)
        if existing is None:
            return False
        group = replace(
            existing, is_deleted=True, updated_at=self._now(), version=existing.version + 1, needs_sync=True
        )
        await self._commit(group, Operation.DELETE)
        return True

    async def seed_default_groups(self, user_id: str) -> list[Group]:
        return [await self.create(name, user_id, color=color) for name, color in DEFAULT_GROUPS]

    async def tombstone_from_sync(self, id: str) -> bool:
        row = await self._store.get(GROUPS, id)
        if row is None:
            return False
        row.update(is_deleted=True, updated_at=self._now(), needs_sync=False)
        await self._store.upsert(GROUPS, row)
        return True
