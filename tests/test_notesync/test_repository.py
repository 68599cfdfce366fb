"""Unit tests for notesync.repository."""

from datetime import datetime, timezone

import pytest

from notesync.models import Operation
from notesync.repository import DEFAULT_GROUPS, UNCATEGORIZED

USER = "user-1"


# ---------------------------------------------------------------------------
# NotesRepository
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestNotes:
    async def test_create_enqueues_insert(self, notes, queue, clock):
        note = await notes.create(USER, title="A", content={"ops": []})
        assert note.version == 1
        assert note.needs_sync is True
        assert note.updated_at == clock.now.isoformat(timespec="microseconds")
        (item,) = await queue.pending(USER)
        assert item.operation is Operation.INSERT
        assert item.record_id == note.id
        assert item.payload["title"] == "A"
        assert item.payload["content"] == {"ops": []}
        assert "needs_sync" not in item.payload

    async def test_update_bumps_version(self, notes, queue, clock):
        note = await notes.create(USER, title="A")
        clock.advance(seconds=5)
        updated = await notes.update(note.id, title="B")
        assert updated.version == 2
        assert updated.updated_at > note.updated_at
        assert (await notes.get(note.id)).title == "B"
        ops = [i.operation for i in await queue.pending(USER)]
        assert ops == [Operation.INSERT, Operation.UPDATE]

    async def test_update_rejects_unknown_fields(self, notes):
        note = await notes.create(USER)
        with pytest.raises(ValueError):
            await notes.update(note.id, version=99)

    async def test_update_missing(self, notes):
        assert await notes.update("missing", title="x") is None

    async def test_delete_tombstones(self, notes, queue):
        note = await notes.create(USER)
        assert await notes.delete(note.id) is True
        assert await notes.get(note.id) is None
        tomb = await notes.get(note.id, include_deleted=True)
        assert tomb.is_deleted and tomb.deleted_at
        assert tomb.version == 2
        item = (await queue.pending(USER))[-1]
        assert item.operation is Operation.DELETE
        assert item.payload["deleted_at"] == tomb.deleted_at
        assert await notes.delete(note.id) is False

    async def test_restore(self, notes):
        note = await notes.create(USER)
        await notes.delete(note.id)
        restored = await notes.restore(note.id)
        assert restored.is_deleted is False
        assert restored.deleted_at is None
        assert restored.version == 3

    async def test_reads(self, notes, clock):
        a = await notes.create(USER, title="Shopping list", content_plain="milk eggs", group_id="g1")
        clock.advance(seconds=1)
        b = await notes.create(USER, title="Ideas", group_id="g2")
        await notes.create("other", title="Shopping")
        assert [n.id for n in await notes.all_notes(USER)] == [b.id, a.id]
        assert [n.id for n in await notes.notes_by_group(USER, "g1")] == [a.id]
        assert [n.id for n in await notes.search(USER, "MILK")] == [a.id]
        await notes.delete(a.id)
        assert [n.id for n in await notes.deleted_notes(USER)] == [a.id]

    async def test_move_to_group(self, notes, queue):
        a = await notes.create(USER, group_id="g1")
        b = await notes.create(USER, group_id="g1")
        assert await notes.move_to_group("g1", "g2", USER) == 2
        assert {n.id for n in await notes.notes_by_group(USER, "g2")} == {a.id, b.id}
        assert await queue.size(USER) == 4

    async def test_upsert_from_sync_does_not_enqueue(self, notes, queue):
        await notes.upsert_from_sync(
            {"id": "n1", "user_id": USER, "title": "Remote", "content": {"a": 1},
             "updated_at": "2024-01-01T10:00:00Z", "version": 3}
        )
        note = await notes.get("n1")
        assert note.title == "Remote"
        assert note.needs_sync is False
        assert note.updated_at == "2024-01-01T10:00:00.000000+00:00"
        assert await queue.size(USER) == 0

    async def test_tombstone_from_sync(self, notes, queue):
        await notes.upsert_from_sync({"id": "n1", "user_id": USER, "updated_at": "2024-01-01T10:00:00Z"})
        assert await notes.tombstone_from_sync("n1") is True
        tomb = await notes.get("n1", include_deleted=True)
        assert tomb.is_deleted and tomb.deleted_at and not tomb.needs_sync
        assert await notes.tombstone_from_sync("unknown") is False
        assert await queue.size(USER) == 0

    async def test_tombstone_from_sync_normalises_deleted_at(self, notes):
        await notes.upsert_from_sync({"id": "n1", "user_id": USER, "updated_at": "2024-01-01T10:00:00Z"})
        await notes.tombstone_from_sync("n1", "2024-01-02T03:04:05.123+02:00")
        tomb = await notes.get("n1", include_deleted=True)
        assert tomb.deleted_at == "2024-01-02T01:04:05.123000+00:00"

        assert await notes.purge_deleted_before(datetime(2024, 1, 2, 1, 4, 6, tzinfo=timezone.utc)) == 1


# ---------------------------------------------------------------------------
# GroupsRepository
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestGroups:
    async def test_seed_default_groups(self, groups, queue):
        seeded = await groups.seed_default_groups(USER)
        assert [(g.name, g.color) for g in seeded] == DEFAULT_GROUPS
        assert (await groups.uncategorized(USER)).name == UNCATEGORIZED
        assert await queue.size(USER) == len(DEFAULT_GROUPS)

    async def test_update_and_delete(self, groups):
        group = await groups.create("Work", USER, color="#000000")
        updated = await groups.update(group.id, name="Job")
        assert updated.name == "Job" and updated.version == 2
        assert await groups.delete(group.id) is True
        assert await groups.get(group.id) is None
        assert (await groups.get(group.id, include_deleted=True)).version == 3
        assert await groups.all_groups(USER) == []

    async def test_update_rejects_unknown_fields(self, groups):
        group = await groups.create("Work", USER)
        with pytest.raises(ValueError):
            await groups.update(group.id, user_id="someone")
