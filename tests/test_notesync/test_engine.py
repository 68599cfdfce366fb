"""Unit tests for notesync.engine.SyncEngine."""

import asyncio

import pytest

from notesync.engine import LAST_SYNC_KEY
from notesync.errors import RemoteConnectionError
from notesync.models import Operation, to_iso

USER = "user-1"


async def _boom(*args, **kwargs):
    raise RemoteConnectionError("connection refused")


def _remote_note(id: str, updated_at: str, **kw) -> dict:
    row = {
        "id": id,
        "user_id": USER,
        "title": "Untitled",
        "content": {},
        "content_markdown": "",
        "content_plain": "",
        "group_id": None,
        "created_at": updated_at,
        "updated_at": updated_at,
        "version": 1,
        "is_deleted": False,
        "deleted_at": None,
    }
    row.update(kw)
    return row


# ---------------------------------------------------------------------------
# push
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPush:
    async def test_push_drains_queue_and_mirrors_local_state(self, engine, notes, groups, queue, remote, clock):
        group = await groups.create("Work", USER)
        a = await notes.create(USER, title="A", group_id=group.id)
        b = await notes.create(USER, title="B")
        clock.advance(seconds=1)
        await notes.update(a.id, title="A2", content={"ops": [{"insert": "hi"}]})
        await notes.delete(b.id)

        result = await engine.start_sync()

        assert result.ok
        assert result.pushed == 5 and result.failed == 0
        assert await queue.size(USER) == 0
        for note_id in (a.id, b.id):
            local = (await notes.get(note_id, include_deleted=True)).to_remote()
            assert remote.table("notes").rows[note_id] == local
        assert remote.table("groups").rows[group.id]["name"] == "Work"

    async def test_push_is_fifo(self, engine, notes, remote, clock):
        ids = []
        for i in range(3):
            ids.append((await notes.create(USER, title=str(i))).id)
            clock.advance(seconds=1)
        await engine.start_sync()
        assert list(remote.table("notes").rows) == ids

    async def test_delete_sends_soft_delete_patch(self, engine, notes, remote):
        note = await notes.create(USER)
        await engine.start_sync()
        await notes.delete(note.id)
        await engine.start_sync()
        row = remote.table("notes").rows[note.id]
        tomb = await notes.get(note.id, include_deleted=True)
        assert row["is_deleted"] is True
        assert row["deleted_at"] == tomb.deleted_at
        assert row["version"] == 2

    async def test_failed_item_is_recorded_and_others_continue(self, engine, notes, groups, queue, remote, monkeypatch):
        await notes.create(USER, title="doomed")
        group = await groups.create("Work", USER)
        monkeypatch.setattr(remote.table("notes"), "insert", _boom)

        result = await engine.start_sync()

        assert result.ok
        assert (result.pushed, result.failed) == (1, 1)
        assert group.id in remote.table("groups").rows
        (item,) = await queue.pending(USER)
        assert item.retry_count == 1
        assert "connection refused" in item.last_error

    async def test_five_failures_exclude_item(self, engine, notes, queue, remote, monkeypatch):
        await notes.create(USER)
        monkeypatch.setattr(remote.table("notes"), "insert", _boom)
        for _ in range(5):
            assert (await engine.start_sync()).failed == 1
        sixth = await engine.start_sync()
        assert sixth.failed == 0 and sixth.pushed == 0
        assert await queue.pending(USER) == []
        assert await queue.purge_exhausted(USER) == 1
        assert await queue.failed(USER) == []

    async def test_unknown_table_is_item_failure(self, engine, queue):
        item = await queue.enqueue("tags", "t1", Operation.INSERT, {"id": "t1"}, USER)
        result = await engine.start_sync()
        assert result.ok and result.failed == 1
        (pending,) = await queue.pending(USER)
        assert pending.id == item.id
        assert pending.last_error == "Unknown table: tags"


# ---------------------------------------------------------------------------
# pull
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPull:
    async def test_pulls_notes_then_groups(self, engine, remote, notes, groups, store, clock):
        calls = []
        for name in ("notes", "groups"):
            table = remote.table(name)
            original = table.select

            async def select(filter=None, _orig=original, _name=name):
                calls.append(_name)
                return await _orig(filter)

            table.select = select
        await remote.table("groups").insert({"id": "g1", "name": "Work", "user_id": USER,
                                               "updated_at": "2024-01-01T09:00:00+00:00"})
        await remote.table("notes").insert(_remote_note("n1", "2024-01-01T09:00:00Z", group_id="g1"))

        result = await engine.start_sync()

        assert calls == ["notes", "groups"]
        assert (result.pulled_notes, result.pulled_groups, result.applied) == (1, 1, 2)
        note = await notes.get("n1")
        assert note.group_id == "g1"
        assert note.needs_sync is False
        assert (await groups.get("g1")).name == "Work"
        assert await store.get_setting(LAST_SYNC_KEY) == to_iso(clock.now)

    async def test_pull_is_scoped_to_user(self, engine, remote, notes):
        await remote.table("notes").insert(_remote_note("mine", "2024-01-01T09:00:00Z"))
        await remote.table("notes").insert(_remote_note("theirs", "2024-01-01T09:00:00Z", user_id="other"))
        await engine.start_sync()
        assert await notes.get("mine") is not None
        assert await notes.get("theirs", include_deleted=True) is None

    async def test_pull_never_enqueues(self, engine, remote, queue):
        await remote.table("notes").insert(_remote_note("n1", "2024-01-01T09:00:00Z"))
        await engine.start_sync()
        assert await queue.size(USER) == 0

    async def test_apply_remote_is_idempotent(self, engine, store):
        row = _remote_note("n1", "2024-01-01T09:00:00Z", title="Remote", version=4)
        assert await engine.apply_remote("notes", row) is True
        first = await store.get("notes", "n1")
        assert await engine.apply_remote("notes", row) is True
        assert await store.get("notes", "n1") == first
        assert await store.count("notes") == 1
        assert first["version"] == 4
        assert first["updated_at"] == "2024-01-01T09:00:00.000000+00:00"

    async def test_pull_includes_tombstones(self, engine, remote, notes):
        await remote.table("notes").insert(
            _remote_note("n1", "2024-01-01T09:00:00Z", is_deleted=True, deleted_at="2024-01-01T09:00:00Z")
        )
        await engine.start_sync()
        assert await notes.get("n1") is None
        assert (await notes.get("n1", include_deleted=True)).is_deleted

    async def test_abort_keeps_watermark(self, engine, remote, notes, store, clock, monkeypatch):
        await engine.start_sync()
        watermark = await store.get_setting(LAST_SYNC_KEY)

        clock.advance(minutes=1)
        await remote.table("notes").insert(_remote_note("n1", to_iso(clock.now), title="late"))
        clock.advance(minutes=1)
        monkeypatch.setattr(remote.table("notes"), "select", _boom)

        failed = await engine.start_sync()
        assert failed.error == "connection refused"
        assert await store.get_setting(LAST_SYNC_KEY) == watermark
        assert engine.last_status.error == "connection refused"
        assert engine.last_status.last_sync_time.isoformat(timespec="microseconds") == watermark

        monkeypatch.undo()
        clock.advance(minutes=1)
        ok = await engine.start_sync()
        assert ok.ok
        assert (await notes.get("n1")).title == "late"
        assert await store.get_setting(LAST_SYNC_KEY) == to_iso(clock.now)


# ---------------------------------------------------------------------------
# scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestScenarios:
    async def test_remote_update_then_stale_snapshot(self, engine, notes, queue, remote, store, clock, monkeypatch):
        # T1: local insert pushed
        await notes.create(USER, title="A", id="n1")
        await engine.start_sync()
        assert await queue.size(USER) == 0
        assert remote.table("notes").rows["n1"]["title"] == "A"

        # T2: remote edit arrives via pull
        t2 = to_iso(clock.advance(minutes=1))
        await remote.table("notes").update("n1", {"title": "B", "updated_at": t2, "version": 2})
        clock.advance(seconds=1)
        await engine.start_sync()
        assert (await notes.get("n1")).title == "B"
        stale = dict(remote.table("notes").rows["n1"])

        # T3: local edit that has not reached the server yet
        clock.advance(minutes=1)
        await notes.update("n1", title="C")
        before = await store.get("notes", "n1")

        assert await engine.apply_remote("notes", stale) is False
        assert await store.get("notes", "n1") == before

        # Same through a full cycle whose push fails
        monkeypatch.setattr(remote.table("notes"), "update", _boom)
        await store.delete_setting(LAST_SYNC_KEY)
        result = await engine.start_sync()
        assert result.failed == 1 and result.pulled_notes == 1 and result.applied == 0
        after = await notes.get("n1")
        assert after.title == "C"
        assert after.version == before["version"]


# ---------------------------------------------------------------------------
# triggers and status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestTriggers:
    async def test_offline_is_noop(self, engine, network, notes, queue, remote):
        await notes.create(USER)
        network.set_online(False)
        result = await engine.start_sync()
        assert result.skipped
        assert await queue.size(USER) == 1
        assert remote.table("notes").rows == {}

    async def test_coming_online_triggers_sync(self, engine, network, notes, queue):
        network.set_online(False)
        await notes.create(USER)
        network.set_online(True)
        await engine.join_background()
        assert await queue.size(USER) == 0

    async def test_no_session_is_noop(self, engine, session, notes, queue):
        session.user_id = None
        await notes.create(USER)
        assert (await engine.start_sync()).skipped
        assert await queue.size(USER) == 1

    async def test_single_flight(self, engine, remote, monkeypatch):
        release = asyncio.Event()
        original = remote.table("notes").select

        async def slow_select(filter=None):
            await release.wait()
            return await original(filter)

        monkeypatch.setattr(remote.table("notes"), "select", slow_select)
        first = asyncio.create_task(engine.start_sync())
        await asyncio.sleep(0)
        assert engine.is_syncing

        second = await engine.start_sync()
        assert second.skipped

        release.set()
        assert (await first).ok
        assert not engine.is_syncing

    async def test_force_sync_now(self, engine, notes, queue):
        await notes.create("user-2")
        assert (await engine.force_sync_now("user-2")).pushed == 1

    async def test_periodic_sync(self, engine, notes, queue):
        engine.start_periodic_sync(0.01, USER)
        assert engine.periodic_running
        await notes.create(USER)
        for _ in range(100):
            if await queue.size(USER) == 0:
                break
            await asyncio.sleep(0.01)
        assert await queue.size(USER) == 0
        engine.stop_periodic_sync()
        assert not engine.periodic_running


@pytest.mark.asyncio
class TestStatus:
    async def test_start_and_end_status(self, engine, notes, clock):
        await notes.create(USER)
        await notes.create(USER)
        seen = []
        engine.add_status_listener(seen.append)

        await engine.start_sync()

        start, end = seen
        assert start.is_syncing and start.pending_operations == 2 and start.last_sync_time is None
        assert not end.is_syncing and end.pending_operations == 0
        assert end.error is None and end.is_online
        assert end.last_sync_time == clock.now
        assert engine.last_status is end

    async def test_failing_listener_does_not_break_cycle(self, engine, notes):
        seen = []

        def broken(status):
            raise RuntimeError("listener bug")

        engine.add_status_listener(broken)
        engine.add_status_listener(seen.append)
        await notes.create(USER)
        assert (await engine.start_sync()).ok
        assert len(seen) == 2

    async def test_remove_listener(self, engine):
        seen = []
        engine.add_status_listener(seen.append)
        engine.remove_status_listener(seen.append)
        await engine.start_sync()
        assert seen == []
