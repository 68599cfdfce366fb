"""End-to-end tests for notesync.app.NotesyncApp on the in-process remote."""

import pytest

from notesync.app import NotesyncApp
from notesync.config import SyncConfig
from notesync.remote import MemoryRemoteStore, PostgrestRemoteStore

USER = "user-1"


@pytest.mark.asyncio
class TestNotesyncApp:
    async def test_defaults_to_memory_remote(self):
        async with NotesyncApp() as app:
            assert isinstance(app.remote, MemoryRemoteStore)
            assert app.realtime is app.remote
            assert app.probe is None

    async def test_remote_url_builds_postgrest_client(self):
        async with NotesyncApp(SyncConfig(remote_url="https://project.example.co", api_key="k")) as app:
            assert isinstance(app.remote, PostgrestRemoteStore)
            assert app.realtime is None
            assert app.probe is not None

    async def test_two_devices_converge(self):
        shared = MemoryRemoteStore()
        async with NotesyncApp(remote=shared) as phone, NotesyncApp(remote=shared) as laptop:
            await phone.start(USER)
            await laptop.start(USER)

            note = await phone.notes.create(USER, title="Groceries")
            await phone.engine.force_sync_now(USER)
            await shared.flush()
            assert (await laptop.notes.get(note.id)).title == "Groceries"

            await laptop.notes.delete(note.id)
            await laptop.engine.force_sync_now(USER)
            await shared.flush()
            assert await phone.notes.get(note.id) is None
            assert (await phone.notes.get(note.id, include_deleted=True)).is_deleted

    async def test_sign_out_clears_queue(self):
        async with NotesyncApp() as app:
            await app.start(USER)
            app.network.set_online(False)
            await app.notes.create(USER)
            assert await app.queue.size(USER) == 1
            await app.sign_out()
            assert await app.queue.size(USER) == 0
            assert not app.reconciler.is_active
            assert app.session.user_id is None

    async def test_maintenance_sync(self):
        async with NotesyncApp() as app:
            await app.start(USER)
            await app.notes.create(USER)
            result = await app.reconciler.perform_maintenance_sync()
            assert result.pushed == 1
