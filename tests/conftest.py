"""Shared fixtures: in-memory DuckDB store, in-process remote and a fake clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from notesync.engine import SyncEngine
from notesync.network import NetworkMonitor
from notesync.queue import MutationQueue
from notesync.remote import MemoryRemoteStore, StaticSession
from notesync.repository import GroupsRepository, NotesRepository
from notesync.store import DuckDBStore

USER = "user-1"
START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store():
    s = DuckDBStore(":memory:")
    yield s
    s.close()


@pytest.fixture()
def remote() -> MemoryRemoteStore:
    return MemoryRemoteStore()


@pytest.fixture()
def queue(store: DuckDBStore, clock: FakeClock) -> MutationQueue:
    return MutationQueue(store, clock=clock)


@pytest.fixture()
def notes(store: DuckDBStore, queue: MutationQueue, clock: FakeClock) -> NotesRepository:
    return NotesRepository(store, queue, clock=clock)


@pytest.fixture()
def groups(store: DuckDBStore, queue: MutationQueue, clock: FakeClock) -> GroupsRepository:
    return GroupsRepository(store, queue, clock=clock)


@pytest.fixture()
def network() -> NetworkMonitor:
    return NetworkMonitor(online=True)


@pytest.fixture()
def session() -> StaticSession:
    return StaticSession(USER)


@pytest.fixture()
def engine(store, queue, remote, network, session, clock):
    e = SyncEngine(store, store, queue, remote, network=network, session=session, clock=clock)
    yield e
    e.close()
