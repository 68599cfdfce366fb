"""Remote store backends and realtime feed."""

from notesync.remote.base import (
    ChangeHandler,
    RealtimeSource,
    RemoteStore,
    RemoteTable,
    SessionProvider,
    StaticSession,
    Subscription,
)
from notesync.remote.memory import MemoryRemoteStore
from notesync.remote.postgrest import PostgrestRemoteStore

__all__ = [
    "ChangeHandler",
    "RealtimeSource",
    "RemoteStore",
    "RemoteTable",
    "SessionProvider",
    "StaticSession",
    "Subscription",
    "MemoryRemoteStore",
    "PostgrestRemoteStore",
]
