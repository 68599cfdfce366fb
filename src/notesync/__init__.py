"""notesync: offline-first note and group sync over DuckDB and PostgREST."""

from notesync.app import NotesyncApp
from notesync.cleanup import CleanupReport, CleanupStats, CleanupSweeper
from notesync.config import SyncConfig
from notesync.conflict import resolve
from notesync.engine import SyncEngine
from notesync.errors import (
    ConfigError,
    NotesyncError,
    NotFoundError,
    RemoteConnectionError,
    RemoteError,
    RemoteResponseError,
    StoreError,
    SyncError,
    UnknownTableError,
)
from notesync.filters import Filter
from notesync.logging_config import configure_logging
from notesync.models import ChangeEvent, Group, Note, Operation, QueueItem, SyncResult, SyncStatus
from notesync.network import AppStateMonitor, HttpNetworkProbe, NetworkMonitor
from notesync.queue import MutationQueue
from notesync.realtime import RealtimeReconciler, WorkerStatus
from notesync.repository import GroupsRepository, NotesRepository

__all__ = [
    "AppStateMonitor",
    "ChangeEvent",
    "CleanupReport",
    "CleanupStats",
    "CleanupSweeper",
    "ConfigError",
    "Filter",
    "Group",
    "GroupsRepository",
    "HttpNetworkProbe",
    "MutationQueue",
    "NetworkMonitor",
    "Note",
    "NotesRepository",
    "NotesyncApp",
    "NotesyncError",
    "NotFoundError",
    "Operation",
    "QueueItem",
    "RealtimeReconciler",
    "RemoteConnectionError",
    "RemoteError",
    "RemoteResponseError",
    "StoreError",
    "SyncConfig",
    "SyncEngine",
    "SyncError",
    "SyncResult",
    "SyncStatus",
    "UnknownTableError",
    "WorkerStatus",
    "configure_logging",
    "resolve",
]
