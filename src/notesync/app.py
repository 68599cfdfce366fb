"""Service container wiring the store, queue, engine and workers together.

Usage::

    app = NotesyncApp.from_env()
    await app.start(user_id)
    note = await app.notes.create(user_id, title="Groceries")
    ...
    await app.aclose()
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from loguru import logger

from notesync.cleanup import CleanupSweeper
from notesync.config import SyncConfig
from notesync.engine import SyncEngine
from notesync.logging_config import configure_logging
from notesync.models import utcnow
from notesync.network import AppStateMonitor, HttpNetworkProbe, NetworkMonitor
from notesync.queue import MutationQueue
from notesync.realtime import RealtimeReconciler
from notesync.remote.base import RealtimeSource, RemoteStore, StaticSession
from notesync.remote.memory import MemoryRemoteStore
from notesync.remote.postgrest import PostgrestRemoteStore
from notesync.repository import GroupsRepository, NotesRepository
from notesync.store.duckdb_store import DuckDBStore


class NotesyncApp:
    """Builds every service once from a :class:`SyncConfig`.

    Without a ``remote_url`` the app runs against an in-process
    :class:`MemoryRemoteStore`, which also serves as its realtime feed.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        remote: RemoteStore | None = None,
        realtime: RealtimeSource | None = None,
        network: NetworkMonitor | None = None,
        app_state: AppStateMonitor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or SyncConfig()
        cfg = self.config

        self.store = DuckDBStore(cfg.db_path)
        self.queue = MutationQueue(self.store, max_retries=cfg.max_retries, clock=clock)
        self.notes = NotesRepository(self.store, self.queue, clock=clock)
        self.groups = GroupsRepository(self.store, self.queue, clock=clock)

        if remote is None:
            if cfg.has_remote:
                remote = PostgrestRemoteStore(
                    cfg.remote_url,
                    api_key=cfg.api_key,
                    access_token=cfg.access_token,
                    timeout=cfg.request_timeout,
                )
            else:
                remote = MemoryRemoteStore()
        self.remote = remote
        if realtime is None and isinstance(remote, RealtimeSource):
            realtime = remote
        self.realtime = realtime

        self.network = network or NetworkMonitor(online=True)
        self.probe: HttpNetworkProbe | None = None
        if cfg.has_remote and network is None:
            self.probe = HttpNetworkProbe(self.network, cfg.remote_url.rstrip("/") + "/rest/v1/")
        self.app_state = app_state or AppStateMonitor()
        self.session = StaticSession()

        self.engine = SyncEngine(
            self.store,
            self.store,
            self.queue,
            self.remote,
            network=self.network,
            session=self.session,
            batch_size=cfg.batch_size,
            clock=clock,
        )
        self.sweeper = CleanupSweeper(
            self.notes,
            self.groups,
            self.queue,
            self.remote,
            self.session,
            interval=cfg.cleanup_interval,
            deleted_retention_days=cfg.deleted_retention_days,
            queue_retention_days=cfg.queue_retention_days,
            clock=clock,
        )
        self.reconciler = RealtimeReconciler(
            self.engine,
            self.notes,
            self.groups,
            self.realtime,
            app_state=self.app_state,
            sync_interval=cfg.sync_interval,
            retry_base_delay=cfg.retry_base_delay,
            retry_max_delay=cfg.retry_max_delay,
            cleanup=self.sweeper,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "NotesyncApp":
        """Configure logging and build the app from ``NOTESYNC_*`` variables."""
        config = SyncConfig.from_env(**overrides)
        configure_logging(config.log_level)
        return cls(config)

    async def start(self, user_id: str) -> None:
        """Sign *user_id* in and start probing, cleanup and realtime sync."""
        self.session.user_id = user_id
        if self.probe is not None:
            self.probe.start()
        await self.sweeper.start()
        await self.reconciler.start(user_id)
        logger.info("notesync started for {}", user_id)

    def stop(self) -> None:
        self.reconciler.stop()
        self.sweeper.stop()
        if self.probe is not None:
            self.probe.stop()

    async def sign_out(self) -> None:
        """Stop every worker and drop the user's pending queue."""
        user_id = self.session.user_id
        self.stop()
        if user_id:
            await self.queue.clear(user_id)
        self.session.user_id = None

    async def aclose(self) -> None:
        self.stop()
        self.engine.close()
        if self.probe is not None:
            await self.probe.aclose()
        if isinstance(self.remote, PostgrestRemoteStore):
            await self.remote.aclose()
        self.store.close()

    async def __aenter__(self) -> "NotesyncApp":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
