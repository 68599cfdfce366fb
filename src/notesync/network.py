"""Network-status and app-lifecycle sources.

:class:`NetworkMonitor` and :class:`AppStateMonitor` are fed by the host
platform and emit only on transitions.  :class:`HttpNetworkProbe` is a
platform-independent feeder that issues a periodic ``HEAD`` request.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import httpx
from loguru import logger

from notesync.events import Signal
from notesync.models import AppState


class NetworkMonitor:
    """Current connectivity plus a signal fired on every online/offline flip."""

    def __init__(self, online: bool = False) -> None:
        self._online = online
        self.changed: Signal[bool] = Signal("network")

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Network is now {}", "online" if online else "offline")
        self.changed.emit(online)

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        return self.changed.connect(listener)


class AppStateMonitor:
    """Foreground/background state of the host application."""

    def __init__(self, state: AppState = AppState.ACTIVE) -> None:
        self._state = state
        self.changed: Signal[AppState] = Signal("app_state")

    @property
    def state(self) -> AppState:
        return self._state

    def set_state(self, state: AppState | str) -> None:
        state = AppState(state)
        if state == self._state:
            return
        self._state = state
        self.changed.emit(state)

    def subscribe(self, listener: Callable[[AppState], None]) -> Callable[[], None]:
        return self.changed.connect(listener)


class HttpNetworkProbe:
    """Periodically checks *url* and reports reachability to a monitor."""

    def __init__(
        self,
        monitor: NetworkMonitor,
        url: str,
        *,
        interval: float = 15.0,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.monitor = monitor
        self.url = url
        self.interval = interval
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._task: asyncio.Task | None = None

    async def check(self) -> bool:
        """Run one probe; any HTTP response (even 4xx) counts as online."""
        try:
            await self._client.head(self.url)
            ok = True
        except httpx.HTTPError as exc:
            logger.debug("Probe of {} failed: {}", self.url, exc)
            ok = False
        self.monitor.set_online(ok)
        return ok

    async def _loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._loop(), name="network-probe")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        self.stop()
        await self._client.aclose()
