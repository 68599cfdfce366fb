"""Explicit observer registry and background-task tracking."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

Listener = Callable[[T], None]


class Signal(Generic[T]):
    """Ordered list of listeners; ``emit`` calls each in registration order.

    A listener that raises is logged and skipped so one broken observer cannot
    stop the others (or the emitter).
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[T]] = []

    def connect(self, listener: Listener[T]) -> Callable[[], None]:
        """Register *listener*; returns a callable that disconnects it."""
        self._listeners.append(listener)
        return lambda: self.disconnect(listener)

    def disconnect(self, listener: Listener[T]) -> None:
        self._listeners = [l for l in self._listeners if l != listener]

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:  # noqa: BLE001
                logger.exception("Listener {!r} on signal {} failed", listener, self.name)

    def __len__(self) -> int:
        return len(self._listeners)


class BackgroundTasks:
    """Tracks fire-and-forget tasks spawned from synchronous callbacks."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("{}: no running event loop, task dropped", self.name)
            return None
        task = loop.create_task(coro, name=self.name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("{} task crashed: {}", self.name, task.exception())

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def join(self) -> None:
        """Wait for every tracked task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)
