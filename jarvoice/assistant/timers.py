"""Delayed callbacks and background tasks tied to the lifetime of one session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

LOGGER = logging.getLogger("jarvoice-assistant.timers")


class TimerSet:
    """Schedules loop callbacks and tasks; nothing fires after ``close()``."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._handles: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False
        self._logger = logger or LOGGER

    @property
    def closed(self) -> bool:
        return self._closed

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle | None:
        if self._closed:
            return None
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _fire() -> None:
            self._handles.discard(handle)  # type: ignore[arg-type]
            if self._closed:
                return
            try:
                callback(*args)
            except Exception:
                self._logger.exception("Delayed callback %s failed", getattr(callback, "__name__", callback))

        handle = loop.call_later(max(0.0, delay), _fire)
        self._handles.add(handle)
        return handle

    def cancel(self, handle: asyncio.TimerHandle | None) -> None:
        if handle is None:
            return
        handle.cancel()
        self._handles.discard(handle)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        if self._closed:
            coro.close()
            raise RuntimeError("Timer set is closed")
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def cancel_timers(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    def close(self) -> None:
        self._closed = True
        self.cancel_timers()
        for task in list(self._tasks):
            task.cancel()
