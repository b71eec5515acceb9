"""Background worker that answers basic commands while the backend is unreachable."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime

from jarvoice.assistant.intents import HONORIFIC_MALE, OFFLINE_CATEGORIES, match_intent

LOGGER = logging.getLogger("jarvoice-assistant.offline")

OFFLINE_COMMAND_TIMEOUT = 1.0


@dataclass
class OfflineRequest:
    command: str
    reply: asyncio.Future[dict[str, object]]


class OfflineWorker:
    """Answers time, date, greeting and identity questions from a bounded request queue."""

    def __init__(
        self,
        honorific: str = HONORIFIC_MALE,
        *,
        max_pending: int = 8,
        logger: logging.Logger | None = None,
    ) -> None:
        self.honorific = honorific
        self._queue: asyncio.Queue[OfflineRequest] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task[None] | None = None
        self._logger = logger or LOGGER

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        while not self._queue.empty():
            pending = self._queue.get_nowait()
            if not pending.reply.done():
                pending.reply.set_result({"success": False})

    def submit(self, command: str) -> asyncio.Future[dict[str, object]]:
        """Queue a command; raises ``asyncio.QueueFull`` when the channel is saturated."""
        reply: asyncio.Future[dict[str, object]] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(OfflineRequest(command=command, reply=reply))
        return reply

    def answer(self, command: str, now: datetime | None = None) -> dict[str, object]:
        result = match_intent(command, self.honorific, now, categories=OFFLINE_CATEGORIES)
        if result is None:
            return {"success": False}
        return {"success": True, "response": result.response_text}

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                payload = self.answer(request.command)
            except Exception:
                self._logger.exception("[offline] Failed to answer offline command")
                payload = {"success": False}
            if not request.reply.done():
                request.reply.set_result(payload)


async def query_offline_worker(
    worker: OfflineWorker | None,
    command: str,
    timeout: float = OFFLINE_COMMAND_TIMEOUT,
    logger: logging.Logger | None = None,
) -> str | None:
    """Ask the offline worker for an answer; any miss or timeout yields None."""
    log = logger or LOGGER
    if worker is None or not worker.running:
        return None
    try:
        reply = worker.submit(command)
    except asyncio.QueueFull:
        log.debug("[offline] Offline worker queue is full")
        return None
    try:
        payload = await asyncio.wait_for(reply, timeout=timeout)
    except TimeoutError:
        log.debug("[offline] Offline worker did not answer within %.1fs", timeout)
        return None
    if payload.get("success") and payload.get("response"):
        return str(payload["response"])
    return None
