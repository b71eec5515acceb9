"""
Remote command fallback for commands the local intent table does not know

Flow:
- Offline (per ConnectivityMonitor): ask the offline worker, else apologise
  that only basic commands are available
- Online: POST the original command text to the backend and interpret the
  structured reply
- Backend failure: retry through the offline worker, else apologise that the
  command was not understood

Reply interpretation:
- ``action`` ending in ``_open`` becomes a navigation target (suffix stripped)
- ``image_generating`` + ``imagePrompt`` becomes an image follow-up
- ``summarizing`` + ``summarizeCommand`` becomes a summary follow-up

resolve() never raises; every failure resolves to user-facing text.
"""

from __future__ import annotations

import logging
from typing import Any

from jarvoice.assistant.backend import BackendClient, BackendConnectionError, BackendError, BackendResponseError
from jarvoice.assistant.intents import HONORIFIC_MALE
from jarvoice.assistant.models import CommandResult, FollowUp
from jarvoice.assistant.network import ConnectivityMonitor
from jarvoice.assistant.offline import OFFLINE_COMMAND_TIMEOUT, OfflineWorker, query_offline_worker
from jarvoice.utils import capitalize_first

LOGGER = logging.getLogger("jarvoice-assistant.fallback")

NAVIGATION_SUFFIX = "_open"
IMAGE_ACTION = "image_generating"
SUMMARY_ACTION = "summarizing"


def offline_apology(honorific: str) -> str:
    return (
        f"{capitalize_first(honorific)}, я работаю в автономном режиме. Доступны только базовые команды: "
        "время, дата, приветствия. Для полного функционала необходимо подключение к сети."
    )


def not_understood_apology(honorific: str) -> str:
    return (
        f"Извините, {honorific}, я не совсем понял вашу команду. "
        "Попробуйте переформулировать или скажите 'помощь' для списка команд."
    )


def parse_command_response(data: dict[str, Any]) -> CommandResult:
    text = data.get("text")
    if not isinstance(text, str):
        raise BackendResponseError("Voice command response is missing text")
    action = data.get("action")
    if not isinstance(action, str) or not action:
        return CommandResult(response_text=text)
    if action == IMAGE_ACTION:
        prompt = data.get("imagePrompt")
        if isinstance(prompt, str) and prompt.strip():
            return CommandResult(response_text=text, follow_up=FollowUp("image", prompt.strip()))
        return CommandResult(response_text=text)
    if action == SUMMARY_ACTION:
        sub_command = data.get("summarizeCommand")
        if isinstance(sub_command, str) and sub_command.strip():
            return CommandResult(response_text=text, follow_up=FollowUp("summary", sub_command.strip()))
        return CommandResult(response_text=text)
    if action.endswith(NAVIGATION_SUFFIX):
        target = action[: -len(NAVIGATION_SUFFIX)]
        return CommandResult(response_text=text, action=target or None)
    return CommandResult(response_text=text)


class RemoteCommandFallback:
    def __init__(
        self,
        backend: BackendClient,
        connectivity: ConnectivityMonitor,
        *,
        offline_worker: OfflineWorker | None = None,
        honorific: str = HONORIFIC_MALE,
        offline_timeout: float = OFFLINE_COMMAND_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backend = backend
        self.connectivity = connectivity
        self.offline_worker = offline_worker
        self.honorific = honorific
        self.offline_timeout = offline_timeout
        self.logger = logger or LOGGER

    async def resolve(self, command: str) -> CommandResult:
        if not self.connectivity.online:
            offline_text = await self._ask_offline(command)
            return CommandResult(response_text=offline_text or offline_apology(self.honorific))
        try:
            data = await self.backend.voice_command(command)
            result = parse_command_response(data)
        except BackendError as exc:
            self.logger.warning("[fallback] Voice command failed: %s", exc)
            if isinstance(exc, BackendConnectionError):
                self.connectivity.mark_offline()
            offline_text = await self._ask_offline(command)
            return CommandResult(response_text=offline_text or not_understood_apology(self.honorific))
        self.connectivity.mark_online()
        self.logger.debug(
            "[fallback] Backend reply: action=%s follow_up=%s",
            result.action,
            result.follow_up.kind if result.follow_up else None,
        )
        return result

    async def _ask_offline(self, command: str) -> str | None:
        return await query_offline_worker(
            self.offline_worker,
            command,
            timeout=self.offline_timeout,
            logger=self.logger,
        )
