"""
Session observers

``SessionObserver`` is the seam between the voice session and whatever shows
it to the user. ``SessionPublisher`` renders every session change onto MQTT
topics and routes command topics back into the session.

Published topics (under ``<topic_base>``):
- ``state``: ``idle`` / ``listening`` / ``speaking`` (retained)
- ``status``, ``interim``, ``response``: display text (retained)
- ``navigate``: section name to open
- ``image``: ``{"url": ..., "generating": bool}`` (retained)
- ``notice``: ``{"title": ..., "description": ...}`` error toasts
- ``conversation_mode``: ``on`` / ``off`` (retained)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any

from jarvoice.assistant.config import SessionTopics
from jarvoice.assistant.models import VoiceState
from jarvoice.assistant.mqtt import AssistantMqtt
from jarvoice.assistant.voice_settings import VoiceSettingsStore
from jarvoice.utils import parse_bool

if TYPE_CHECKING:
    from jarvoice.assistant.session import VoiceSession

LOGGER = logging.getLogger("jarvoice-assistant.publisher")


class SessionObserver:
    """No-op observer; subclasses override what they display."""

    def voice_state_changed(self, state: VoiceState) -> None:
        pass

    def status_changed(self, text: str) -> None:
        pass

    def interim_changed(self, text: str) -> None:
        pass

    def response_changed(self, text: str) -> None:
        pass

    def navigate(self, target: str) -> None:
        pass

    def image_changed(self, url: str | None, generating: bool) -> None:
        pass

    def conversation_mode_changed(self, enabled: bool) -> None:
        pass

    def notify_error(self, title: str, description: str) -> None:
        pass


class SessionPublisher(SessionObserver):
    def __init__(
        self,
        mqtt: AssistantMqtt,
        topics: SessionTopics,
        *,
        settings_store: VoiceSettingsStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.topics = topics
        self.settings_store = settings_store
        self.logger = logger or LOGGER
        self._session: VoiceSession | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def voice_state_changed(self, state: VoiceState) -> None:
        self.mqtt.publish(self.topics.state, state.value, retain=True)

    def status_changed(self, text: str) -> None:
        self.mqtt.publish(self.topics.status, text, retain=True)

    def interim_changed(self, text: str) -> None:
        self.mqtt.publish(self.topics.interim, text, retain=True)

    def response_changed(self, text: str) -> None:
        self.mqtt.publish(self.topics.response, text, retain=True)

    def navigate(self, target: str) -> None:
        self.mqtt.publish(self.topics.navigate, target)

    def image_changed(self, url: str | None, generating: bool) -> None:
        self.mqtt.publish_json(self.topics.image, {"url": url, "generating": generating}, retain=True)

    def conversation_mode_changed(self, enabled: bool) -> None:
        self.mqtt.publish(self.topics.conversation_mode, "on" if enabled else "off", retain=True)

    def notify_error(self, title: str, description: str) -> None:
        self.mqtt.publish_json(self.topics.notice, {"title": title, "description": description})

    def attach(self, session: VoiceSession, loop: asyncio.AbstractEventLoop) -> None:
        """Subscribe to the command topics and forward them to ``session`` on ``loop``."""
        self._session = session
        self._loop = loop
        handlers: dict[str, Callable[[str], None]] = {
            self.topics.command: lambda payload: self._submit(session.submit_text_command(payload)),
            self.topics.quick_command: lambda payload: self._submit(session.quick_command(payload)),
            self.topics.image_generate: lambda payload: self._submit(session.generate_image(payload)),
            self.topics.summarize: lambda payload: self._submit(session.summarize_input(payload)),
            self.topics.replay: lambda _payload: self._submit(session.replay_last_response()),
            self.topics.voice_toggle: lambda _payload: self._call(session.toggle_voice),
            self.topics.conversation_mode_set: self._handle_conversation_mode,
            self.topics.voice_settings_set: self._handle_voice_settings,
        }
        for topic, handler in handlers.items():
            self.mqtt.subscribe(topic, handler)
        self.publish_snapshot(session)

    def publish_snapshot(self, session: VoiceSession) -> None:
        self.voice_state_changed(session.voice_state)
        self.status_changed(session.status_text)
        self.interim_changed(session.interim_text)
        self.response_changed(session.response_text)
        self.image_changed(session.image_url, session.generating_image)
        self.conversation_mode_changed(session.conversation_mode)

    def _handle_conversation_mode(self, payload: str) -> None:
        session = self._session
        if session is None:
            return
        value = payload.strip().lower()
        if value in {"toggle", ""}:
            self._call(session.toggle_conversation_mode)
            return
        self._call(session.toggle_conversation_mode, parse_bool(value))

    def _handle_voice_settings(self, payload: str) -> None:
        if self.settings_store is None:
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.logger.info("[mqtt] Ignoring malformed voice settings payload")
            return
        if not isinstance(data, dict):
            self.logger.info("[mqtt] Voice settings payload must be an object")
            return
        settings = self.settings_store.update(data)
        self.logger.info("[mqtt] Voice settings updated: %s", settings)

    def _submit(self, coro: Awaitable[Any]) -> Future[Any] | None:
        loop = self._loop
        if loop is None or loop.is_closed():
            if asyncio.iscoroutine(coro):
                coro.close()
            return None
        return asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]

    def _call(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)
