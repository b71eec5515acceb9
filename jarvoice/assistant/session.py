"""
Voice session orchestrator

Owns one recognition engine and one synthesis engine for the lifetime of the
daemon and drives each exchange:

    final text -> processing -> local intents -> remote fallback
               -> response text (+ navigation) -> playback -> idle
               -> re-arm capture when conversation mode is on

Exchanges never overlap. A command that arrives while another exchange is
running waits for it to finish, and capture is only re-armed once nothing is
waiting. Every failure ends in a spoken or published message and ``idle``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from jarvoice.assistant.backend import BackendClient, BackendError
from jarvoice.assistant.capture import (
    STATUS_LISTENING,
    CaptureState,
    CaptureTimings,
    RecognitionEngine,
    SpeechCaptureController,
)
from jarvoice.assistant.fallback import RemoteCommandFallback, not_understood_apology
from jarvoice.assistant.intents import HONORIFIC_MALE, match_intent, welcome_message
from jarvoice.assistant.models import CommandResult, FollowUp, VoiceState
from jarvoice.assistant.playback import PlaybackTimings, SpeechPlaybackController, SynthesisEngine
from jarvoice.assistant.publisher import SessionObserver
from jarvoice.assistant.timers import TimerSet
from jarvoice.assistant.voice_settings import VoiceSettingsStore

LOGGER = logging.getLogger("jarvoice-assistant.session")

STATUS_READY = "Готов к работе"
STATUS_PROCESSING = "Обрабатываю..."
STATUS_SPEAKING = "Говорю..."
STATUS_DIALOG_ON = "Режим диалога включён. Слушаю..."
STATUS_DIALOG_OFF = "Режим диалога выключен"

URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class SessionTimings:
    rearm_delay: float = 0.3
    conversation_start_delay: float = 0.3
    capture: CaptureTimings = field(default_factory=CaptureTimings)
    playback: PlaybackTimings = field(default_factory=PlaybackTimings)


class VoiceSession:
    def __init__(
        self,
        recognition: RecognitionEngine,
        synthesis: SynthesisEngine,
        fallback: RemoteCommandFallback,
        backend: BackendClient,
        settings_store: VoiceSettingsStore,
        *,
        honorific: str = HONORIFIC_MALE,
        language: str = "ru-RU",
        fallback_voice_language: str = "en-US",
        observer: SessionObserver | None = None,
        timings: SessionTimings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.fallback = fallback
        self.backend = backend
        self.honorific = honorific
        self.observer = observer or SessionObserver()
        self.timings = timings or SessionTimings()
        self.logger = logger or LOGGER

        self.timers = TimerSet(logger=self.logger)
        self.capture = SpeechCaptureController(
            recognition,
            self,
            self.timers,
            timings=self.timings.capture,
            logger=self.logger,
        )
        self.playback = SpeechPlaybackController(
            synthesis,
            settings_store,
            language=language,
            fallback_language=fallback_voice_language,
            timings=self.timings.playback,
            logger=self.logger,
        )

        self.voice_state = VoiceState.IDLE
        self.conversation_mode = False
        self.processing = False
        self.status_text = STATUS_READY
        self.interim_text = ""
        self.response_text = welcome_message(honorific)
        self.last_response = ""
        self.image_url: str | None = None
        self.generating_image = False
        self.summarizing = False

        self._exchange_lock = asyncio.Lock()
        self._queued = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Capture host callbacks (invoked synchronously by the capture controller)

    def on_capture_started(self) -> None:
        self._set_voice_state(VoiceState.LISTENING)
        self._set_status(STATUS_LISTENING)
        self._set_interim("")

    def on_interim_transcript(self, text: str) -> None:
        self._set_interim(text)
        self._set_status(f'"{text}"')

    def handle_final_transcript(self, text: str) -> None:
        self._set_interim("")
        self._set_status(f'Распознано: "{text}"')
        if self._closed:
            return
        self.logger.info("[session] Recognized: %s", text)
        self.timers.spawn(self._enqueue(lambda: self.process_command(text)), name="jarvoice-exchange")

    def on_capture_status(self, text: str) -> None:
        self._set_status(text)

    def on_capture_failed(self, status: str) -> None:
        self._set_voice_state(VoiceState.IDLE)
        self._set_status(status)

    def on_capture_ended(self) -> None:
        self._set_voice_state(VoiceState.IDLE)
        self._set_status(STATUS_READY)

    # ------------------------------------------------------------------
    # User operations

    async def process_command(self, command: str) -> CommandResult | None:
        """Run one exchange for ``command``; never raises."""
        self.processing = True
        self._set_status(STATUS_PROCESSING)
        try:
            result = match_intent(command, self.honorific)
            if result is None:
                result = await self.fallback.resolve(command)
            if result.follow_up is not None:
                self._set_response(result.response_text)
                await self._speak(result.response_text, final=False)
                await self._run_follow_up(result.follow_up)
                return result
            self._set_image(None)
            self._set_response(result.response_text)
            if result.action:
                self.logger.info("[session] Navigating to %s", result.action)
                self.observer.navigate(result.action)
            await self._speak(result.response_text)
            return result
        except Exception:
            self.logger.exception("[session] Exchange failed for command %r", command)
            self._recover(not_understood_apology(self.honorific))
            return None

    async def submit_text_command(self, text: str) -> bool:
        command = (text or "").strip()
        if not command or self._closed:
            return False
        await self._enqueue(lambda: self.process_command(command))
        return True

    async def quick_command(self, command: str) -> bool:
        return await self.submit_text_command(command)

    async def generate_image(self, prompt: str) -> bool:
        prompt = (prompt or "").strip()
        if not prompt:
            self.observer.notify_error("Введите описание", "Опишите, что вы хотите увидеть на изображении")
            return False
        if self._closed:
            return False
        await self._enqueue(lambda: self._direct_image(prompt))
        return True

    async def summarize_input(self, text: str) -> bool:
        value = (text or "").strip()
        if not value:
            self.observer.notify_error("Введите текст или URL", "Вставьте ссылку на статью или текст для суммаризации")
            return False
        if self._closed:
            return False
        await self._enqueue(lambda: self._direct_summary(value))
        return True

    async def replay_last_response(self) -> bool:
        text = self.last_response
        if not text or self._closed:
            return False
        await self._enqueue(lambda: self._replay(text))
        return True

    def toggle_conversation_mode(self, enabled: bool | None = None) -> bool:
        new_mode = (not self.conversation_mode) if enabled is None else enabled
        if self._closed or new_mode == self.conversation_mode:
            return self.conversation_mode
        self.conversation_mode = new_mode
        self.observer.conversation_mode_changed(new_mode)
        if new_mode:
            self._set_status(STATUS_DIALOG_ON)
            self.capture.start_later(self.timings.conversation_start_delay)
        else:
            self.stop_listening()
            self._set_status(STATUS_DIALOG_OFF)
        return new_mode

    def toggle_voice(self) -> None:
        if self.voice_state is VoiceState.LISTENING:
            self.stop_listening()
        elif self.voice_state is VoiceState.IDLE:
            self.start_listening()

    def start_listening(self) -> bool:
        if self._closed:
            return False
        return self.capture.start()

    def stop_listening(self) -> None:
        self.capture.abort()
        self._set_interim("")
        if self.voice_state is VoiceState.SPEAKING:
            return
        self._set_voice_state(VoiceState.IDLE)
        self._set_status(STATUS_READY)

    def set_honorific(self, honorific: str) -> None:
        self.honorific = honorific
        self.fallback.honorific = honorific
        if self.fallback.offline_worker is not None:
            self.fallback.offline_worker.honorific = honorific
        if not self.last_response:
            self._set_response(welcome_message(honorific))

    def close(self) -> None:
        """Tear down capture, playback and every pending timer; idempotent."""
        if self._closed:
            return
        self._closed = True
        self.capture.close()
        self.playback.cancel()
        self.timers.close()
        self.conversation_mode = False
        self.processing = False
        self.voice_state = VoiceState.IDLE
        self.logger.debug("[session] Closed")

    # ------------------------------------------------------------------
    # Exchange plumbing

    def _enqueue(self, work: Callable[[], Awaitable[object]]) -> Coroutine[Any, Any, None]:
        """Count the exchange as waiting now; the returned coroutine runs it in turn."""
        self._queued += 1
        self.processing = True
        return self._run_queued(work)

    async def _run_queued(self, work: Callable[[], Awaitable[object]]) -> None:
        try:
            await self._exchange_lock.acquire()
        finally:
            self._queued -= 1
        try:
            await work()
        finally:
            self._exchange_lock.release()

    async def _speak(self, text: str, *, final: bool = True) -> None:
        if not text:
            if final:
                self._finish_speaking()
            return
        if self.capture.state is CaptureState.LISTENING:
            self.capture.abort()
        if final:
            self.last_response = text
        self._set_voice_state(VoiceState.SPEAKING)
        self._set_status(STATUS_SPEAKING)
        await self.playback.speak(text)
        if final:
            self._finish_speaking()
            return
        self._set_voice_state(VoiceState.IDLE)
        self._set_status(STATUS_PROCESSING)

    def _finish_speaking(self) -> None:
        self._set_voice_state(VoiceState.IDLE)
        self._set_status(STATUS_READY)
        self.processing = self._queued > 0
        if self.conversation_mode and not self.processing and not self._closed:
            self.capture.start_later(self.timings.rearm_delay)

    def _recover(self, apology: str) -> None:
        """Put the session back to idle after an exchange raised."""
        if self.voice_state is VoiceState.SPEAKING:
            self.playback.cancel()
        self.generating_image = False
        self.summarizing = False
        self._set_response(apology)
        self._finish_speaking()

    async def _replay(self, text: str) -> None:
        self.processing = True
        self._set_response(text)
        try:
            await self._speak(text)
        except Exception:
            self.logger.exception("[session] Replay failed")
            self._recover(text)

    async def _run_follow_up(self, follow_up: FollowUp) -> None:
        if follow_up.kind == "image":
            await self._generate_image(follow_up.payload)
        else:
            await self._summarize(command=follow_up.payload)

    async def _direct_image(self, prompt: str) -> None:
        self.processing = True
        self._set_response(
            f"Приступаю к генерации изображения, {self.honorific}. Это может занять 10-20 секунд..."
        )
        try:
            await self._generate_image(prompt)
        except Exception:
            self.logger.exception("[session] Image request failed for %r", prompt)
            apology = f"Прошу прощения, {self.honorific}, произошла ошибка при генерации изображения."
            self.observer.notify_error("Ошибка", apology)
            self._recover(apology)

    async def _direct_summary(self, value: str) -> None:
        self.processing = True
        self._set_response(f"Анализирую материал, {self.honorific}. Это может занять несколько секунд...")
        try:
            if URL_PATTERN.match(value):
                await self._summarize(url=value)
            else:
                await self._summarize(text=value)
        except Exception:
            self.logger.exception("[session] Summary request failed")
            apology = f"Прошу прощения, {self.honorific}, произошла ошибка при суммаризации."
            self.observer.notify_error("Ошибка", apology)
            self._recover(apology)

    async def _generate_image(self, prompt: str) -> None:
        self.generating_image = True
        self._set_image(None)
        try:
            data = await self.backend.generate_image(prompt)
        except BackendError as exc:
            self.logger.warning("[session] Image generation failed: %s", exc)
            text = f"Прошу прощения, {self.honorific}, произошла ошибка при генерации изображения."
            self.observer.notify_error("Ошибка", text)
        else:
            image_url = data.get("imageUrl")
            if data.get("success") and isinstance(image_url, str) and image_url:
                self.image_url = image_url
                text = (
                    f"Вот изображение, которое я создал для вас, {self.honorific}. "
                    "Нажмите на него, чтобы увеличить."
                )
            else:
                text = _error_text(data, f"Прошу прощения, {self.honorific}, не удалось сгенерировать изображение.")
                self.observer.notify_error("Ошибка генерации", text)
        finally:
            self.generating_image = False
            self.observer.image_changed(self.image_url, False)
        self._set_response(text)
        await self._speak(text)

    async def _summarize(self, *, text: str | None = None, url: str | None = None, command: str | None = None) -> None:
        self.summarizing = True
        self._set_image(None)
        try:
            data = await self.backend.summarize(text=text, url=url, command=command)
        except BackendError as exc:
            self.logger.warning("[session] Summarization failed: %s", exc)
            reply = f"Прошу прощения, {self.honorific}, произошла ошибка при суммаризации."
            self.observer.notify_error("Ошибка", reply)
        else:
            summary = data.get("summary")
            if data.get("success") and isinstance(summary, str) and summary:
                reply = summary
            else:
                reply = _error_text(data, f"Прошу прощения, {self.honorific}, не удалось обработать материал.")
                self.observer.notify_error("Ошибка суммаризации", reply)
        finally:
            self.summarizing = False
        self._set_response(reply)
        await self._speak(reply)

    # ------------------------------------------------------------------
    # Observable state

    def _set_voice_state(self, state: VoiceState) -> None:
        if state is self.voice_state:
            return
        self.logger.debug("[session] Voice state %s -> %s", self.voice_state.value, state.value)
        self.voice_state = state
        self.observer.voice_state_changed(state)

    def _set_status(self, text: str) -> None:
        self.status_text = text
        self.observer.status_changed(text)

    def _set_interim(self, text: str) -> None:
        self.interim_text = text
        self.observer.interim_changed(text)

    def _set_response(self, text: str) -> None:
        self.response_text = text
        self.observer.response_changed(text)

    def _set_image(self, url: str | None) -> None:
        self.image_url = url
        self.observer.image_changed(url, self.generating_image)


def _error_text(data: dict[str, object], default: str) -> str:
    error = data.get("error")
    return error if isinstance(error, str) and error else default
