"""
Speech playback control for the voice session

Turns response text into one spoken utterance on a synthesis engine and
resolves exactly once when it is over.

Per utterance:
- Text is cleaned (``**`` removed, newline runs become sentence breaks) and
  truncated to 400 characters
- Voice settings are re-read from storage so edits apply immediately
- Voice choice: stored name, then language prefix, then the fallback
  locale, then the first voice available
- An empty voice list defers synthesis until the engine reports voices or
  500 ms pass, whichever comes first

Completion is whichever fires first: the engine's end event, an error other
than ``interrupted``/``canceled``, the watchdog noticing the engine stopped
speaking, or the 30 second safety timeout. ``not-allowed`` is retried twice
with a short backoff before it counts as completion.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from jarvoice.assistant.voice_settings import VoiceSettingsStore

LOGGER = logging.getLogger("jarvoice-assistant.playback")

MAX_SPEECH_CHARS = 400
IGNORED_SYNTHESIS_ERRORS = frozenset({"interrupted", "canceled"})
ERROR_NOT_ALLOWED = "not-allowed"
ERROR_SYNTHESIS_FAILED = "synthesis-failed"


class SynthesisError(RuntimeError):
    """Raised by engines that cannot accept an utterance."""


@dataclass(frozen=True)
class Voice:
    name: str
    lang: str


@dataclass
class Utterance:
    text: str
    lang: str
    rate: float
    pitch: float
    volume: float
    voice: Voice | None = None
    on_end: Callable[[], None] | None = None
    on_error: Callable[[str], None] | None = None


class SynthesisEngine:
    """Strategy interface for a speech synthesizer."""

    supported = True

    def __init__(self) -> None:
        self.on_voices_changed: Callable[[], None] | None = None

    def get_voices(self) -> list[Voice]:
        raise NotImplementedError

    @property
    def speaking(self) -> bool:
        raise NotImplementedError

    def speak(self, utterance: Utterance) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError


class UnsupportedSynthesisEngine(SynthesisEngine):
    """Stand-in used when no audio output is available."""

    supported = False

    def get_voices(self) -> list[Voice]:
        return []

    @property
    def speaking(self) -> bool:
        return False

    def speak(self, utterance: Utterance) -> None:
        raise SynthesisError("Speech synthesis is not supported on this device")

    def cancel(self) -> None:
        return


@dataclass(frozen=True)
class PlaybackTimings:
    settle_delay: float = 0.15
    voices_timeout: float = 0.5
    speak_delay: float = 0.1
    watchdog_interval: float = 0.5
    safety_timeout: float = 30.0
    retry_backoff: float = 0.2
    max_retries: int = 2


def prepare_speech_text(text: str) -> str:
    cleaned = text.replace("**", "")
    cleaned = re.sub(r"\n+", ". ", cleaned)
    return cleaned[:MAX_SPEECH_CHARS]


def select_voice(
    voices: Sequence[Voice],
    stored_name: str | None,
    language: str = "ru-RU",
    fallback_language: str = "en-US",
) -> Voice | None:
    if not voices:
        return None
    if stored_name:
        for voice in voices:
            if voice.name == stored_name:
                return voice
    prefix = language.split("-")[0]
    for needle in (prefix.lower(), prefix.upper()):
        for voice in voices:
            if needle in voice.lang:
                return voice
    for voice in voices:
        if voice.lang == fallback_language:
            return voice
    return voices[0]


class SpeechPlaybackController:
    def __init__(
        self,
        engine: SynthesisEngine,
        settings_store: VoiceSettingsStore,
        *,
        language: str = "ru-RU",
        fallback_language: str = "en-US",
        timings: PlaybackTimings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.engine = engine
        self.settings_store = settings_store
        self.language = language
        self.fallback_language = fallback_language
        self.timings = timings or PlaybackTimings()
        self.logger = logger or LOGGER

    def cancel(self) -> None:
        self.engine.cancel()

    async def speak(self, text: str) -> None:
        """Speak ``text`` and return once the utterance has completed."""
        if not text:
            return
        if not self.engine.supported:
            self.logger.debug("[playback] Speech synthesis not supported; skipping")
            return
        self.engine.cancel()
        await asyncio.sleep(self.timings.settle_delay)
        await self._wait_for_voices()
        for attempt in range(self.timings.max_retries + 1):
            code = await self._speak_once(text)
            if code == ERROR_NOT_ALLOWED and attempt < self.timings.max_retries:
                self.logger.debug("[playback] Synthesis not allowed; retry %s", attempt + 1)
                await asyncio.sleep(self.timings.retry_backoff)
                continue
            if code:
                self.logger.info("[playback] Speech ended with error: %s", code)
            return

    def build_utterance(self, text: str) -> Utterance:
        settings = self.settings_store.load()
        voice = select_voice(
            self.engine.get_voices(),
            settings.voice_name,
            self.language,
            self.fallback_language,
        )
        return Utterance(
            text=prepare_speech_text(text),
            lang=self.language,
            rate=settings.rate,
            pitch=settings.pitch,
            volume=settings.volume,
            voice=voice,
        )

    async def _wait_for_voices(self) -> None:
        if self.engine.get_voices():
            return
        ready = asyncio.Event()
        self.engine.on_voices_changed = ready.set
        try:
            await asyncio.wait_for(ready.wait(), timeout=self.timings.voices_timeout)
        except TimeoutError:
            self.logger.debug("[playback] Voice list still empty; speaking with default voice")
        finally:
            self.engine.on_voices_changed = None

    async def _speak_once(self, text: str) -> str | None:
        """Run one utterance; return the error code that ended it, or None."""
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[str | None] = loop.create_future()

        def _settle(code: str | None) -> None:
            if not outcome.done():
                outcome.set_result(code)

        def _on_error(code: str) -> None:
            if code in IGNORED_SYNTHESIS_ERRORS:
                return
            _settle(code)

        utterance = self.build_utterance(text)
        utterance.on_end = lambda: _settle(None)
        utterance.on_error = _on_error

        await asyncio.sleep(self.timings.speak_delay)
        try:
            self.engine.speak(utterance)
        except SynthesisError as exc:
            self.logger.info("[playback] Speech synthesis error: %s", exc)
            return ERROR_SYNTHESIS_FAILED

        watchdog = loop.create_task(self._watch(outcome, _settle))
        try:
            return await asyncio.wait_for(outcome, timeout=self.timings.safety_timeout)
        except TimeoutError:
            self.logger.warning("[playback] Speech did not finish within %.0fs", self.timings.safety_timeout)
            return None
        finally:
            watchdog.cancel()

    async def _watch(self, outcome: asyncio.Future[str | None], settle: Callable[[str | None], None]) -> None:
        while not outcome.done():
            await asyncio.sleep(self.timings.watchdog_interval)
            if not self.engine.speaking and not outcome.done():
                self.logger.debug("[playback] Engine stopped without an end event")
                settle(None)
