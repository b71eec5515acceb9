"""Shared test fixtures for the Jarvoice test suite.

This module provides reusable fixtures for common test scenarios including:
- Fake recognition/synthesis engines that fire their events on the loop
- Shrunk session/capture/playback timings
- A recording session observer
- Voice settings storage in a temp directory
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from unittest.mock import AsyncMock, Mock

import pytest
from jarvoice.assistant.capture import CaptureTimings, RecognitionBusyError, RecognitionEngine
from jarvoice.assistant.config import BackendConfig, MqttConfig, SessionTopics
from jarvoice.assistant.models import RecognitionResult, VoiceState
from jarvoice.assistant.playback import PlaybackTimings, SynthesisEngine, Utterance, Voice
from jarvoice.assistant.publisher import SessionObserver
from jarvoice.assistant.session import SessionTimings, VoiceSession
from jarvoice.assistant.voice_settings import LocalStorage, VoiceSettingsStore

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Fakes
# ============================================================================


class FakeRecognitionEngine(RecognitionEngine):
    """Recognition engine driven by the test: start/abort behave like a browser recognizer."""

    def __init__(self) -> None:
        super().__init__()
        self.listening = False
        self.start_calls = 0
        self.abort_calls = 0
        self.start_errors: list[Exception] = []

    def start(self) -> None:
        self.start_calls += 1
        if self.start_errors:
            raise self.start_errors.pop(0)
        if self.listening:
            raise RecognitionBusyError("already started")
        self.listening = True
        self._emit_start()

    def abort(self) -> None:
        self.abort_calls += 1
        if not self.listening:
            return
        self.listening = False
        self._emit_error("aborted")
        self._emit_end()

    def interim(self, text: str) -> None:
        self._emit_result(RecognitionResult(interim=text))

    def say(self, text: str) -> None:
        self._emit_result(RecognitionResult(final=text))
        self.finish()

    def fail(self, code: str) -> None:
        self.listening = False
        self._emit_error(code)
        self._emit_end()

    def finish(self) -> None:
        self.listening = False
        self._emit_end()


class FakeSynthesisEngine(SynthesisEngine):
    """Synthesis engine that finishes (or errors) each utterance on the next loop turn."""

    def __init__(
        self,
        voices: list[Voice] | None = None,
        *,
        auto_finish: bool = True,
        error_codes: list[str] | None = None,
    ) -> None:
        super().__init__()
        self.voices = list(voices) if voices is not None else [Voice("Irina", "ru-RU"), Voice("Amy", "en-US")]
        self.auto_finish = auto_finish
        self.error_codes = list(error_codes or [])
        self.spoken: list[Utterance] = []
        self.cancel_calls = 0
        self._speaking = False
        self._current: Utterance | None = None

    def get_voices(self) -> list[Voice]:
        return list(self.voices)

    @property
    def speaking(self) -> bool:
        return self._speaking

    def speak(self, utterance: Utterance) -> None:
        self.spoken.append(utterance)
        self._current = utterance
        self._speaking = True
        loop = asyncio.get_running_loop()
        if self.error_codes:
            loop.call_soon(self._error, utterance, self.error_codes.pop(0))
        elif self.auto_finish:
            loop.call_soon(self._end, utterance)

    def cancel(self) -> None:
        self.cancel_calls += 1
        if self._speaking and self._current is not None:
            self._speaking = False
            if self._current.on_error:
                self._current.on_error("interrupted")

    def stop_silently(self) -> None:
        """Stop speaking without firing any event (exercises the watchdog)."""
        self._speaking = False

    @property
    def texts(self) -> list[str]:
        return [utterance.text for utterance in self.spoken]

    def _end(self, utterance: Utterance) -> None:
        self._speaking = False
        if utterance.on_end:
            utterance.on_end()

    def _error(self, utterance: Utterance, code: str) -> None:
        self._speaking = False
        if utterance.on_error:
            utterance.on_error(code)


class RecordingObserver(SessionObserver):
    """Keeps every notification for assertions."""

    def __init__(self) -> None:
        self.states: list[VoiceState] = []
        self.statuses: list[str] = []
        self.responses: list[str] = []
        self.navigations: list[str] = []
        self.images: list[tuple[str | None, bool]] = []
        self.modes: list[bool] = []
        self.errors: list[tuple[str, str]] = []

    def voice_state_changed(self, state: VoiceState) -> None:
        self.states.append(state)

    def status_changed(self, text: str) -> None:
        self.statuses.append(text)

    def response_changed(self, text: str) -> None:
        self.responses.append(text)

    def navigate(self, target: str) -> None:
        self.navigations.append(target)

    def image_changed(self, url: str | None, generating: bool) -> None:
        self.images.append((url, generating))

    def conversation_mode_changed(self, enabled: bool) -> None:
        self.modes.append(enabled)

    def notify_error(self, title: str, description: str) -> None:
        self.errors.append((title, description))


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Timing Fixtures
# ============================================================================


@pytest.fixture
def fast_playback_timings():
    return PlaybackTimings(
        settle_delay=0,
        voices_timeout=0.05,
        speak_delay=0,
        watchdog_interval=0.01,
        safety_timeout=1.0,
        retry_backoff=0,
        max_retries=2,
    )


@pytest.fixture
def fast_capture_timings():
    return CaptureTimings(no_speech_restart_delay=0.01, end_restart_delay=0.01, end_retry_delay=0.02)


@pytest.fixture
def fast_session_timings(fast_capture_timings, fast_playback_timings):
    return SessionTimings(
        rearm_delay=0.02,
        conversation_start_delay=0.02,
        capture=fast_capture_timings,
        playback=fast_playback_timings,
    )


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def backend_config():
    return BackendConfig(base_url="http://backend.test", timeout=5.0, verify_ssl=True)


@pytest.fixture
def mqtt_config():
    """Basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="jarvoice/test/assistant",
    )


@pytest.fixture
def topics():
    return SessionTopics.from_base("jarvoice/test/assistant")


@pytest.fixture
def settings_store(tmp_path):
    return VoiceSettingsStore(LocalStorage(tmp_path / "storage.json"))


# ============================================================================
# Session Fixtures
# ============================================================================


@pytest.fixture
def recognition():
    return FakeRecognitionEngine()


@pytest.fixture
def synthesis():
    return FakeSynthesisEngine()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def mock_fallback():
    fallback = Mock()
    fallback.resolve = AsyncMock()
    fallback.honorific = "сэр"
    fallback.offline_worker = None
    return fallback


@pytest.fixture
def mock_backend():
    backend = Mock()
    backend.generate_image = AsyncMock(return_value={"success": False})
    backend.summarize = AsyncMock(return_value={"success": False})
    return backend


@pytest.fixture
def make_session(
    recognition, synthesis, mock_fallback, mock_backend, settings_store, observer, fast_session_timings
) -> Callable[..., VoiceSession]:
    sessions: list[VoiceSession] = []

    def _factory(**overrides) -> VoiceSession:
        kwargs = {
            "observer": observer,
            "timings": fast_session_timings,
        }
        kwargs.update(overrides)
        session = VoiceSession(
            kwargs.pop("recognition", recognition),
            kwargs.pop("synthesis", synthesis),
            kwargs.pop("fallback", mock_fallback),
            kwargs.pop("backend", mock_backend),
            kwargs.pop("settings_store", settings_store),
            **kwargs,
        )
        sessions.append(session)
        return session

    yield _factory
    for session in sessions:
        session.close()


@pytest.fixture
def wait_until():
    """Return an async helper that polls ``predicate`` until it holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait
