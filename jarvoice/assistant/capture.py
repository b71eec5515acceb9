"""
Speech capture control for the voice session

Wraps a single recognition engine and owns the restart policies that make
conversation mode hands-free.

States: stopped -> listening -> (result | error | end) -> stopped | listening

Error policy:
- no-speech: restart after a short delay when conversation mode is on and
  no command is being processed; otherwise report "not hearing" and go idle
- audio-capture / not-allowed: report the specific denial, go idle, no restart
- aborted: caller-initiated, ignored
- anything else: generic recognition error, go idle

End policy: when nothing is being processed, restart in conversation mode
(one retry if the restart fails), otherwise go idle with the ready status.
An end that follows a reported error is ignored, so the error status stays
visible and no second restart is queued.

The session host is read and written synchronously: ``processing`` is set
before a final transcript is dispatched so that trailing end/error events
from the same recognition run are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from jarvoice.assistant.models import RecognitionResult
from jarvoice.assistant.timers import TimerSet

LOGGER = logging.getLogger("jarvoice-assistant.capture")

STATUS_LISTENING = "Слушаю..."
STATUS_NOT_HEARING = "Не слышу вас..."
STATUS_MIC_UNAVAILABLE = "Микрофон недоступен"
STATUS_MIC_DENIED = "Доступ к микрофону запрещён"
STATUS_RECOGNITION_ERROR = "Ошибка распознавания"
STATUS_UNSUPPORTED = "Распознавание речи не поддерживается"

ERROR_NO_SPEECH = "no-speech"
ERROR_AUDIO_CAPTURE = "audio-capture"
ERROR_NOT_ALLOWED = "not-allowed"
ERROR_ABORTED = "aborted"
ERROR_NETWORK = "network"


class RecognitionBusyError(RuntimeError):
    """Raised by ``start()`` while a recognition run is already active."""


class RecognitionUnavailableError(RuntimeError):
    """Raised by engines that cannot capture speech on this device."""


class RecognitionEngine:
    """Strategy interface for a speech recognizer.

    Engines report progress through the callbacks below, in this order per
    run: ``on_start``, zero or more ``on_result``, optionally ``on_error``,
    then ``on_end``.
    """

    supported = True

    def __init__(self) -> None:
        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None

    def start(self) -> None:
        raise NotImplementedError

    def abort(self) -> None:
        raise NotImplementedError

    def _emit_start(self) -> None:
        if self.on_start:
            self.on_start()

    def _emit_result(self, result: RecognitionResult) -> None:
        if self.on_result:
            self.on_result(result)

    def _emit_error(self, code: str) -> None:
        if self.on_error:
            self.on_error(code)

    def _emit_end(self) -> None:
        if self.on_end:
            self.on_end()


class UnsupportedRecognitionEngine(RecognitionEngine):
    """Stand-in used when no microphone capture is available."""

    supported = False

    def start(self) -> None:
        raise RecognitionUnavailableError("Speech recognition is not supported on this device")

    def abort(self) -> None:
        return


class CaptureHost(Protocol):
    processing: bool
    conversation_mode: bool

    def on_capture_started(self) -> None: ...

    def on_interim_transcript(self, text: str) -> None: ...

    def handle_final_transcript(self, text: str) -> None: ...

    def on_capture_status(self, text: str) -> None: ...

    def on_capture_failed(self, status: str) -> None: ...

    def on_capture_ended(self) -> None: ...


class CaptureState(str, Enum):
    STOPPED = "stopped"
    LISTENING = "listening"


@dataclass(frozen=True)
class CaptureTimings:
    no_speech_restart_delay: float = 0.2
    end_restart_delay: float = 0.1
    end_retry_delay: float = 0.5


_ERROR_STATUS = {
    ERROR_AUDIO_CAPTURE: STATUS_MIC_UNAVAILABLE,
    ERROR_NOT_ALLOWED: STATUS_MIC_DENIED,
}


class SpeechCaptureController:
    def __init__(
        self,
        engine: RecognitionEngine,
        host: CaptureHost,
        timers: TimerSet,
        *,
        timings: CaptureTimings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.engine = engine
        self.host = host
        self.timers = timers
        self.timings = timings or CaptureTimings()
        self.logger = logger or LOGGER
        self._state = CaptureState.STOPPED
        self._pending: set[asyncio.TimerHandle] = set()
        self._closed = False
        self._run_failed = False
        engine.on_start = self._handle_start
        engine.on_result = self._handle_result
        engine.on_error = self._handle_error
        engine.on_end = self._handle_end

    @property
    def state(self) -> CaptureState:
        return self._state

    def start(self) -> bool:
        """Ask the engine to begin; returns False when it refused."""
        if self._closed:
            return False
        if not self.engine.supported:
            self.host.on_capture_status(STATUS_UNSUPPORTED)
            return False
        try:
            self.engine.start()
        except RecognitionBusyError:
            self.logger.debug("[capture] Recognition already started")
            return False
        except RecognitionUnavailableError as exc:
            self.logger.warning("[capture] Recognition unavailable: %s", exc)
            self.host.on_capture_status(STATUS_UNSUPPORTED)
            return False
        return True

    def start_later(self, delay: float) -> None:
        self._schedule(delay, self._start_quietly)

    def abort(self) -> None:
        """Stop capture and drop pending restarts; safe to call in any state."""
        # The engine may report its end synchronously; that can queue a restart.
        self.engine.abort()
        self._cancel_pending()
        self._state = CaptureState.STOPPED

    def close(self) -> None:
        self._closed = True
        self.abort()

    def _schedule(self, delay: float, callback) -> None:
        if self._closed:
            return
        handle: asyncio.TimerHandle | None = None

        def _fire() -> None:
            self._pending.discard(handle)  # type: ignore[arg-type]
            callback()

        handle = self.timers.call_later(delay, _fire)
        if handle is not None:
            self._pending.add(handle)

    def _cancel_pending(self) -> None:
        for handle in list(self._pending):
            self.timers.cancel(handle)
        self._pending.clear()

    def _start_quietly(self) -> None:
        self.start()

    def _restart_with_retry(self) -> None:
        if self._closed:
            return
        try:
            self.engine.start()
        except (RecognitionBusyError, RecognitionUnavailableError):
            self.logger.debug("[capture] Restart in conversation mode failed, retrying")
            self._schedule(self.timings.end_retry_delay, self._start_quietly)

    def _handle_start(self) -> None:
        if self._closed:
            return
        self._state = CaptureState.LISTENING
        self._run_failed = False
        self.host.on_capture_started()

    def _handle_result(self, result: RecognitionResult) -> None:
        if self._closed:
            return
        if result.interim:
            self.host.on_interim_transcript(result.interim)
        final = (result.final or "").strip()
        if final:
            self.host.processing = True
            self.host.handle_final_transcript(final)

    def _handle_error(self, code: str) -> None:
        if self._closed:
            return
        self.logger.debug("[capture] Recognition error: %s", code)
        if code == ERROR_ABORTED:
            return
        self._state = CaptureState.STOPPED
        self._run_failed = True
        if code == ERROR_NO_SPEECH:
            self.host.on_capture_status(STATUS_NOT_HEARING)
            if self.host.conversation_mode and not self.host.processing:
                self._schedule(self.timings.no_speech_restart_delay, self._start_quietly)
                return
            self.host.on_capture_failed(STATUS_NOT_HEARING)
            return
        self.host.on_capture_failed(_ERROR_STATUS.get(code, STATUS_RECOGNITION_ERROR))

    def _handle_end(self) -> None:
        if self._closed:
            return
        self._state = CaptureState.STOPPED
        if self._run_failed:
            # The error handler already settled this run.
            self._run_failed = False
            return
        if self.host.processing:
            return
        if self.host.conversation_mode:
            self.host.on_capture_status(STATUS_LISTENING)
            self._schedule(self.timings.end_restart_delay, self._restart_with_retry)
            return
        self.host.on_capture_ended()
