"""Wyoming-backed recognition/synthesis engines and capability negotiation."""

from __future__ import annotations

import asyncio
import logging

from jarvoice.assistant.audio import AplaySink, ArecordStream, compute_rms
from jarvoice.assistant.capture import (
    ERROR_ABORTED,
    ERROR_AUDIO_CAPTURE,
    ERROR_NETWORK,
    ERROR_NO_SPEECH,
    ERROR_NOT_ALLOWED,
    RecognitionBusyError,
    RecognitionEngine,
    UnsupportedRecognitionEngine,
)
from jarvoice.assistant.config import AssistantConfig, MicConfig, PhraseConfig, WyomingEndpoint
from jarvoice.assistant.models import RecognitionResult
from jarvoice.assistant.playback import (
    ERROR_SYNTHESIS_FAILED,
    SynthesisEngine,
    UnsupportedSynthesisEngine,
    Utterance,
    Voice,
)
from jarvoice.assistant.wyoming import describe_tts_voices, play_tts_stream, transcribe_audio

LOGGER = logging.getLogger("jarvoice-assistant.engines")

ERROR_INTERRUPTED = "interrupted"


class WyomingRecognitionEngine(RecognitionEngine):
    """Records one phrase from the microphone and transcribes it with Wyoming STT."""

    def __init__(
        self,
        mic: ArecordStream,
        endpoint: WyomingEndpoint,
        mic_config: MicConfig,
        phrase: PhraseConfig,
        *,
        language: str = "ru-RU",
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__()
        self.mic = mic
        self.endpoint = endpoint
        self.mic_config = mic_config
        self.phrase = phrase
        self.language = language
        self.timeout = timeout
        self.logger = logger or LOGGER
        self._task: asyncio.Task[None] | None = None
        self._run_id = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            raise RecognitionBusyError("Recognition already started")
        self._run_id += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self._run_id), name="jarvoice-recognition")

    def abort(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        # Invalidate the run first so the cancelled task stays silent.
        self._run_id += 1
        task.cancel()
        self._emit_error(ERROR_ABORTED)
        self._emit_end()

    async def _run(self, run_id: int) -> None:
        code: str | None = None
        transcript: str | None = None
        try:
            await self.mic.start()
            if run_id == self._run_id:
                self._emit_start()
            audio = await self._record()
            if audio is None:
                code = ERROR_NO_SPEECH
            else:
                transcript = await self._transcribe(audio)
                if transcript is None:
                    code = ERROR_NETWORK
        except (OSError, RuntimeError) as exc:
            self.logger.warning("[capture] Microphone failure: %s", exc)
            code = ERROR_NOT_ALLOWED if "permission denied" in str(exc).lower() else ERROR_AUDIO_CAPTURE
        finally:
            await self.mic.stop()

        if run_id != self._run_id:
            return
        text = (transcript or "").strip()
        if code is None and not text:
            code = ERROR_NO_SPEECH
        if code is not None:
            self._emit_error(code)
        else:
            self._emit_result(RecognitionResult(final=text))
        self._emit_end()

    async def _record(self) -> bytes | None:
        """Wait for speech, then record until a silence window closes the phrase."""
        chunk_ms = self.mic_config.chunk_ms
        width = self.mic_config.width
        wait_chunks = int(max(1, (self.phrase.no_speech_seconds * 1000) / chunk_ms))
        min_chunks = int(max(1, (self.phrase.min_seconds * 1000) / chunk_ms))
        max_chunks = int(max(1, (self.phrase.max_seconds * 1000) / chunk_ms))
        silence_chunks = int(max(1, self.phrase.silence_ms / chunk_ms))

        buffer = bytearray()
        for _ in range(wait_chunks):
            chunk = await self.mic.read_chunk()
            if compute_rms(chunk, width) >= self.phrase.rms_floor:
                buffer.extend(chunk)
                break
        else:
            return None

        silence_run = 0
        chunks = 1
        while chunks < max_chunks:
            chunk = await self.mic.read_chunk()
            buffer.extend(chunk)
            rms = compute_rms(chunk, width)
            if rms < self.phrase.rms_floor and chunks >= min_chunks:
                silence_run += 1
                if silence_run >= silence_chunks:
                    break
            else:
                silence_run = 0
            chunks += 1
        return bytes(buffer)

    async def _transcribe(self, audio: bytes) -> str | None:
        try:
            transcript = await transcribe_audio(
                audio,
                endpoint=self.endpoint,
                mic=self.mic_config,
                language=self.language.split("-")[0],
                timeout=self.timeout,
                logger=self.logger,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            self.logger.warning("[capture] Speech-to-text request failed: %s", exc)
            return None
        return transcript or ""


class WyomingSynthesisEngine(SynthesisEngine):
    """Streams Piper speech into the local audio player, one utterance at a time."""

    def __init__(
        self,
        endpoint: WyomingEndpoint,
        sink: AplaySink,
        *,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__()
        self.endpoint = endpoint
        self.sink = sink
        self.timeout = timeout
        self.logger = logger or LOGGER
        self._voices: list[Voice] = []
        self._task: asyncio.Task[None] | None = None

    async def refresh_voices(self) -> list[Voice]:
        try:
            pairs = await describe_tts_voices(endpoint=self.endpoint, timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            self.logger.info("[playback] Unable to list TTS voices: %s", exc)
            return self.get_voices()
        self._voices = [Voice(name=name, lang=lang) for name, lang in pairs]
        self.logger.debug("[playback] %d TTS voices available", len(self._voices))
        if self.on_voices_changed:
            self.on_voices_changed()
        return self.get_voices()

    def get_voices(self) -> list[Voice]:
        return list(self._voices)

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, utterance: Utterance) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._play(utterance), name="jarvoice-tts")

    def cancel(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def _play(self, utterance: Utterance) -> None:
        try:
            await play_tts_stream(
                utterance.text,
                endpoint=self.endpoint,
                sink=self.sink,
                voice_name=utterance.voice.name if utterance.voice else None,
                volume=utterance.volume,
                timeout=self.timeout,
            )
        except asyncio.CancelledError:
            await self.sink.kill()
            if utterance.on_error:
                utterance.on_error(ERROR_INTERRUPTED)
            raise
        except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
            self.logger.warning("[playback] Speech synthesis failed: %s", exc)
            if utterance.on_error:
                utterance.on_error(ERROR_SYNTHESIS_FAILED)
            return
        if utterance.on_end:
            utterance.on_end()


def negotiate_capabilities(
    config: AssistantConfig,
    *,
    mic: ArecordStream | None = None,
    sink: AplaySink | None = None,
    logger: logging.Logger | None = None,
) -> tuple[RecognitionEngine, SynthesisEngine]:
    """Pick Wyoming engines where the device can record/play, stubs otherwise."""
    log = logger or LOGGER
    mic = mic or ArecordStream(config.mic.command, config.mic.bytes_per_chunk, logger=log)
    sink = sink or AplaySink(logger=log)

    recognition: RecognitionEngine
    if mic.available:
        recognition = WyomingRecognitionEngine(
            mic,
            config.stt_endpoint,
            config.mic,
            config.phrase,
            language=config.language,
            timeout=config.wyoming_timeout,
            logger=log,
        )
    else:
        log.warning("Microphone command %s not found; speech recognition disabled", config.mic.command[:1])
        recognition = UnsupportedRecognitionEngine()

    synthesis: SynthesisEngine
    if sink.available:
        synthesis = WyomingSynthesisEngine(config.tts_endpoint, sink, timeout=config.wyoming_timeout, logger=log)
    else:
        log.warning("No audio player found; speech synthesis disabled")
        synthesis = UnsupportedSynthesisEngine()
    return recognition, synthesis
