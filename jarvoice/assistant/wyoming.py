"""Wyoming protocol calls: Whisper transcription, Piper synthesis and voice discovery."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.event import Event
from wyoming.info import Describe, Info
from wyoming.tts import Synthesize, SynthesizeVoice

from jarvoice.utils import await_with_timeout, chunk_bytes

from .audio import AplaySink, scale_volume
from .config import MicConfig, WyomingEndpoint

LOGGER = logging.getLogger("jarvoice-assistant.wyoming")


async def _events(client: AsyncTcpClient, timeout: float | None) -> AsyncIterator[Event]:
    """Yield events until the server closes the connection."""
    while True:
        event = await await_with_timeout(client.read_event(), timeout)
        if event is None:
            return
        yield event


async def transcribe_audio(
    audio_bytes: bytes,
    *,
    endpoint: WyomingEndpoint,
    mic: MicConfig,
    language: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
    logger: logging.Logger | None = None,
) -> str | None:
    """Stream one recorded phrase to the STT service; None if it hangs up without a transcript."""
    log = logger or LOGGER
    audio_format = {"rate": mic.rate, "width": mic.width, "channels": mic.channels}
    outgoing = [
        Transcribe(name=model or endpoint.model, language=language).event(),
        AudioStart(**audio_format).event(),
        *(AudioChunk(audio=chunk, **audio_format).event() for chunk in chunk_bytes(audio_bytes, mic.bytes_per_chunk)),
        AudioStop().event(),
    ]

    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    try:
        for event in outgoing:
            await await_with_timeout(client.write_event(event), timeout)
        async for event in _events(client, timeout):
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text
    finally:
        await client.disconnect()
    log.debug("[wyoming] STT closed the connection without a transcript")
    return None


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: AplaySink,
    voice_name: str | None = None,
    volume: float = 1.0,
    timeout: float | None = None,
) -> None:
    """Synthesize ``text`` and pipe the audio into ``sink`` as it arrives."""
    request = Synthesize(text=text, voice=SynthesizeVoice(name=voice_name) if voice_name else None)
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    sample_width: int | None = None
    try:
        await await_with_timeout(client.write_event(request.event()), timeout)
        async for event in _events(client, timeout):
            if AudioStart.is_type(event.type):
                start = AudioStart.from_event(event)
                await sink.start(start.rate, start.width, start.channels)
                sample_width = start.width
            elif AudioChunk.is_type(event.type) and sample_width is not None:
                await sink.write(scale_volume(AudioChunk.from_event(event).audio, sample_width, volume))
            elif AudioStop.is_type(event.type):
                break
    except asyncio.CancelledError:
        # Interrupted: drop buffered audio instead of letting the player drain it.
        if sample_width is not None:
            sample_width = None
            await sink.kill()
        raise
    finally:
        await client.disconnect()
        if sample_width is not None:
            await sink.stop()


async def describe_tts_voices(
    *,
    endpoint: WyomingEndpoint,
    timeout: float | None = None,
) -> list[tuple[str, str]]:
    """``(voice name, BCP-47 language)`` for every voice the TTS service advertises."""
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    info: Info | None = None
    try:
        await await_with_timeout(client.write_event(Describe().event()), timeout)
        async for event in _events(client, timeout):
            if Info.is_type(event.type):
                info = Info.from_event(event)
                break
    finally:
        await client.disconnect()
    if info is None:
        return []

    voices: list[tuple[str, str]] = []
    for program in info.tts or []:
        for voice in program.voices or []:
            # Piper reports locales as ru_RU
            language = voice.languages[0].replace("_", "-") if voice.languages else ""
            voices.append((voice.name, language))
    return voices
