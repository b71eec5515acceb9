"""Tests for Wyoming STT/TTS helper functions."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest
from jarvoice.assistant.audio import scale_volume
from jarvoice.assistant.config import MicConfig, WyomingEndpoint
from jarvoice.assistant.wyoming import describe_tts_voices, play_tts_stream, transcribe_audio
from wyoming.asr import Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop

pytestmark = pytest.mark.anyio


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mic():
    """Standard 16kHz mono mic configuration."""
    return MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=30)


@pytest.fixture
def endpoint():
    return WyomingEndpoint(host="localhost", port=10300)


@pytest.fixture
def endpoint_with_model():
    return WyomingEndpoint(host="localhost", port=10300, model="whisper-base")


@pytest.fixture
def mock_client():
    """Create a mock AsyncTcpClient with async connect/disconnect/read/write."""
    client = AsyncMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.write_event = AsyncMock()
    client.read_event = AsyncMock(return_value=None)
    return client


@pytest.fixture
def patch_tcp_client(mock_client):
    with patch("jarvoice.assistant.wyoming.AsyncTcpClient") as ctor:
        ctor.return_value = mock_client
        yield ctor, mock_client


@pytest.fixture
def mock_sink():
    sink = AsyncMock()
    sink.start = AsyncMock()
    sink.write = AsyncMock()
    sink.stop = AsyncMock()
    return sink


# ============================================================================
# transcribe_audio
# ============================================================================


class TestTranscribeAudio:
    async def test_successful_transcription(self, endpoint, mic, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Transcript(text="какая погода").event())

        result = await transcribe_audio(b"\x00" * 960, endpoint=endpoint, mic=mic, timeout=5.0)

        assert result == "какая погода"

    async def test_returns_none_on_connection_closed(self, endpoint, mic, patch_tcp_client, mock_logger):
        _, client = patch_tcp_client

        result = await transcribe_audio(
            b"\x00" * 960,
            endpoint=endpoint,
            mic=mic,
            timeout=5.0,
            logger=mock_logger,
        )

        assert result is None
        mock_logger.debug.assert_called_once()

    async def test_language_and_model(self, endpoint_with_model, mic, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Transcript(text="ok").event())

        await transcribe_audio(b"\x00" * 960, endpoint=endpoint_with_model, mic=mic, language="ru", timeout=5.0)

        event = client.write_event.call_args_list[0][0][0]
        assert event.data["language"] == "ru"
        assert event.data["name"] == "whisper-base"

    async def test_model_override(self, endpoint_with_model, mic, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Transcript(text="ok").event())

        await transcribe_audio(b"\x00" * 960, endpoint=endpoint_with_model, mic=mic, model="whisper-large")

        event = client.write_event.call_args_list[0][0][0]
        assert "whisper-large" in str(event.data)

    async def test_multiple_chunks_for_large_audio(self, endpoint, mic, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Transcript(text="long").event())

        await transcribe_audio(b"\x00" * 2880, endpoint=endpoint, mic=mic, timeout=5.0)

        # Transcribe + AudioStart + 3 AudioChunks + AudioStop
        assert client.write_event.call_count == 6

    async def test_disconnect_called_on_error(self, endpoint, mic, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await transcribe_audio(b"\x00" * 960, endpoint=endpoint, mic=mic, timeout=5.0)

        client.disconnect.assert_awaited_once()


# ============================================================================
# play_tts_stream
# ============================================================================


class TestPlayTtsStream:
    async def test_successful_playback(self, endpoint, mock_sink, patch_tcp_client):
        _, client = patch_tcp_client
        audio_bytes = b"\x10\x00" * 480
        client.read_event = AsyncMock(
            side_effect=[
                AudioStart(rate=22050, width=2, channels=1).event(),
                AudioChunk(rate=22050, width=2, channels=1, audio=audio_bytes).event(),
                AudioStop().event(),
            ]
        )

        await play_tts_stream("привет", endpoint=endpoint, sink=mock_sink, timeout=5.0)

        mock_sink.start.assert_awaited_once_with(22050, 2, 1)
        mock_sink.write.assert_awaited_once_with(audio_bytes)
        mock_sink.stop.assert_awaited_once()
        client.disconnect.assert_awaited_once()

    async def test_volume_scaled(self, endpoint, mock_sink, patch_tcp_client):
        _, client = patch_tcp_client
        audio_bytes = b"\x10\x00" * 480
        client.read_event = AsyncMock(
            side_effect=[
                AudioStart(rate=22050, width=2, channels=1).event(),
                AudioChunk(rate=22050, width=2, channels=1, audio=audio_bytes).event(),
                AudioStop().event(),
            ]
        )

        await play_tts_stream("привет", endpoint=endpoint, sink=mock_sink, volume=0.5)

        mock_sink.write.assert_awaited_once_with(scale_volume(audio_bytes, 2, 0.5))
        assert mock_sink.write.await_args[0][0] != audio_bytes

    async def test_sink_stop_called_on_error(self, endpoint, mock_sink, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(
            side_effect=[
                AudioStart(rate=16000, width=2, channels=1).event(),
                RuntimeError("stream failure"),
            ]
        )

        with pytest.raises(RuntimeError, match="stream failure"):
            await play_tts_stream("привет", endpoint=endpoint, sink=mock_sink, timeout=5.0)

        mock_sink.stop.assert_awaited_once()

    async def test_cancel_kills_player_without_draining(self, endpoint, mock_sink, patch_tcp_client):
        _, client = patch_tcp_client
        started = asyncio.Event()

        async def _read_event():
            if not started.is_set():
                started.set()
                return AudioStart(rate=22050, width=2, channels=1).event()
            await asyncio.Event().wait()

        client.read_event = _read_event
        task = asyncio.create_task(play_tts_stream("привет", endpoint=endpoint, sink=mock_sink))
        await started.wait()
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        mock_sink.kill.assert_awaited_once()
        mock_sink.stop.assert_not_awaited()
        client.disconnect.assert_awaited_once()

        mock_sink.stop.assert_awaited_once()

    async def test_sink_untouched_when_never_started(self, endpoint, mock_sink, patch_tcp_client):
        await play_tts_stream("привет", endpoint=endpoint, sink=mock_sink, timeout=5.0)

        mock_sink.start.assert_not_awaited()
        mock_sink.stop.assert_not_awaited()

    async def test_voice_name_passed_through(self, endpoint, mock_sink, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(side_effect=[AudioStop().event()])

        await play_tts_stream("привет", endpoint=endpoint, sink=mock_sink, voice_name="ru_RU-irina-medium")

        event = client.write_event.call_args_list[0][0][0]
        assert "ru_RU-irina-medium" in str(event.data)

    async def test_default_voice_omitted(self, endpoint, mock_sink, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(side_effect=[AudioStop().event()])

        await play_tts_stream("привет", endpoint=endpoint, sink=mock_sink)

        event = client.write_event.call_args_list[0][0][0]
        assert event.data["text"] == "привет"
        assert not event.data.get("voice")


# ============================================================================
# describe_tts_voices
# ============================================================================


def _voice(name: str, languages: list[str]) -> SimpleNamespace:
    return SimpleNamespace(name=name, languages=languages)


class TestDescribeTtsVoices:
    async def test_lists_voices_with_normalized_language(self, endpoint, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Mock(type="info"))
        info = SimpleNamespace(
            tts=[
                SimpleNamespace(voices=[_voice("ru_RU-irina-medium", ["ru_RU"]), _voice("mystery", [])]),
                SimpleNamespace(voices=[_voice("en_US-amy-medium", ["en_US", "en_GB"])]),
            ]
        )

        with patch("jarvoice.assistant.wyoming.Info") as info_cls:
            info_cls.is_type.return_value = True
            info_cls.from_event.return_value = info
            voices = await describe_tts_voices(endpoint=endpoint, timeout=5.0)

        assert voices == [
            ("ru_RU-irina-medium", "ru-RU"),
            ("mystery", ""),
            ("en_US-amy-medium", "en-US"),
        ]
        client.disconnect.assert_awaited_once()

    async def test_connection_closed(self, endpoint, patch_tcp_client):
        assert await describe_tts_voices(endpoint=endpoint, timeout=5.0) == []

    async def test_no_tts_programs(self, endpoint, patch_tcp_client):
        _, client = patch_tcp_client
        client.read_event = AsyncMock(return_value=Mock(type="info"))

        with patch("jarvoice.assistant.wyoming.Info") as info_cls:
            info_cls.is_type.return_value = True
            info_cls.from_event.return_value = SimpleNamespace(tts=None)
            assert await describe_tts_voices(endpoint=endpoint) == []
