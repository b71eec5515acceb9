"""Tests for the remote command fallback (jarvoice/assistant/fallback.py)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from jarvoice.assistant.backend import BackendConnectionError, BackendResponseError
from jarvoice.assistant.fallback import (
    RemoteCommandFallback,
    not_understood_apology,
    offline_apology,
    parse_command_response,
)
from jarvoice.assistant.models import CommandResult, FollowUp
from jarvoice.assistant.network import ConnectivityMonitor
from jarvoice.assistant.offline import OfflineWorker

pytestmark = pytest.mark.anyio


@pytest.fixture
def backend():
    client = Mock()
    client.voice_command = AsyncMock(return_value={"text": "ok"})
    return client


@pytest.fixture
def connectivity():
    return ConnectivityMonitor("backend.test", 80)


@pytest.fixture
async def worker():
    offline = OfflineWorker("сэр")
    offline.start()
    yield offline
    await offline.stop()


class TestParseCommandResponse:
    def test_plain_text(self):
        assert parse_command_response({"text": "ok"}) == CommandResult(response_text="ok")

    def test_navigation_suffix_stripped(self):
        result = parse_command_response({"text": "ok", "action": "music_open"})
        assert result.action == "music"

    def test_unknown_action_ignored(self):
        assert parse_command_response({"text": "ok", "action": "dance"}).action is None

    def test_image_follow_up(self):
        result = parse_command_response({"text": "Generating...", "action": "image_generating", "imagePrompt": "cat"})
        assert result.follow_up == FollowUp("image", "cat")
        assert result.action is None

    def test_image_without_prompt_is_plain(self):
        result = parse_command_response({"text": "Generating...", "action": "image_generating"})
        assert result.follow_up is None

    def test_summary_follow_up(self):
        result = parse_command_response(
            {"text": "Читаю...", "action": "summarizing", "summarizeCommand": "кратко про статью"}
        )
        assert result.follow_up == FollowUp("summary", "кратко про статью")

    def test_missing_text_rejected(self):
        with pytest.raises(BackendResponseError):
            parse_command_response({"action": "music_open"})


class TestResolveOnline:
    async def test_single_backend_call(self, backend, connectivity):
        fallback = RemoteCommandFallback(backend, connectivity)

        result = await fallback.resolve("Расскажи Анекдот")

        backend.voice_command.assert_awaited_once_with("Расскажи Анекдот")
        assert result.response_text == "ok"

    async def test_connection_error_marks_offline_and_apologises(self, backend, connectivity):
        backend.voice_command.side_effect = BackendConnectionError("refused")
        fallback = RemoteCommandFallback(backend, connectivity)

        result = await fallback.resolve("расскажи анекдот")

        assert result.response_text == not_understood_apology("сэр")
        assert connectivity.online is False

    async def test_bad_payload_keeps_online(self, backend, connectivity):
        backend.voice_command.return_value = {"action": "music_open"}
        fallback = RemoteCommandFallback(backend, connectivity)

        result = await fallback.resolve("расскажи анекдот")

        assert result == CommandResult(response_text=not_understood_apology("сэр"))
        assert connectivity.online is True

    async def test_network_failure_retries_offline_worker(self, backend, connectivity, worker):
        backend.voice_command.side_effect = BackendConnectionError("refused")
        fallback = RemoteCommandFallback(backend, connectivity, offline_worker=worker)

        result = await fallback.resolve("кто ты")

        assert result.response_text.startswith("Я Джарвис")

    async def test_success_marks_online(self, backend, connectivity):
        connectivity.mark_offline()
        connectivity.mark_online()
        fallback = RemoteCommandFallback(backend, connectivity)

        await fallback.resolve("что-нибудь")

        assert connectivity.online is True


class TestResolveOffline:
    async def test_offline_without_worker(self, backend, connectivity):
        connectivity.mark_offline()
        fallback = RemoteCommandFallback(backend, connectivity, honorific="мэм")

        result = await fallback.resolve("расскажи анекдот")

        assert result == CommandResult(response_text=offline_apology("мэм"))
        backend.voice_command.assert_not_awaited()

    async def test_offline_worker_answer(self, backend, connectivity, worker):
        connectivity.mark_offline()
        fallback = RemoteCommandFallback(backend, connectivity, offline_worker=worker)

        result = await fallback.resolve("привет")

        assert result.response_text.startswith("Здравствуйте, сэр")
        backend.voice_command.assert_not_awaited()

    async def test_offline_worker_without_answer(self, backend, connectivity, worker):
        connectivity.mark_offline()
        fallback = RemoteCommandFallback(backend, connectivity, offline_worker=worker)

        result = await fallback.resolve("открой погоду")

        assert result.response_text == offline_apology("сэр")

    async def test_stalled_worker_times_out(self, backend, connectivity):
        connectivity.mark_offline()
        stalled = OfflineWorker("сэр")
        stalled._task = asyncio.get_running_loop().create_future()  # looks running, never answers
        fallback = RemoteCommandFallback(backend, connectivity, offline_worker=stalled, offline_timeout=0.05)

        result = await fallback.resolve("привет")

        assert result.response_text == offline_apology("сэр")
        stalled._task.cancel()

    def test_offline_apology_capitalises(self):
        assert offline_apology("мэм").startswith("Мэм, я работаю в автономном режиме.")
