"""Tests for backend connectivity tracking."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from jarvoice.assistant.network import ConnectivityMonitor

pytestmark = pytest.mark.anyio


class TestForUrl:
    @pytest.mark.parametrize(
        ("url", "host", "port"),
        [
            ("http://backend.test", "backend.test", 80),
            ("https://backend.test/api", "backend.test", 443),
            ("http://10.0.0.5:3000", "10.0.0.5", 3000),
        ],
    )
    def test_host_and_port(self, url, host, port):
        monitor = ConnectivityMonitor.for_url(url)
        assert (monitor.host, monitor.port) == (host, port)


class TestMarks:
    def test_starts_online(self):
        assert ConnectivityMonitor("backend.test", 80).online is True

    def test_transitions_logged_once(self, mock_logger):
        monitor = ConnectivityMonitor("backend.test", 80, logger=mock_logger)

        monitor.mark_offline()
        monitor.mark_offline()
        monitor.mark_online()

        mock_logger.warning.assert_called_once()
        mock_logger.info.assert_called_once()
        assert monitor.online is True


class TestProbe:
    async def test_reachable_host(self):
        server = await asyncio.start_server(lambda reader, writer: writer.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        monitor = ConnectivityMonitor("127.0.0.1", port)
        monitor.mark_offline()
        try:
            assert await monitor.probe() is True
        finally:
            server.close()
            await server.wait_closed()
        assert monitor.online is True

    async def test_unreachable_host(self, mock_logger):
        monitor = ConnectivityMonitor("backend.test", 80, logger=mock_logger)
        with patch("asyncio.open_connection", AsyncMock(side_effect=OSError("refused"))):
            assert await monitor.probe() is False
        assert monitor.online is False

    async def test_run_stops_on_event(self):
        monitor = ConnectivityMonitor("backend.test", 80)
        stop = asyncio.Event()
        probe = AsyncMock(return_value=True)

        with patch.object(monitor, "probe", probe):
            task = asyncio.create_task(monitor.run(stop, interval=0.01))
            await asyncio.sleep(0.05)
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)

        assert probe.await_count >= 2
