"""Connectivity tracking for the backend (the daemon's stand-in for navigator.onLine)."""

from __future__ import annotations

import asyncio
import contextlib
import logging

import httpx

LOGGER = logging.getLogger("jarvoice-assistant.network")

DEFAULT_PROBE_INTERVAL = 15.0


class ConnectivityMonitor:
    """Tracks whether the backend host is reachable."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        probe_timeout: float = 2.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.probe_timeout = probe_timeout
        self._online = True
        self._logger = logger or LOGGER

    @classmethod
    def for_url(cls, url: str, **kwargs) -> ConnectivityMonitor:
        parsed = httpx.URL(url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return cls(parsed.host, port, **kwargs)

    @property
    def online(self) -> bool:
        return self._online

    def mark_online(self) -> None:
        if not self._online:
            self._logger.info("[network] Backend reachable again")
        self._online = True

    def mark_offline(self) -> None:
        if self._online:
            self._logger.warning("[network] Backend unreachable; switching to offline mode")
        self._online = False

    async def probe(self) -> bool:
        """Open (and immediately close) a TCP connection to the backend host."""
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.probe_timeout,
            )
        except (OSError, TimeoutError) as exc:
            self._logger.debug("[network] Probe of %s:%s failed: %s", self.host, self.port, exc)
            self.mark_offline()
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        self.mark_online()
        return True

    async def run(self, stop_event: asyncio.Event, interval: float = DEFAULT_PROBE_INTERVAL) -> None:
        while not stop_event.is_set():
            await self.probe()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
