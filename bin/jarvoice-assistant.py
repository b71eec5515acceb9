#!/usr/bin/env python3
"""Jarvoice voice assistant daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from jarvoice.assistant.backend import BackendClient
from jarvoice.assistant.config import AssistantConfig
from jarvoice.assistant.engines import WyomingSynthesisEngine, negotiate_capabilities
from jarvoice.assistant.fallback import RemoteCommandFallback
from jarvoice.assistant.intents import honorific_for
from jarvoice.assistant.mqtt import AssistantMqtt
from jarvoice.assistant.network import ConnectivityMonitor
from jarvoice.assistant.offline import OfflineWorker
from jarvoice.assistant.publisher import SessionObserver, SessionPublisher
from jarvoice.assistant.session import VoiceSession
from jarvoice.assistant.voice_settings import LocalStorage, VoiceSettingsStore

LOGGER = logging.getLogger("jarvoice-assistant")


class JarvoiceAssistant:
    def __init__(self, config: AssistantConfig) -> None:
        self.config = config
        honorific = honorific_for(config.user_gender)
        self.settings_store = VoiceSettingsStore(LocalStorage(config.storage_path, logger=LOGGER), logger=LOGGER)
        self.backend = BackendClient(config.backend)
        self.connectivity = ConnectivityMonitor.for_url(config.backend.base_url, logger=LOGGER)
        self.offline_worker = OfflineWorker(honorific, logger=LOGGER)
        self.fallback = RemoteCommandFallback(
            self.backend,
            self.connectivity,
            offline_worker=self.offline_worker,
            honorific=honorific,
            logger=LOGGER,
        )
        self.mqtt = AssistantMqtt(config.mqtt, client_id=f"jarvoice-assistant-{config.hostname}", logger=LOGGER)
        self.publisher: SessionPublisher | None = None
        if self.mqtt.enabled:
            self.publisher = SessionPublisher(
                self.mqtt,
                config.topics,
                settings_store=self.settings_store,
                logger=LOGGER,
            )
        self.recognition, self.synthesis = negotiate_capabilities(config, logger=LOGGER)
        observer: SessionObserver | None = self.publisher
        self.session = VoiceSession(
            self.recognition,
            self.synthesis,
            self.fallback,
            self.backend,
            self.settings_store,
            honorific=honorific,
            language=config.language,
            fallback_voice_language=config.fallback_voice_language,
            observer=observer,
            logger=LOGGER,
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        self.offline_worker.start()
        if isinstance(self.synthesis, WyomingSynthesisEngine):
            await self.synthesis.refresh_voices()
        if self.publisher is not None and self.mqtt.connect():
            self.publisher.attach(self.session, loop)
        LOGGER.info(
            "Jarvoice assistant ready on %s (recognition=%s, synthesis=%s)",
            self.config.device_name,
            self.recognition.supported,
            self.synthesis.supported,
        )
        await self.connectivity.run(stop_event)

    async def shutdown(self) -> None:
        self.session.close()
        await self.offline_worker.stop()
        self.mqtt.disconnect()
        await self.backend.close()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Jarvoice voice assistant")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AssistantConfig.from_env()
    assistant = JarvoiceAssistant(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(assistant.run(stop_event))
    await stop_event.wait()
    await assistant.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
