"""MQTT transport for the session's UI surface."""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

LOGGER = logging.getLogger("jarvoice-assistant.mqtt")

KEEPALIVE_SECONDS = 30

MessageHandler = Callable[[str], None]


class AssistantMqtt:
    """paho client running its own network thread; handlers are called on that thread."""

    def __init__(
        self,
        config: MqttConfig,
        *,
        client_id: str = "jarvoice-assistant",
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self._logger = logger or LOGGER
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._handlers: dict[str, MessageHandler] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.config.host)

    def connect(self) -> bool:
        """Connect and start the network loop; False when disabled or the broker is unreachable."""
        if not self.enabled:
            self._logger.debug("[mqtt] No broker configured; UI surface disabled")
            return False
        with self._lock:
            if self._client is not None:
                return True
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=KEEPALIVE_SECONDS)
            except OSError as exc:
                self._logger.warning("[mqtt] Broker %s:%s unreachable: %s", self.config.host, self.config.port, exc)
                return False
            client.loop_start()
            self._client = client
        self._logger.info("[mqtt] Connected to %s:%s", self.config.host, self.config.port)
        return True

    def disconnect(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return client is not None and client.is_connected()

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if client is None:
            return
        try:
            client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (OSError, ValueError) as exc:
            self._logger.debug("[mqtt] Publish to %s failed: %s", topic, exc)

    def publish_json(self, topic: str, payload: dict[str, Any], retain: bool = False) -> None:
        self.publish(topic, json.dumps(payload, ensure_ascii=False), retain=retain)

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Route UTF-8 payloads on ``topic`` to ``handler``; kept across reconnects."""
        client = self._client
        if client is None:
            raise RuntimeError("MQTT client is not connected")
        self._handlers[topic] = handler
        client.message_callback_add(topic, self._dispatcher(topic, handler))
        result, _mid = client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Subscribe to %s failed (rc=%s)", topic, result)

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            client.tls_set(
                ca_certs=self.config.ca_cert,
                certfile=self.config.cert,
                keyfile=self.config.key,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )
        client.on_connect = self._on_connect
        return client

    def _dispatcher(self, topic: str, handler: MessageHandler) -> Callable[..., None]:
        def _on_message(_client: mqtt.Client, _userdata: Any, message: mqtt.MQTTMessage) -> None:
            try:
                handler(message.payload.decode("utf-8", errors="ignore"))
            except Exception as exc:
                self._logger.error("[mqtt] Handler for %s failed: %s", topic, exc, exc_info=True)

        return _on_message

    def _on_connect(self, client, _userdata, _flags, reason_code, _properties=None):  # type: ignore[no-untyped-def]
        if reason_code.is_failure:
            self._logger.warning("[mqtt] Connection refused: %s", reason_code)
            return
        # Sessions are clean, so the broker forgets subscriptions on reconnect.
        for topic in list(self._handlers):
            client.subscribe(topic)
