"""Configuration helpers for the Jarvoice voice assistant."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from jarvoice.utils import parse_bool, parse_float, parse_int

DEFAULT_LANGUAGE = "ru-RU"
DEFAULT_FALLBACK_VOICE_LANGUAGE = "en-US"
DEFAULT_BACKEND_URL = "http://127.0.0.1:5000"
DEFAULT_STATE_DIR = Path("~/.local/state/jarvoice")
STORAGE_FILENAME = "storage.json"


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class PhraseConfig:
    min_seconds: float
    max_seconds: float
    silence_ms: int
    rms_floor: int
    no_speech_seconds: float


@dataclass(frozen=True)
class BackendConfig:
    base_url: str
    timeout: float
    verify_ssl: bool


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class SessionTopics:
    """MQTT topics that replace the home screen's widgets and buttons."""

    state: str
    status: str
    interim: str
    response: str
    navigate: str
    image: str
    notice: str
    conversation_mode: str
    command: str
    quick_command: str
    voice_toggle: str
    conversation_mode_set: str
    replay: str
    image_generate: str
    summarize: str
    voice_settings_set: str

    @staticmethod
    def from_base(base: str) -> SessionTopics:
        base = base.rstrip("/")
        return SessionTopics(
            state=f"{base}/state",
            status=f"{base}/status",
            interim=f"{base}/interim",
            response=f"{base}/response",
            navigate=f"{base}/navigate",
            image=f"{base}/image",
            notice=f"{base}/notice",
            conversation_mode=f"{base}/conversation_mode",
            command=f"{base}/command",
            quick_command=f"{base}/quick_command",
            voice_toggle=f"{base}/voice/toggle",
            conversation_mode_set=f"{base}/conversation_mode/set",
            replay=f"{base}/replay",
            image_generate=f"{base}/image/generate",
            summarize=f"{base}/summarize",
            voice_settings_set=f"{base}/voice_settings/set",
        )


@dataclass(frozen=True)
class AssistantConfig:
    hostname: str
    device_name: str
    language: str
    fallback_voice_language: str
    user_gender: Literal["male", "female"]
    mic: MicConfig
    phrase: PhraseConfig
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint
    wyoming_timeout: float
    backend: BackendConfig
    mqtt: MqttConfig
    topics: SessionTopics
    state_dir: Path

    @property
    def storage_path(self) -> Path:
        return self.state_dir / STORAGE_FILENAME

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AssistantConfig:
        source = env or os.environ
        hostname = source.get("JARVOICE_HOSTNAME") or socket.gethostname()
        device_name = source.get("JARVOICE_NAME") or hostname.replace("-", " ").title()

        mic_cmd = shlex.split(
            source.get(
                "JARVOICE_MIC_CMD",
                "arecord -q -t raw -f S16_LE -c 1 -r 16000 -",
            )
        )
        mic = MicConfig(
            command=mic_cmd,
            rate=parse_int(source.get("JARVOICE_MIC_RATE"), 16000),
            width=parse_int(source.get("JARVOICE_MIC_WIDTH"), 2),
            channels=parse_int(source.get("JARVOICE_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("JARVOICE_MIC_CHUNK_MS"), 30),
        )

        phrase = PhraseConfig(
            min_seconds=parse_float(source.get("JARVOICE_MIN_PHRASE_SECONDS"), 0.6),
            max_seconds=parse_float(source.get("JARVOICE_MAX_PHRASE_SECONDS"), 8.0),
            silence_ms=parse_int(source.get("JARVOICE_SILENCE_MS"), 1200),
            rms_floor=parse_int(source.get("JARVOICE_RMS_THRESHOLD"), 120),
            no_speech_seconds=max(0.5, parse_float(source.get("JARVOICE_NO_SPEECH_SECONDS"), 5.0)),
        )

        stt_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
            model=source.get("JARVOICE_STT_MODEL"),
        )
        tts_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
            model=None,
        )

        backend = BackendConfig(
            base_url=(source.get("JARVOICE_BACKEND_URL") or DEFAULT_BACKEND_URL).rstrip("/"),
            timeout=max(1.0, parse_float(source.get("JARVOICE_BACKEND_TIMEOUT_SECONDS"), 30.0)),
            verify_ssl=parse_bool(source.get("JARVOICE_BACKEND_VERIFY_SSL"), True),
        )

        topic_base = (source.get("JARVOICE_TOPIC_BASE") or f"jarvoice/{hostname}/assistant").rstrip("/")
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base,
        )

        state_dir_raw = _strip_or_none(source.get("JARVOICE_STATE_DIR"))
        state_dir = Path(state_dir_raw) if state_dir_raw else DEFAULT_STATE_DIR
        state_dir = state_dir.expanduser()

        return AssistantConfig(
            hostname=hostname,
            device_name=device_name,
            language=_strip_or_none(source.get("JARVOICE_LANGUAGE")) or DEFAULT_LANGUAGE,
            fallback_voice_language=_strip_or_none(source.get("JARVOICE_FALLBACK_VOICE_LANGUAGE"))
            or DEFAULT_FALLBACK_VOICE_LANGUAGE,
            user_gender=_normalize_choice(source.get("JARVOICE_USER_GENDER"), {"male", "female"}, "male"),
            mic=mic,
            phrase=phrase,
            stt_endpoint=stt_endpoint,
            tts_endpoint=tts_endpoint,
            wyoming_timeout=max(1.0, parse_float(source.get("JARVOICE_WYOMING_TIMEOUT_SECONDS"), 15.0)),
            backend=backend,
            mqtt=mqtt,
            topics=SessionTopics.from_base(topic_base),
            state_dir=state_dir,
        )


def _normalize_choice(value: str | None, allowed: set[str], default: str) -> str:
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in allowed:
        return lowered
    return default
