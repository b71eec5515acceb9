"""Voice synthesis settings persisted in the local key/value store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger("jarvoice-assistant.settings")

VOICE_SETTINGS_KEY = "jarvoice_voice_settings"

# Stored field name -> dataclass attribute. The stored form keeps the
# camelCase keys written by the web settings page.
_FIELD_MAP = {
    "voiceName": "voice_name",
    "rate": "rate",
    "pitch": "pitch",
    "volume": "volume",
}


@dataclass(frozen=True)
class VoiceSettings:
    voice_name: str = ""
    rate: float = 0.9
    pitch: float = 0.85
    volume: float = 1.0

    def to_storage(self) -> dict[str, Any]:
        values = asdict(self)
        return {stored: values[attr] for stored, attr in _FIELD_MAP.items()}


DEFAULT_VOICE_SETTINGS = VoiceSettings()


def _coerce_field(attr: str, value: Any) -> Any:
    if attr == "voice_name":
        return value if isinstance(value, str) else None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def merge_voice_settings(base: VoiceSettings, payload: Any) -> VoiceSettings:
    """Overlay a stored/partial payload on ``base``; unusable fields keep the base value."""
    if not isinstance(payload, dict):
        return base
    updates: dict[str, Any] = {}
    for stored, attr in _FIELD_MAP.items():
        key = stored if stored in payload else attr
        if key not in payload:
            continue
        coerced = _coerce_field(attr, payload[key])
        if coerced is not None:
            updates[attr] = coerced
    return replace(base, **updates) if updates else base


class LocalStorage:
    """JSON-file backed string key/value store (the daemon's localStorage)."""

    def __init__(self, path: Path, logger: logging.Logger | None = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._logger = logger or LOGGER

    def get_item(self, key: str) -> str | None:
        data = self._read()
        value = data.get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            self._logger.debug("Failed to read local storage %s: %s", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            self._logger.debug("Local storage %s is not valid JSON; ignoring", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class VoiceSettingsStore:
    def __init__(
        self,
        storage: LocalStorage,
        key: str = VOICE_SETTINGS_KEY,
        logger: logging.Logger | None = None,
    ) -> None:
        self.storage = storage
        self.key = key
        self._logger = logger or LOGGER

    def load(self) -> VoiceSettings:
        """Read fresh settings; missing or malformed data yields the defaults."""
        raw = self.storage.get_item(self.key)
        if not raw:
            return DEFAULT_VOICE_SETTINGS
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            self._logger.info("Failed to load voice settings; using defaults")
            return DEFAULT_VOICE_SETTINGS
        return merge_voice_settings(DEFAULT_VOICE_SETTINGS, payload)

    def save(self, settings: VoiceSettings) -> None:
        self.storage.set_item(self.key, json.dumps(settings.to_storage(), ensure_ascii=False))

    def update(self, payload: dict[str, Any]) -> VoiceSettings:
        settings = merge_voice_settings(self.load(), payload)
        self.save(settings)
        return settings
