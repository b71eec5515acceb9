"""
Voice session for the Jarvoice "Jarvis" assistant

This package runs the hands-free voice loop of Jarvoice:

- Speech recognition: Wyoming protocol (faster-whisper) fed from ``arecord``
- Intent matching: scripted Russian replies for greetings, time, navigation
- Remote fallback: backend voice-command, image and summarization endpoints
- Offline mode: basic commands answered locally when the backend is down
- Speech synthesis: Piper TTS with per-user voice settings
- UI surface: state, status and responses published over MQTT

Key modules:
- session: the exchange state machine (idle/listening/speaking)
- capture / playback: recognition and synthesis controllers
- intents / fallback / offline: where response text comes from
- engines: Wyoming engines and capability negotiation
- publisher / mqtt: observer that mirrors the session onto MQTT
"""

from __future__ import annotations

__all__ = [
    "config",
    "session",
    "capture",
    "playback",
    "intents",
    "fallback",
    "mqtt",
]
