"""Shared value types for one voice exchange."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class VoiceState(str, Enum):
    """What the assistant is doing right now; exactly one at a time."""

    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class FollowUp:
    """A second action to run after the acknowledgement has been spoken."""

    kind: Literal["image", "summary"]
    payload: str


@dataclass(frozen=True)
class CommandResult:
    response_text: str
    action: str | None = None
    follow_up: FollowUp | None = None


@dataclass(frozen=True)
class RecognitionResult:
    """One recognition event: interim text is display-only, final text is a command."""

    interim: str = ""
    final: str | None = None
