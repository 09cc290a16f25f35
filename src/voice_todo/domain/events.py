from __future__ import annotations

from enum import Enum


class SpeechSessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    LISTENING = "LISTENING"
    STOPPING = "STOPPING"
