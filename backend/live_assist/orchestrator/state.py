from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional


class ListeningState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    NO_SIGNAL = "no_signal"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    ERROR = "error"


@dataclass
class ListeningStatus:
    state: ListeningState
    transcript: str
    response: str
    audio_level: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["state"] = self.state.value
        if payload["error"] is None:
            payload.pop("error")
        return payload


@dataclass
class SessionClock:
    """Auxiliary timestamps of one session, in orchestrator clock seconds."""
    last_transcript_time: float = 0.0
    last_non_silent_audio_at: float = 0.0
    last_end_turn_at: float = 0.0
