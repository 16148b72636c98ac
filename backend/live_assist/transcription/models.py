from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class ConnectionPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class TranscriptUpdate:
    text: str
    is_final: bool
    timestamp: float


@dataclass
class AckResponse:
    """Short acknowledgment produced by the realtime model. Not a hint."""
    text: str
    is_complete: bool
    timestamp: float


@dataclass
class ServerMessage:
    """One inbound frame, reduced to the fields the client acts on."""
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    transcription_text: str = ""
    model_texts: list[str] = field(default_factory=list)
    interrupted: bool = False
    turn_complete: bool = False

    @property
    def has_error(self) -> bool:
        return self.error_code is not None or self.error_message is not None


@dataclass
class TranscriptionCallbacks:
    on_connected: Optional[Callable[[], None]] = None
    on_transcript: Optional[Callable[[TranscriptUpdate], None]] = None
    on_response: Optional[Callable[[AckResponse], None]] = None
    on_interrupted: Optional[Callable[[], None]] = None
    on_turn_complete: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    on_auth_error: Optional[Callable[[Exception], None]] = None
    # (reason, will_retry)
    on_disconnected: Optional[Callable[[str, bool], None]] = None
