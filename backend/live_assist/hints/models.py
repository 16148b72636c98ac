from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class ConversationTurn:
    role: str  # user | model
    text: str

    def to_wire(self) -> dict:
        return {"role": self.role, "parts": [{"text": self.text}]}


@dataclass
class HintResponse:
    """Cumulative hint text; each delivery replaces the previous one."""
    text: str
    is_complete: bool
    timestamp: float


@dataclass
class StreamChunk:
    text: str = ""
    finish_reason: Optional[str] = None


@dataclass
class HintCallbacks:
    on_hint: Optional[Callable[[HintResponse], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
