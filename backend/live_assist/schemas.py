from typing import Literal

from pydantic import BaseModel, Field


class ClientMessage(BaseModel):
    type: Literal["start", "stop", "audio", "text"]
    pcm: str | None = None  # base64, 16-bit / 16kHz / mono
    level: float = Field(default=0.0, ge=0.0, le=1.0)
    text: str | None = None


class HealthResponse(BaseModel):
    status: str
    active_sessions: int
