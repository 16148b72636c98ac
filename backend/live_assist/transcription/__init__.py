from live_assist.transcription.client import LiveConnection, RealtimeTranscriptionClient
from live_assist.transcription.models import (
    AckResponse,
    ConnectionPhase,
    ServerMessage,
    TranscriptionCallbacks,
    TranscriptUpdate,
)

__all__ = [
    "AckResponse",
    "ConnectionPhase",
    "LiveConnection",
    "RealtimeTranscriptionClient",
    "ServerMessage",
    "TranscriptionCallbacks",
    "TranscriptUpdate",
]
