from live_assist.hints.client import HintStreamClient
from live_assist.hints.models import ConversationTurn, HintCallbacks, HintResponse, StreamChunk

__all__ = ["ConversationTurn", "HintCallbacks", "HintResponse", "HintStreamClient", "StreamChunk"]
