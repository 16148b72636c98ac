from __future__ import annotations

import json

from live_assist.errors import MalformedMessage
from live_assist.hints.models import StreamChunk

DATA_PREFIX = "data:"


def parse_sse_line(line: str) -> StreamChunk | None:
    """
    Parse one line of a streamGenerateContent SSE response.
    Returns None for blank lines, comments, non-data fields and the [DONE] marker.
    """
    stripped = str(line or "").strip()
    if not stripped or not stripped.startswith(DATA_PREFIX):
        return None

    payload = stripped[len(DATA_PREFIX):].strip()
    if not payload or payload == "[DONE]":
        return None

    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise MalformedMessage(f"unparsable SSE payload: {payload[:200]}") from exc

    if not isinstance(data, dict):
        raise MalformedMessage(f"unexpected SSE payload type: {type(data).__name__}")

    candidates = data.get("candidates") or []
    candidate = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
    parts = (candidate.get("content") or {}).get("parts") or []
    # Thought summaries are not part of the hint.
    text = "".join(
        str(part.get("text") or "")
        for part in parts
        if isinstance(part, dict) and not part.get("thought")
    )

    return StreamChunk(text=text, finish_reason=candidate.get("finishReason"))
