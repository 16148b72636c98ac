from __future__ import annotations

RESPONSE_SEPARATOR = "\n\n---\n\n"


def unprocessed_delta(last_used: str, current: str) -> str:
    """
    Text of `current` not yet sent for a hint.
    Falls back to the whole transcript when `last_used` is no longer a prefix
    (transcript cleared, truncated or otherwise reset).
    """
    last_used = str(last_used or "")
    current = str(current or "")
    if last_used and current.startswith(last_used):
        return current[len(last_used):]
    return current


def count_alnum(text: str) -> int:
    return sum(1 for ch in str(text or "") if ch.isalnum())


class TranscriptBuffer:
    """
    Growing transcript for the current topic window.
    When the cap is exceeded only the most recent half is kept.
    """

    def __init__(self, max_chars: int = 100_000):
        self.max_chars = max(2, int(max_chars))
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, token: str) -> str:
        # Upstream tokens already carry their own spacing and punctuation.
        self._text += str(token or "")
        if len(self._text) > self.max_chars:
            self._text = self._text[-(self.max_chars // 2):]
        return self._text

    def clear(self) -> None:
        self._text = ""

    def __len__(self) -> int:
        return len(self._text)

    def __bool__(self) -> bool:
        return bool(self._text)


class ResponseHistory:
    """Newest-first concatenation of completed hints, for display only."""

    def __init__(self, max_chars: int = 200_000):
        self.max_chars = max(2, int(max_chars))
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def compose(self, hint_text: str) -> str:
        if not self._text:
            return str(hint_text or "")
        return f"{hint_text}{RESPONSE_SEPARATOR}{self._text}"

    def commit(self, composed: str) -> str:
        composed = str(composed or "")
        if len(composed) > self.max_chars:
            composed = composed[: self.max_chars // 2]
        self._text = composed
        return self._text

    def clear(self) -> None:
        self._text = ""
