from __future__ import annotations


class LiveAssistError(Exception):
    """Base class for every failure raised or delivered by the live assist core."""


class TranscriptionConnectionError(LiveAssistError, ConnectionError):
    """The transcription transport never reached open, or closed before it did."""


class AuthError(LiveAssistError):
    """The credential was rejected. Retrying with the same key cannot succeed."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class GenerationError(LiveAssistError):
    """A hint request failed for a reason other than cancellation."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CancelledOperation(LiveAssistError):
    """An aborted hint request. Never delivered to callbacks."""


class MalformedMessage(LiveAssistError):
    """An inbound wire payload that could not be parsed."""
