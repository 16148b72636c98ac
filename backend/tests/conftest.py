import asyncio
import sys
import time
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config import LiveAssistSettings  # noqa: E402
from live_assist.hints import HintResponse  # noqa: E402
from live_assist.transcription import TranscriptUpdate  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("SPOKEN_LANGUAGE", "en")


@pytest.fixture
def fast_settings() -> LiveAssistSettings:
    # Timers long enough not to fire on their own unless a test shortens them.
    return LiveAssistSettings(
        api_key="test-key",
        api_base="https://gemini.test",
        live_ws_url="wss://gemini.test/live",
        connect_timeout_sec=1.0,
        max_reconnect_attempts=3,
        reconnect_base_delay_sec=0.01,
        transcribe_hold_sec=10.0,
        hint_trigger_silence_sec=10.0,
        hint_fallback_sec=10.0,
        transcript_clear_sec=10.0,
        no_signal_sec=10.0,
        silence_level_threshold=0.01,
        end_turn_silence_sec=1.2,
        end_turn_min_interval_sec=3.0,
        min_hint_alnum_chars=2,
        cache_min_tokens=1100,
    )


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


class FakeTranscriptionClient:
    def __init__(self, settings, callbacks, session_id):
        self.settings = settings
        self.callbacks = callbacks
        self.session_id = session_id
        self.connected = False
        self.connect_gate: asyncio.Event | None = None
        self.connect_error: Exception | None = None
        self.audio: list[bytes] = []
        self.texts: list[str] = []
        self.end_turn_calls = 0
        self.clear_calls = 0
        self.disconnect_calls = 0

    async def connect(self):
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False

    def is_active(self) -> bool:
        return self.connected

    def send_audio(self, pcm: bytes):
        self.audio.append(pcm)

    def send_text(self, text: str):
        self.texts.append(text)

    def end_turn(self):
        self.end_turn_calls += 1

    def clear_transcript(self):
        self.clear_calls += 1

    # server-side events
    def transcript(self, text: str, is_final: bool = False):
        self.callbacks.on_transcript(TranscriptUpdate(text=text, is_final=is_final, timestamp=time.time()))

    def turn_complete(self):
        self.callbacks.on_turn_complete()


class FakeHintClient:
    """generate_hint blocks until the test completes, fails or aborts it."""

    def __init__(self, settings, callbacks, session_id):
        self.callbacks = callbacks
        self.requests: list[str] = []
        self.abort_calls = 0
        self.cache_deleted = False
        self.history_cleared = False
        self.closed = False
        self._waiter: asyncio.Future | None = None

    async def generate_hint(self, transcript: str):
        self.requests.append(transcript)
        self._waiter = asyncio.get_running_loop().create_future()
        try:
            await self._waiter
        except asyncio.CancelledError:
            return

    def is_active(self) -> bool:
        return self._waiter is not None

    def partial(self, text: str):
        self.callbacks.on_hint(HintResponse(text=text, is_complete=False, timestamp=time.time()))

    def complete(self, text: str):
        waiter, self._waiter = self._waiter, None
        self.callbacks.on_hint(HintResponse(text=text, is_complete=True, timestamp=time.time()))
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def fail(self, exc: Exception):
        waiter, self._waiter = self._waiter, None
        self.callbacks.on_error(exc)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def abort(self):
        self.abort_calls += 1
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.cancel()

    async def delete_cache(self):
        self.cache_deleted = True

    def clear_history(self):
        self.history_cleared = True

    async def close(self):
        self.closed = True


class FakeClients:
    """Factories for the orchestrator that remember what they built."""

    def __init__(self):
        self.transcription: FakeTranscriptionClient | None = None
        self.hints: FakeHintClient | None = None
        self.connect_gate: asyncio.Event | None = None
        self.connect_error: Exception | None = None

    def transcription_factory(self, settings, callbacks, session_id):
        self.transcription = FakeTranscriptionClient(settings, callbacks, session_id)
        self.transcription.connect_gate = self.connect_gate
        self.transcription.connect_error = self.connect_error
        return self.transcription

    def hint_factory(self, settings, callbacks, session_id):
        self.hints = FakeHintClient(settings, callbacks, session_id)
        return self.hints


@pytest.fixture
def fake_clients() -> FakeClients:
    return FakeClients()
