import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


GEMINI_API_KEY = str(os.getenv("GEMINI_API_KEY") or "").strip()
LIVE_MODEL = str(os.getenv("LIVE_MODEL") or "gemini-2.5-flash-native-audio-preview-12-2025").strip()
HINT_MODEL = str(os.getenv("HINT_MODEL") or "gemini-3-flash-preview").strip()
GEMINI_LIVE_WS_URL = str(
    os.getenv("GEMINI_LIVE_WS_URL")
    or "wss://generativelanguage.googleapis.com/ws/google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
).strip()
GEMINI_API_BASE = str(os.getenv("GEMINI_API_BASE") or "https://generativelanguage.googleapis.com").strip().rstrip("/")

SPOKEN_LANGUAGE = str(os.getenv("SPOKEN_LANGUAGE") or "en").strip().lower()
INTERVIEW_MODE = str(os.getenv("INTERVIEW_MODE") or "coding").strip().lower()
ANSWER_STYLE = str(os.getenv("ANSWER_STYLE") or "structured").strip().lower()

# Transcription transport
LIVE_CONNECT_TIMEOUT_SEC = max(1.0, float(os.getenv("LIVE_CONNECT_TIMEOUT_SEC", "10")))
LIVE_MAX_RECONNECT_ATTEMPTS = max(0, int(os.getenv("LIVE_MAX_RECONNECT_ATTEMPTS", "3")))
LIVE_RECONNECT_BASE_DELAY_SEC = max(0.1, float(os.getenv("LIVE_RECONNECT_BASE_DELAY_SEC", "1.0")))
LIVE_AUTO_ACTIVITY_DETECTION = _env_bool("LIVE_AUTO_ACTIVITY_DETECTION", True)
LIVE_PROACTIVE_END_TURN = _env_bool("LIVE_PROACTIVE_END_TURN", True)

# Orchestrator timing
TRANSCRIBE_HOLD_SEC = max(0.5, float(os.getenv("TRANSCRIBE_HOLD_SEC", "2.0")))
HINT_TRIGGER_SILENCE_SEC = max(0.3, float(os.getenv("HINT_TRIGGER_SILENCE_SEC", "1.5")))
HINT_FALLBACK_SEC = max(2.0, float(os.getenv("HINT_FALLBACK_SEC", "8.0")))
TRANSCRIPT_CLEAR_SEC = max(1.0, float(os.getenv("TRANSCRIPT_CLEAR_SEC", "5.0")))
NO_SIGNAL_SEC = max(1.0, float(os.getenv("NO_SIGNAL_SEC", "5.0")))
SILENCE_LEVEL_THRESHOLD = min(1.0, max(0.0, float(os.getenv("SILENCE_LEVEL_THRESHOLD", "0.01"))))
END_TURN_SILENCE_SEC = max(0.3, float(os.getenv("END_TURN_SILENCE_SEC", "1.2")))
END_TURN_MIN_INTERVAL_SEC = max(0.5, float(os.getenv("END_TURN_MIN_INTERVAL_SEC", "3.0")))
MIN_HINT_ALNUM_CHARS = max(1, int(os.getenv("MIN_HINT_ALNUM_CHARS", "2")))

# Buffers
MAX_TRANSCRIPT_CHARS = max(1000, int(os.getenv("MAX_TRANSCRIPT_CHARS", "100000")))
MAX_RESPONSE_HISTORY_CHARS = max(1000, int(os.getenv("MAX_RESPONSE_HISTORY_CHARS", "200000")))

# Hint generation
HINT_TEMPERATURE = float(os.getenv("HINT_TEMPERATURE", "0.7"))
HINT_MAX_OUTPUT_TOKENS = max(64, int(os.getenv("HINT_MAX_OUTPUT_TOKENS", "4096")))
HINT_REQUEST_TIMEOUT_SEC = max(5.0, float(os.getenv("HINT_REQUEST_TIMEOUT_SEC", "60")))
CACHE_MIN_TOKENS = max(1, int(os.getenv("CACHE_MIN_TOKENS", "1100")))
CACHE_TTL_SEC = max(60, int(os.getenv("CACHE_TTL_SEC", "3600")))

# Session registry housekeeping
SESSION_CLEANUP_TTL_SEC = max(60, int(os.getenv("SESSION_CLEANUP_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))


@dataclass
class LiveAssistSettings:
    api_key: str = GEMINI_API_KEY
    live_model: str = LIVE_MODEL
    hint_model: str = HINT_MODEL
    live_ws_url: str = GEMINI_LIVE_WS_URL
    api_base: str = GEMINI_API_BASE
    spoken_language: str = SPOKEN_LANGUAGE
    interview_mode: str = INTERVIEW_MODE
    answer_style: str = ANSWER_STYLE

    connect_timeout_sec: float = LIVE_CONNECT_TIMEOUT_SEC
    max_reconnect_attempts: int = LIVE_MAX_RECONNECT_ATTEMPTS
    reconnect_base_delay_sec: float = LIVE_RECONNECT_BASE_DELAY_SEC
    auto_activity_detection: bool = LIVE_AUTO_ACTIVITY_DETECTION
    proactive_end_turn: bool = LIVE_PROACTIVE_END_TURN

    transcribe_hold_sec: float = TRANSCRIBE_HOLD_SEC
    hint_trigger_silence_sec: float = HINT_TRIGGER_SILENCE_SEC
    hint_fallback_sec: float = HINT_FALLBACK_SEC
    transcript_clear_sec: float = TRANSCRIPT_CLEAR_SEC
    no_signal_sec: float = NO_SIGNAL_SEC
    silence_level_threshold: float = SILENCE_LEVEL_THRESHOLD
    end_turn_silence_sec: float = END_TURN_SILENCE_SEC
    end_turn_min_interval_sec: float = END_TURN_MIN_INTERVAL_SEC
    min_hint_alnum_chars: int = MIN_HINT_ALNUM_CHARS

    max_transcript_chars: int = MAX_TRANSCRIPT_CHARS
    max_response_history_chars: int = MAX_RESPONSE_HISTORY_CHARS

    hint_temperature: float = HINT_TEMPERATURE
    hint_max_output_tokens: int = HINT_MAX_OUTPUT_TOKENS
    hint_request_timeout_sec: float = HINT_REQUEST_TIMEOUT_SEC
    cache_min_tokens: int = CACHE_MIN_TOKENS
    cache_ttl_sec: int = CACHE_TTL_SEC

    @classmethod
    def from_env(cls) -> "LiveAssistSettings":
        # Credentials may be rotated at runtime, so re-read the key.
        return cls(api_key=str(os.getenv("GEMINI_API_KEY") or GEMINI_API_KEY).strip())
