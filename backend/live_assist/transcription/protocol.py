from __future__ import annotations

import base64
import json

from live_assist.errors import MalformedMessage
from live_assist.transcription.models import ServerMessage

AUDIO_MIME_TYPE = "audio/pcm;rate=16000"

# 1008 is policy violation, which the service uses for rejected keys and for
# explicit turn signals sent while automatic activity detection is active.
AUTH_CLOSE_CODES = {1008}
AUTH_CLOSE_CODE_RANGE = range(4000, 4100)

LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Russian",
    "lv": "Latvian",
    "de": "German",
}


def is_auth_close_code(code: int | None) -> bool:
    if code is None:
        return False
    return code in AUTH_CLOSE_CODES or code in AUTH_CLOSE_CODE_RANGE


def language_name(code: str | None) -> str:
    return LANGUAGE_NAMES.get(str(code or "en").strip().lower(), "English")


def build_system_instruction(spoken_language: str | None) -> str:
    return (
        "You are a speech transcription assistant in a real-time interview session.\n"
        f"The speaker is speaking in {language_name(spoken_language)}.\n\n"
        "Your only job is to listen to the audio input carefully.\n"
        'When the user finishes speaking, respond with a very brief acknowledgment like "Heard." or "Got it."\n'
        "Do NOT provide any analysis, hints, or answers. Another model handles that.\n"
        "Keep your responses to 1-2 words maximum."
    )


def build_setup_message(model: str, system_instruction: str, auto_activity_detection: bool = True) -> dict:
    activity_detection: dict = {"disabled": not auto_activity_detection}
    if auto_activity_detection:
        activity_detection.update({
            "startOfSpeechSensitivity": "START_SENSITIVITY_LOW",
            "endOfSpeechSensitivity": "END_SENSITIVITY_LOW",
            "prefixPaddingMs": 100,
            "silenceDurationMs": 500,
        })

    return {
        "setup": {
            "model": f"models/{model}",
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "temperature": 0.7,
                "maxOutputTokens": 50,
            },
            "systemInstruction": {
                "parts": [{"text": system_instruction}],
            },
            "realtimeInputConfig": {
                "automaticActivityDetection": activity_detection,
                "activityHandling": "NO_INTERRUPTION",
            },
            "inputAudioTranscription": {},
        }
    }


def build_audio_message(pcm: bytes) -> dict:
    """Wrap a 16-bit / 16kHz / mono PCM frame as a realtime input chunk."""
    return {
        "realtimeInput": {
            "mediaChunks": [{
                "data": base64.b64encode(bytes(pcm)).decode("ascii"),
                "mimeType": AUDIO_MIME_TYPE,
            }]
        }
    }


def build_text_message(text: str) -> dict:
    return {
        "clientContent": {
            "turns": [{
                "role": "user",
                "parts": [{"text": str(text)}],
            }],
            "turnComplete": True,
        }
    }


def build_activity_start_message() -> dict:
    return {"realtimeInput": {"activityStart": {}}}


def build_activity_end_message() -> dict:
    return {"realtimeInput": {"activityEnd": {}}}


def parse_server_message(raw: str | bytes) -> ServerMessage:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessage(f"undecodable frame: {exc}") from exc

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedMessage(f"expected object, got {type(data).__name__}")

    error = data.get("error")
    if error:
        if not isinstance(error, dict):
            return ServerMessage(error_message=str(error))
        code = error.get("code")
        return ServerMessage(
            error_code=int(code) if isinstance(code, (int, float)) else None,
            error_message=str(error.get("message") or "unknown error"),
        )

    content = data.get("serverContent")
    if not isinstance(content, dict):
        return ServerMessage()

    message = ServerMessage(
        interrupted=bool(content.get("interrupted", False)),
        turn_complete=bool(content.get("turnComplete", False)),
    )

    transcription = content.get("inputTranscription")
    if isinstance(transcription, dict):
        message.transcription_text = str(transcription.get("text") or "")

    model_turn = content.get("modelTurn")
    if isinstance(model_turn, dict):
        for part in model_turn.get("parts") or []:
            if isinstance(part, dict) and part.get("text"):
                message.model_texts.append(str(part["text"]))

    return message
