import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from core.config import LiveAssistSettings
from core.logger import log_event
from live_assist.buffers import TranscriptBuffer
from live_assist.errors import AuthError, LiveAssistError, MalformedMessage, TranscriptionConnectionError
from live_assist.transcription.models import (
    AckResponse,
    ConnectionPhase,
    TranscriptionCallbacks,
    TranscriptUpdate,
)
from live_assist.transcription.protocol import (
    build_activity_end_message,
    build_activity_start_message,
    build_audio_message,
    build_setup_message,
    build_system_instruction,
    build_text_message,
    is_auth_close_code,
    parse_server_message,
)

logger = logging.getLogger("live_transcription")

ABNORMAL_CLOSE_CODE = 1006
AUTH_HTTP_STATUSES = {401, 403}


class LiveConnection:
    """
    One transport attempt. A reconnect always builds a new instance, so tasks
    and queued frames from a dead socket can never leak into the next one.
    """

    def __init__(self, transport: Any):
        self.transport = transport
        self.outbox: asyncio.Queue[str] = asyncio.Queue()
        self.reader_task: asyncio.Task | None = None
        self.writer_task: asyncio.Task | None = None
        self.detached = False
        self.opened_at = time.monotonic()

    def enqueue(self, payload: dict) -> None:
        self.outbox.put_nowait(json.dumps(payload))


class RealtimeTranscriptionClient:
    def __init__(
        self,
        settings: LiveAssistSettings,
        callbacks: TranscriptionCallbacks | None = None,
        connect_fn: Optional[Callable[..., Any]] = None,
        session_id: str = "",
    ):
        self.settings = settings
        self.callbacks = callbacks or TranscriptionCallbacks()
        self.session_id = session_id
        self.system_instruction = build_system_instruction(settings.spoken_language)
        self.phase = ConnectionPhase.IDLE
        self.transcript = TranscriptBuffer(settings.max_transcript_chars)

        self._connect_fn = connect_fn or websockets.connect
        self._sleep = asyncio.sleep
        self._connection: LiveConnection | None = None
        self._intentional_disconnect = False
        self._reconnect_attempts = 0
        self._reconnect_task: asyncio.Task | None = None
        self._response_text = ""
        self._activity_open = False

    @property
    def connected(self) -> bool:
        return self._connection is not None and self.phase is ConnectionPhase.OPEN

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def is_active(self) -> bool:
        return self.connected

    # ==========================
    # CONNECTION LIFECYCLE
    # ==========================

    async def connect(self) -> None:
        if self.connected:
            logger.warning("Already connected")
            return

        if not self.settings.api_key:
            raise AuthError("GEMINI_API_KEY is not configured")

        self._intentional_disconnect = False
        self.phase = ConnectionPhase.CONNECTING
        logger.info(
            "Connecting | model=%s key_len=%d auto_vad=%s",
            self.settings.live_model,
            len(self.settings.api_key),
            self.settings.auto_activity_detection,
        )

        url = f"{self.settings.live_ws_url}?key={self.settings.api_key}"
        try:
            transport = await asyncio.wait_for(
                self._connect_fn(url),
                timeout=self.settings.connect_timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            self.phase = ConnectionPhase.CLOSED
            raise TranscriptionConnectionError(
                f"transport did not open within {self.settings.connect_timeout_sec:.1f}s"
            ) from exc
        except InvalidStatus as exc:
            self.phase = ConnectionPhase.CLOSED
            status = getattr(exc.response, "status_code", None)
            if status in AUTH_HTTP_STATUSES:
                raise AuthError(f"handshake rejected with HTTP {status}", code=status) from exc
            raise TranscriptionConnectionError(f"handshake rejected with HTTP {status}") from exc
        except (OSError, WebSocketException) as exc:
            self.phase = ConnectionPhase.CLOSED
            raise TranscriptionConnectionError(f"transport failed to open: {exc}") from exc

        if self._intentional_disconnect:
            await self._close_transport(transport)
            self.phase = ConnectionPhase.CLOSED
            raise TranscriptionConnectionError("disconnected while connecting")

        setup = build_setup_message(
            self.settings.live_model,
            self.system_instruction,
            auto_activity_detection=self.settings.auto_activity_detection,
        )
        try:
            await transport.send(json.dumps(setup))
        except ConnectionClosed as exc:
            self.phase = ConnectionPhase.CLOSED
            code = exc.rcvd.code if exc.rcvd is not None else ABNORMAL_CLOSE_CODE
            if is_auth_close_code(code):
                raise AuthError(f"connection rejected during setup (code={code})", code=code) from exc
            raise TranscriptionConnectionError(f"transport closed before setup was flushed (code={code})") from exc
        except Exception:
            self.phase = ConnectionPhase.CLOSED
            await self._close_transport(transport)
            raise

        connection = LiveConnection(transport)
        self._connection = connection
        self.phase = ConnectionPhase.OPEN
        self._reconnect_attempts = 0
        self._activity_open = False
        connection.reader_task = asyncio.create_task(self._read_loop(connection))
        connection.writer_task = asyncio.create_task(self._write_loop(connection))

        logger.info("Connected; setup message sent")
        log_event("transcription", "connected", self.session_id, model=self.settings.live_model)
        self._emit("on_connected")

    async def disconnect(self) -> None:
        """Safe in every phase. Suppresses reconnection and any further callbacks."""
        self._intentional_disconnect = True

        reconnect_task = self._reconnect_task
        self._reconnect_task = None
        await self._cancel_task(reconnect_task)

        connection = self._connection
        self._connection = None
        if connection is not None:
            connection.detached = True
            await self._cancel_task(connection.reader_task)
            await self._cancel_task(connection.writer_task)
            await self._close_transport(connection.transport)
            logger.info("Disconnected")

        if self.phase is not ConnectionPhase.IDLE:
            self.phase = ConnectionPhase.CLOSED
        self.transcript.clear()
        self._response_text = ""
        self._activity_open = False

    async def update_system_instruction(self, instruction: str) -> None:
        self.system_instruction = str(instruction or "")
        if self.connected:
            await self.disconnect()
            await self.connect()

    # ==========================
    # OUTBOUND
    # ==========================

    def send_audio(self, pcm: bytes) -> None:
        connection = self._open_connection()
        if connection is None:
            logger.warning("Cannot send audio - not connected")
            return

        if not self.settings.auto_activity_detection and not self._activity_open:
            connection.enqueue(build_activity_start_message())
            self._activity_open = True

        connection.enqueue(build_audio_message(pcm))

    def send_text(self, text: str) -> None:
        connection = self._open_connection()
        if connection is None:
            logger.warning("Cannot send text - not connected")
            return
        connection.enqueue(build_text_message(text))

    def end_turn(self) -> None:
        # With server-side activity detection enabled an explicit activityEnd is
        # a protocol violation and the service closes the socket with 1008.
        if self.settings.auto_activity_detection:
            logger.debug("end_turn ignored: automatic activity detection owns turn boundaries")
            return

        connection = self._open_connection()
        if connection is None or not self._activity_open:
            return
        connection.enqueue(build_activity_end_message())
        self._activity_open = False

    def clear_transcript(self) -> None:
        self.transcript.clear()

    def _open_connection(self) -> LiveConnection | None:
        if not self.connected:
            return None
        return self._connection

    async def _write_loop(self, connection: LiveConnection) -> None:
        while True:
            payload = await connection.outbox.get()
            try:
                await connection.transport.send(payload)
            except ConnectionClosed:
                # The reader observes the close and owns the recovery decision.
                return
            except Exception as exc:
                logger.warning("Write failed; frame dropped: %s", exc)

    # ==========================
    # INBOUND
    # ==========================

    async def _read_loop(self, connection: LiveConnection) -> None:
        code = None
        reason = ""
        try:
            async for raw in connection.transport:
                if connection.detached:
                    return
                self._handle_message(raw)
        except ConnectionClosed as exc:
            if exc.rcvd is not None:
                code, reason = exc.rcvd.code, exc.rcvd.reason
        except Exception as exc:
            logger.warning("Reader stopped unexpectedly: %s", exc)

        if connection.detached:
            return
        if code is None:
            code = getattr(connection.transport, "close_code", None) or ABNORMAL_CLOSE_CODE
            reason = str(getattr(connection.transport, "close_reason", "") or "")
        self._handle_close(connection, code, reason)

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = parse_server_message(raw)
        except MalformedMessage as exc:
            logger.warning("Dropped malformed message: %s", exc)
            return

        if message.has_error:
            logger.error("API error | code=%s message=%s", message.error_code, message.error_message)
            self._emit("on_error", LiveAssistError(f"{message.error_code}: {message.error_message}"))
            return

        if message.transcription_text:
            text = self.transcript.append(message.transcription_text)
            self._emit("on_transcript", TranscriptUpdate(text=text, is_final=False, timestamp=time.time()))

        for part in message.model_texts:
            self._response_text += part
            self._emit("on_response", AckResponse(text=self._response_text, is_complete=False, timestamp=time.time()))

        if message.interrupted:
            logger.info("Acknowledgment interrupted")
            self._response_text = ""
            self._emit("on_interrupted")

        if message.turn_complete:
            logger.info("Turn complete")
            if self.transcript:
                self._emit("on_transcript", TranscriptUpdate(text=self.transcript.text, is_final=True, timestamp=time.time()))
            if self._response_text:
                self._emit("on_response", AckResponse(text=self._response_text, is_complete=True, timestamp=time.time()))
            # Transcript keeps accumulating; only the acknowledgment is per turn.
            self._response_text = ""
            self._emit("on_turn_complete")

    # ==========================
    # CLOSE / RECONNECT
    # ==========================

    def _handle_close(self, connection: LiveConnection, code: int, reason: str) -> None:
        if self._connection is not connection:
            return

        self._connection = None
        self.phase = ConnectionPhase.CLOSED
        self._activity_open = False
        if connection.writer_task and not connection.writer_task.done():
            connection.writer_task.cancel()
        logger.info("Transport closed | code=%s reason=%s", code, reason)

        if is_auth_close_code(code):
            logger.error("Authentication failure (code=%s); not reconnecting", code)
            log_event("transcription", "auth_failure", self.session_id, code=code, reason=reason)
            self._emit("on_auth_error", AuthError(reason or f"connection closed with code {code}", code=code))
            return

        if self._intentional_disconnect:
            return

        self._after_unexpected_close(reason or f"connection closed with code {code}")

    def _after_unexpected_close(self, reason: str) -> None:
        will_retry = self._reconnect_attempts < self.settings.max_reconnect_attempts
        self._emit("on_disconnected", reason, will_retry)
        if not will_retry:
            logger.error("Reconnect budget exhausted after %s attempts", self._reconnect_attempts)
            log_event("transcription", "reconnect_exhausted", self.session_id, attempts=self._reconnect_attempts)
            return

        self._reconnect_attempts += 1
        delay = self._reconnect_attempts * self.settings.reconnect_base_delay_sec
        logger.warning("Reconnect scheduled | attempt=%s delay=%.1fs", self._reconnect_attempts, delay)
        log_event("transcription", "reconnect_scheduled", self.session_id, attempt=self._reconnect_attempts, delay_sec=delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._intentional_disconnect:
            return

        try:
            await self.connect()
        except AuthError as exc:
            self.phase = ConnectionPhase.CLOSED
            self._emit("on_auth_error", exc)
        except TranscriptionConnectionError as exc:
            if self._intentional_disconnect:
                return
            logger.warning("Reconnect attempt %s failed: %s", self._reconnect_attempts, exc)
            self._after_unexpected_close(str(exc))
        except Exception as exc:
            if self._intentional_disconnect:
                return
            self.phase = ConnectionPhase.CLOSED
            logger.exception("Reconnect attempt %s crashed", self._reconnect_attempts)
            self._after_unexpected_close(f"reconnect failed: {exc}")

    # ==========================
    # HELPERS
    # ==========================

    def _emit(self, name: str, *args) -> None:
        callback = getattr(self.callbacks, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Transcription callback %s failed", name)

    @staticmethod
    async def _cancel_task(task: asyncio.Task | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("Task ended with error during cancellation: %s", exc)

    @staticmethod
    async def _close_transport(transport: Any) -> None:
        try:
            await asyncio.wait_for(transport.close(), timeout=2.0)
        except Exception as exc:
            logger.debug("Transport close ignored during cleanup: %s", exc)
