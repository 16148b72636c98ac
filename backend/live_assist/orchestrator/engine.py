import asyncio
import logging
import time
import uuid
from typing import Callable, Optional

from core.config import LiveAssistSettings
from core.logger import log_event
from live_assist.buffers import ResponseHistory, count_alnum, unprocessed_delta
from live_assist.hints import HintCallbacks, HintResponse, HintStreamClient
from live_assist.orchestrator.cooldown import CooldownManager
from live_assist.orchestrator.state import ListeningState, ListeningStatus, SessionClock
from live_assist.orchestrator.timers import TimerSet
from live_assist.transcription import RealtimeTranscriptionClient, TranscriptionCallbacks, TranscriptUpdate

logger = logging.getLogger("interview_orchestrator")

TRANSCRIBE_HOLD = "transcribe_hold"
HINT_SILENCE = "hint_silence"
HINT_FALLBACK = "hint_fallback"
TRANSCRIPT_CLEAR = "transcript_clear"
NO_SIGNAL = "no_signal"

END_TURN_SIGNAL = "end_turn"

TranscriptionFactory = Callable[[LiveAssistSettings, TranscriptionCallbacks, str], RealtimeTranscriptionClient]
HintFactory = Callable[[LiveAssistSettings, HintCallbacks, str], HintStreamClient]
StateListener = Callable[[ListeningState], None]
StatusListener = Callable[[ListeningStatus], None]


def _default_transcription_factory(settings, callbacks, session_id):
    return RealtimeTranscriptionClient(settings, callbacks, session_id=session_id)


def _default_hint_factory(settings, callbacks, session_id):
    return HintStreamClient(settings, callbacks, session_id=session_id)


class InterviewOrchestrator:
    """
    Supervises one live interview session.

    Audio goes to the transcription client; transcript growth is debounced into
    hint requests on the hint client, one at a time. Callers read `get_status()`
    and subscribe to state changes; they recover from `error` with stop() + start().
    """

    def __init__(
        self,
        settings: LiveAssistSettings | None = None,
        transcription_factory: Optional[TranscriptionFactory] = None,
        hint_factory: Optional[HintFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ):
        self.settings = settings or LiveAssistSettings.from_env()
        self.session_id = session_id or str(uuid.uuid4())
        self.transcription: RealtimeTranscriptionClient | None = None
        self.hints: HintStreamClient | None = None

        self._transcription_factory = transcription_factory or _default_transcription_factory
        self._hint_factory = hint_factory or _default_hint_factory
        self._clock = clock

        self._state = ListeningState.IDLE
        self._transcript = ""
        self._response = ""
        self._response_history = ResponseHistory(self.settings.max_response_history_chars)
        self._audio_level = 0.0
        self._error: str | None = None
        self._last_hint_transcript = ""
        self._pending_hint = False
        self._hint_in_flight = False
        self._hint_task: asyncio.Task | None = None
        self._times = SessionClock()
        self._cooldowns = CooldownManager()
        self._connected_once = False
        self._reconnecting = False
        self._stopping = False
        self._epoch = 0

        self._state_listeners: list[StateListener] = []
        self._status_listeners: list[StatusListener] = []

        self.timers = TimerSet()
        self.timers.add(TRANSCRIBE_HOLD, self.settings.transcribe_hold_sec, self._on_hold_elapsed)
        self.timers.add(HINT_SILENCE, self.settings.hint_trigger_silence_sec, self._on_hint_silence_elapsed)
        self.timers.add(HINT_FALLBACK, self.settings.hint_fallback_sec, self._on_hint_fallback_elapsed)
        self.timers.add(TRANSCRIPT_CLEAR, self.settings.transcript_clear_sec, self._on_transcript_clear_elapsed)
        self.timers.add(NO_SIGNAL, self.settings.no_signal_sec, self._on_no_signal_elapsed)

    # ==========================
    # CALLER SURFACE
    # ==========================

    @property
    def state(self) -> ListeningState:
        return self._state

    @property
    def pending_hint(self) -> bool:
        return self._pending_hint

    @property
    def hint_in_flight(self) -> bool:
        return self._hint_in_flight

    def get_status(self) -> ListeningStatus:
        return ListeningStatus(
            state=self._state,
            transcript=self._transcript,
            response=self._response,
            audio_level=self._audio_level,
            error=self._error,
        )

    def is_active(self) -> bool:
        return self._state not in (ListeningState.IDLE, ListeningState.ERROR)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._unsubscribe(self._state_listeners, listener)

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)
        return lambda: self._unsubscribe(self._status_listeners, listener)

    async def start(self) -> None:
        if self._state is not ListeningState.IDLE:
            logger.warning("Already running (state=%s)", self._state.value)
            return

        self._epoch += 1
        epoch = self._epoch
        self._stopping = False
        self._connected_once = False
        self._reconnecting = False
        self._error = None
        self._set_state(ListeningState.CONNECTING)
        log_event("orchestrator", "session_starting", self.session_id)

        self.hints = self._hint_factory(
            self.settings,
            HintCallbacks(on_hint=self._on_hint, on_error=self._on_hint_error),
            self.session_id,
        )
        self.transcription = self._transcription_factory(
            self.settings,
            TranscriptionCallbacks(
                on_connected=self._on_connected,
                on_transcript=self._on_transcript,
                on_interrupted=self._on_interrupted,
                on_turn_complete=self._on_turn_complete,
                on_error=self._on_transcription_error,
                on_auth_error=self._on_auth_error,
                on_disconnected=self._on_disconnected,
            ),
            self.session_id,
        )

        try:
            await self.transcription.connect()
        except Exception as exc:
            if epoch != self._epoch:
                logger.info("Start abandoned: session stopped while connecting")
                return
            logger.error("Failed to start: %s", exc)
            await self._teardown_clients()
            self._error = str(exc) or exc.__class__.__name__
            self._set_state(ListeningState.ERROR)
            self._emit_status()
            log_event("orchestrator", "session_start_failed", self.session_id, error=self._error)
            raise

        if epoch != self._epoch:
            return

        self._connected_once = True
        self._times = SessionClock(last_non_silent_audio_at=self._clock())
        self._set_state(ListeningState.LISTENING)
        self._emit_status()
        logger.info("Session started (transcription connected, hint client ready)")
        log_event("orchestrator", "session_started", self.session_id)

    async def stop(self) -> None:
        logger.info("Stopping session")
        self._stopping = True
        self._epoch += 1
        self.timers.cancel_all()
        self._pending_hint = False
        self._hint_in_flight = False

        hint_task = self._hint_task
        self._hint_task = None
        await self._teardown_clients()
        if hint_task is not None and not hint_task.done():
            hint_task.cancel()
            await asyncio.gather(hint_task, return_exceptions=True)

        self._transcript = ""
        self._response = ""
        self._response_history.clear()
        self._last_hint_transcript = ""
        self._audio_level = 0.0
        self._error = None
        self._times = SessionClock()
        self._cooldowns.reset()
        self._connected_once = False
        self._reconnecting = False
        self._set_state(ListeningState.IDLE)
        self._stopping = False
        self._emit_status()
        log_event("orchestrator", "session_stopped", self.session_id)

    def receive_audio(self, pcm: bytes, level: float) -> None:
        """Accept one PCM frame plus its precomputed loudness in [0, 1]."""
        self._audio_level = min(1.0, max(0.0, float(level or 0.0)))
        if not self._accepting_events():
            return

        now = self._clock()
        if self._audio_level < self.settings.silence_level_threshold:
            no_signal = self.timers.get(NO_SIGNAL)
            if self._state is ListeningState.LISTENING and not no_signal.armed:
                no_signal.arm()
            self._maybe_signal_end_turn(now)
        else:
            self._times.last_non_silent_audio_at = now
            self.timers.get(NO_SIGNAL).disarm()
            if self._state is ListeningState.NO_SIGNAL:
                self._set_state(ListeningState.LISTENING)

        if self.transcription is not None and self.transcription.is_active():
            self.transcription.send_audio(pcm)

        self._emit_status()

    def send_text(self, text: str) -> None:
        if self.transcription is None or not self.transcription.is_active():
            logger.warning("Cannot inject text - transcription not connected")
            return
        self.transcription.send_text(text)

    # ==========================
    # TRANSCRIPTION EVENTS
    # ==========================

    def _on_connected(self) -> None:
        if not self._accepting_events() or not self._connected_once:
            return
        if not self._reconnecting:
            return
        logger.info("Transcription reconnected")
        self._reconnecting = False
        self._error = None
        if self._state is ListeningState.CONNECTING:
            self._set_state(ListeningState.GENERATING if self._hint_in_flight else ListeningState.LISTENING)
        self._emit_status()

    def _on_transcript(self, update: TranscriptUpdate) -> None:
        if not self._accepting_events():
            return

        self._transcript = update.text
        if update.is_final:
            self._emit_status()
            return

        self._times.last_transcript_time = self._clock()
        self.timers.get(TRANSCRIPT_CLEAR).disarm()

        if self._state in (ListeningState.LISTENING, ListeningState.NO_SIGNAL):
            self._set_state(ListeningState.TRANSCRIBING)

        self.timers.get(TRANSCRIBE_HOLD).arm()
        self.timers.get(HINT_SILENCE).arm()
        fallback = self.timers.get(HINT_FALLBACK)
        if not fallback.armed:
            fallback.arm()

        self._emit_status()

    def _on_turn_complete(self) -> None:
        if not self._accepting_events():
            return

        logger.info("Turn complete")
        self.timers.get(HINT_SILENCE).disarm()
        self.timers.get(HINT_FALLBACK).disarm()
        self._maybe_trigger_hint("turn_complete")

        if self._state is ListeningState.TRANSCRIBING and not self.timers.get(TRANSCRIBE_HOLD).armed:
            self._set_state(ListeningState.LISTENING)
        self._emit_status()

    def _on_interrupted(self) -> None:
        if not self._accepting_events():
            return
        # Barge-in only concerns the acknowledgment channel; the hint stream is left alone.
        logger.info("Barge-in detected on acknowledgment channel")
        if self._state in (ListeningState.LISTENING, ListeningState.NO_SIGNAL):
            self._set_state(ListeningState.TRANSCRIBING)
            self.timers.get(TRANSCRIBE_HOLD).arm()
        self._emit_status()

    def _on_transcription_error(self, exc: Exception) -> None:
        if not self._accepting_events():
            return
        logger.error("Transcription error: %s", exc)
        self._error = str(exc)
        self._emit_status()

    def _on_auth_error(self, exc: Exception) -> None:
        if self._stopping or self._state is ListeningState.IDLE:
            return
        self._fail(f"Authentication failed: {exc}")

    def _on_disconnected(self, reason: str, will_retry: bool) -> None:
        if not self._accepting_events():
            return
        if will_retry:
            logger.warning("Transcription connection lost (%s); reconnecting", reason)
            self._reconnecting = True
            self._error = f"Connection lost: {reason}"
            self.timers.get(TRANSCRIBE_HOLD).disarm()
            self.timers.get(NO_SIGNAL).disarm()
            self._set_state(ListeningState.CONNECTING)
            self._emit_status()
            return
        self._fail(f"Connection lost: {reason}")

    # ==========================
    # HINT TRIGGERING
    # ==========================

    def _maybe_trigger_hint(self, reason: str) -> bool:
        if not self._accepting_events() or self.hints is None:
            return False

        delta = unprocessed_delta(self._last_hint_transcript, self._transcript)
        if count_alnum(delta) < self.settings.min_hint_alnum_chars:
            return False

        if self._hint_in_flight:
            if not self._pending_hint:
                logger.info("Hint generation in progress, queuing for later (reason=%s)", reason)
            self._pending_hint = True
            return False

        self._start_hint(reason)
        return True

    def _start_hint(self, reason: str) -> None:
        transcript = self._transcript
        self._last_hint_transcript = transcript
        self.timers.get(HINT_SILENCE).disarm()
        self.timers.get(HINT_FALLBACK).disarm()
        self._hint_in_flight = True
        self._error = None
        self._set_state(ListeningState.GENERATING)
        self._emit_status()

        logger.info("Triggering hint generation (%d chars, reason=%s)", len(transcript), reason)
        log_event("orchestrator", "hint_triggered", self.session_id, reason=reason, transcript=transcript)

        task = asyncio.create_task(self.hints.generate_hint(transcript))
        self._hint_task = task
        task.add_done_callback(self._on_hint_task_done)

    def _drain_pending_hint(self) -> None:
        if not self._pending_hint:
            return
        self._pending_hint = False
        logger.info("Re-evaluating deferred hint request")
        self._maybe_trigger_hint("pending")

    def _on_hint(self, hint: HintResponse) -> None:
        if not self._accepting_events() or not self._hint_in_flight:
            return

        self._response = self._response_history.compose(hint.text)
        if hint.is_complete:
            self._response = self._response_history.commit(self._response)
            self._hint_in_flight = False
            self.timers.get(TRANSCRIPT_CLEAR).arm()
            self._set_state(self._resting_state())
            self._drain_pending_hint()
        self._emit_status()

    def _on_hint_error(self, exc: Exception) -> None:
        if not self._accepting_events() or not self._hint_in_flight:
            return
        logger.error("Hint generation error: %s", exc)
        self._hint_in_flight = False
        self._error = str(exc)
        self._set_state(self._resting_state())
        self._drain_pending_hint()
        self._emit_status()

    def _on_hint_task_done(self, task: asyncio.Task) -> None:
        if task is not self._hint_task:
            return
        self._hint_task = None

        if not task.cancelled() and task.exception() is not None:
            logger.error("Hint task crashed: %s", task.exception())

        # Finished without a completion or error event: aborted or crashed.
        if self._hint_in_flight and self._accepting_events():
            self._hint_in_flight = False
            if self._state is ListeningState.GENERATING:
                self._set_state(self._resting_state())
            self._drain_pending_hint()
            self._emit_status()

    # ==========================
    # TIMERS
    # ==========================

    def _on_hold_elapsed(self) -> None:
        if self._state is ListeningState.TRANSCRIBING:
            self._set_state(ListeningState.LISTENING)
            self._emit_status()

    def _on_hint_silence_elapsed(self) -> None:
        if self._maybe_trigger_hint("silence"):
            logger.info("Auto-triggered hint after transcript silence")

    def _on_hint_fallback_elapsed(self) -> None:
        if self._maybe_trigger_hint("fallback"):
            logger.info("Fallback timer triggered hint")

    def _on_transcript_clear_elapsed(self) -> None:
        if not self._accepting_events():
            return
        logger.info("Clearing accumulated transcript after silence")
        self._transcript = ""
        self._last_hint_transcript = ""
        if self.transcription is not None:
            self.transcription.clear_transcript()
        self._emit_status()

    def _on_no_signal_elapsed(self) -> None:
        if self._state is ListeningState.LISTENING:
            self._set_state(ListeningState.NO_SIGNAL)
            self._emit_status()

    def _maybe_signal_end_turn(self, now: float) -> None:
        if not self.settings.proactive_end_turn or self.transcription is None:
            return
        if self._state not in (ListeningState.LISTENING, ListeningState.TRANSCRIBING):
            return
        silent_for = now - self._times.last_non_silent_audio_at
        if silent_for < self.settings.end_turn_silence_sec:
            return
        if not self._cooldowns.can_fire(END_TURN_SIGNAL, now, self.settings.end_turn_min_interval_sec):
            return

        self._times.last_end_turn_at = now
        logger.info("Local silence for %.1fs; signalling end of turn", silent_for)
        self.transcription.end_turn()

    # ==========================
    # INTERNALS
    # ==========================

    def _accepting_events(self) -> bool:
        return not self._stopping and self._state not in (ListeningState.IDLE, ListeningState.ERROR)

    def _resting_state(self) -> ListeningState:
        # Where the session settles once a hint finishes; no transport means no listening.
        return ListeningState.CONNECTING if self._reconnecting else ListeningState.LISTENING

    def _fail(self, message: str) -> None:
        logger.error("Session failed: %s", message)
        self._reconnecting = False
        self.timers.cancel_all()
        self._pending_hint = False
        self._hint_in_flight = False
        if self.hints is not None:
            self.hints.abort()
        self._error = message
        self._set_state(ListeningState.ERROR)
        self._emit_status()
        log_event("orchestrator", "session_failed", self.session_id, error=message)

    async def _teardown_clients(self) -> None:
        transcription, hints = self.transcription, self.hints
        self.transcription = None
        self.hints = None

        if transcription is not None:
            try:
                await transcription.disconnect()
            except Exception as exc:
                logger.warning("Transcription disconnect failed: %s", exc)

        if hints is not None:
            hints.abort()
            try:
                await hints.delete_cache()
            except Exception as exc:
                logger.warning("Cache cleanup failed: %s", exc)
            hints.clear_history()
            try:
                await hints.close()
            except Exception as exc:
                logger.warning("Hint client close failed: %s", exc)

    def _set_state(self, new_state: ListeningState) -> None:
        if self._state is new_state:
            return
        logger.info("State %s -> %s", self._state.value, new_state.value)
        self._state = new_state
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("State listener failed")

    def _emit_status(self) -> None:
        if not self._status_listeners:
            return
        status = self.get_status()
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")

    @staticmethod
    def _unsubscribe(listeners: list, listener) -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            pass
