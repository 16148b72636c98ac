import asyncio
import logging
import math
import time

import httpx

from core.config import LiveAssistSettings
from core.logger import log_event
from live_assist.errors import CancelledOperation, GenerationError, MalformedMessage
from live_assist.hints.models import ConversationTurn, HintCallbacks, HintResponse
from live_assist.hints.prompts import build_hint_system_instruction, build_user_turn_text
from live_assist.hints.sse import parse_sse_line

logger = logging.getLogger("hint_stream")

CHARS_PER_TOKEN = 4


class _HintRequest:
    def __init__(self, transcript: str):
        self.transcript = transcript
        self.task: asyncio.Task | None = None
        self.aborted = False
        self.started_at = time.perf_counter()


class HintStreamClient:
    """
    Streams hints from the generateContent SSE endpoint.

    Keeps the running (question, answer) history so the model sees the whole
    interview, and moves system instruction + history into a server-side
    context cache once there is enough text for the service to accept one.
    Only one request is in flight per client; a new request aborts the old one.
    """

    def __init__(
        self,
        settings: LiveAssistSettings,
        callbacks: HintCallbacks | None = None,
        http_client: httpx.AsyncClient | None = None,
        session_id: str = "",
    ):
        self.settings = settings
        self.callbacks = callbacks or HintCallbacks()
        self.session_id = session_id
        self.api_key = settings.api_key
        self.model = settings.hint_model
        self.system_instruction = build_hint_system_instruction(settings.interview_mode, settings.answer_style)
        self.history: list[ConversationTurn] = []
        self.cached_content_name: str | None = None

        self._cache_attempted = False
        self._http = http_client or httpx.AsyncClient(timeout=settings.hint_request_timeout_sec)
        self._owns_http = http_client is None
        self._current: _HintRequest | None = None
        self._background: set[asyncio.Task] = set()

    def set_system_instruction(self, instruction: str) -> None:
        self.system_instruction = str(instruction or "")

    def set_api_key(self, api_key: str) -> None:
        self.api_key = str(api_key or "")

    def set_model(self, model: str) -> None:
        self.model = str(model or self.settings.hint_model)

    def is_active(self) -> bool:
        return self._current is not None

    # ==========================
    # GENERATION
    # ==========================

    async def generate_hint(self, transcript: str) -> None:
        if not str(transcript or "").strip():
            logger.warning("Empty transcript, skipping")
            return

        if not self.api_key:
            logger.error("No API key configured")
            self._emit("on_error", GenerationError("No API key configured"))
            return

        self.abort()

        user_turn = ConversationTurn(role="user", text=build_user_turn_text(transcript))
        payload = self._build_generate_payload(user_turn)
        request = _HintRequest(transcript)
        request.task = asyncio.create_task(self._stream(request, payload))
        self._current = request

        logger.info(
            "Generating hint (%d chars, %d history turns, cache: %s)",
            len(transcript),
            len(self.history),
            bool(self.cached_content_name),
        )
        log_event("hint_stream", "hint_requested", self.session_id, transcript=transcript, history_turns=len(self.history))

        try:
            answer = await request.task
        except asyncio.CancelledError:
            if request.aborted:
                logger.info("Generation aborted")
                return
            raise
        except CancelledOperation:
            logger.info("Generation aborted")
            return
        except GenerationError as exc:
            self._fail(request, exc)
            return
        except httpx.HTTPError as exc:
            self._fail(request, GenerationError(f"transport error: {exc}"))
            return
        except Exception as exc:
            self._fail(request, GenerationError(f"unexpected stream failure: {exc}"))
            return
        finally:
            if self._current is request:
                self._current = None

        if request.aborted:
            logger.info("Generation aborted after stream end")
            return

        if not answer:
            self._fail(request, GenerationError("model returned no text"))
            return

        # History only ever grows by whole pairs, and before listeners learn
        # the hint is complete.
        self.history.append(user_turn)
        self.history.append(ConversationTurn(role="model", text=answer))
        logger.info("FINAL hint (%d chars); history now has %d turns", len(answer), len(self.history))
        log_event(
            "hint_stream",
            "hint_completed",
            self.session_id,
            hint=answer,
            duration_ms=round((time.perf_counter() - request.started_at) * 1000.0, 2),
        )
        self._emit("on_hint", HintResponse(text=answer, is_complete=True, timestamp=time.time()))

        if not self.cached_content_name:
            self._spawn(self.create_cache())

    def _build_generate_payload(self, user_turn: ConversationTurn) -> dict:
        payload: dict = {
            "contents": [turn.to_wire() for turn in self.history] + [user_turn.to_wire()],
            "generationConfig": {
                "temperature": self.settings.hint_temperature,
                "maxOutputTokens": self.settings.hint_max_output_tokens,
            },
        }
        if self.cached_content_name:
            payload["cachedContent"] = self.cached_content_name
        else:
            payload["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        return payload

    async def _stream(self, request: _HintRequest, payload: dict) -> str:
        url = f"{self.settings.api_base}/v1beta/models/{self.model}:streamGenerateContent"
        accumulated = ""

        async with self._http.stream(
            "POST",
            url,
            params={"alt": "sse"},
            headers=self._headers(),
            json=payload,
        ) as response:
            if response.status_code != 200:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise GenerationError(f"API error {response.status_code}: {body[:500]}", status_code=response.status_code)

            async for line in response.aiter_lines():
                try:
                    chunk = parse_sse_line(line)
                except MalformedMessage as exc:
                    logger.warning("Parse error: %s", exc)
                    continue
                if chunk is None:
                    continue

                if chunk.finish_reason:
                    logger.info("finishReason=%s", chunk.finish_reason)

                if request.aborted:
                    raise CancelledOperation("hint request aborted mid-stream")

                if chunk.text:
                    accumulated += chunk.text
                    self._emit("on_hint", HintResponse(text=accumulated, is_complete=False, timestamp=time.time()))

        return accumulated

    def _fail(self, request: _HintRequest, exc: GenerationError) -> None:
        logger.error("Generation failed: %s", exc)
        log_event(
            "hint_stream",
            "hint_failed",
            self.session_id,
            error=str(exc),
            status_code=exc.status_code,
            duration_ms=round((time.perf_counter() - request.started_at) * 1000.0, 2),
        )
        self._emit("on_error", exc)

    def abort(self) -> None:
        request = self._current
        self._current = None
        if request is None:
            return
        request.aborted = True
        if request.task is not None and not request.task.done():
            request.task.cancel()

    def clear_history(self) -> None:
        self.history = []
        logger.info("Conversation history cleared")

    # ==========================
    # CONTEXT CACHE
    # ==========================

    def estimate_cache_tokens(self) -> int:
        history_text = " ".join(turn.text for turn in self.history)
        total_chars = len(self.system_instruction) + len(history_text)
        return math.ceil(total_chars / CHARS_PER_TOKEN)

    async def create_cache(self) -> None:
        if not self.api_key or self._cache_attempted or self.cached_content_name:
            return
        self._cache_attempted = True

        estimated_tokens = self.estimate_cache_tokens()
        if estimated_tokens < self.settings.cache_min_tokens:
            logger.info(
                "Not enough content for cache yet (~%d tokens, need %d+)",
                estimated_tokens,
                self.settings.cache_min_tokens,
            )
            self._cache_attempted = False
            return

        body = {
            "model": f"models/{self.model}",
            "displayName": f"interview-session-{int(time.time() * 1000)}",
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
            "contents": [turn.to_wire() for turn in self.history],
            "ttl": f"{self.settings.cache_ttl_sec}s",
        }

        try:
            response = await self._http.post(
                f"{self.settings.api_base}/v1beta/cachedContents",
                headers=self._headers(),
                json=body,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("Cache creation deferred (%s)", exc)
            self._cache_attempted = False
            return

        name = data.get("name") if isinstance(data, dict) else None
        if not name:
            logger.warning("Cache creation returned no name")
            return

        self.cached_content_name = str(name)
        logger.info("Cache created (~%d tokens): %s", estimated_tokens, self.cached_content_name)
        log_event("hint_stream", "cache_created", self.session_id, estimated_tokens=estimated_tokens)

    async def delete_cache(self) -> None:
        name = self.cached_content_name
        if not name or not self.api_key:
            self.cached_content_name = None
            return

        try:
            response = await self._http.delete(
                f"{self.settings.api_base}/v1beta/{name}",
                headers=self._headers(),
            )
            response.raise_for_status()
            logger.info("Cache deleted: %s", name)
        except httpx.HTTPError as exc:
            logger.warning("Cache deletion failed: %s", exc)
        finally:
            self.cached_content_name = None
            self._cache_attempted = False

    # ==========================
    # HELPERS
    # ==========================

    async def close(self) -> None:
        self.abort()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_http:
            await self._http.aclose()

    def _headers(self) -> dict:
        return {"x-goog-api-key": self.api_key}

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _emit(self, name: str, *args) -> None:
        callback = getattr(self.callbacks, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Hint callback %s failed", name)
