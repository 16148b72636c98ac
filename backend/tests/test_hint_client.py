import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from live_assist.errors import GenerationError
from live_assist.hints import ConversationTurn, HintCallbacks, HintStreamClient
from live_assist.hints.sse import parse_sse_line


def _sse(*texts: str, finish: str = "STOP") -> str:
    lines = []
    for index, text in enumerate(texts):
        candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
        if index == len(texts) - 1:
            candidate["finishReason"] = finish
        lines.append("data: " + json.dumps({"candidates": [candidate]}))
        lines.append("")
    return "\n".join(lines) + "\n"


class HintRecorder:
    def __init__(self):
        self.hints = []
        self.errors = []

    def callbacks(self) -> HintCallbacks:
        return HintCallbacks(on_hint=self.hints.append, on_error=self.errors.append)


def _client(settings, handler, recorder) -> tuple[HintStreamClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HintStreamClient(settings, recorder.callbacks(), http_client=http, session_id="s-1"), http


def test_parse_sse_line_skips_non_data_and_thoughts():
    assert parse_sse_line("") is None
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("data: [DONE]") is None

    payload = {"candidates": [{"content": {"parts": [{"text": "plan", "thought": True}, {"text": "Answer"}]}}]}
    chunk = parse_sse_line("data: " + json.dumps(payload))
    assert chunk.text == "Answer"
    assert chunk.finish_reason is None


@pytest.mark.asyncio
async def test_generate_hint_streams_cumulative_partials_then_complete(fast_settings):
    seen_requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_requests.append(request)
        return httpx.Response(200, text=_sse("A BST ", "keeps keys ", "ordered."))

    recorder = HintRecorder()
    client, http = _client(fast_settings, handler, recorder)

    await client.generate_hint("What is a binary search tree")

    assert [hint.text for hint in recorder.hints] == [
        "A BST ",
        "A BST keeps keys ",
        "A BST keeps keys ordered.",
        "A BST keeps keys ordered.",
    ]
    assert [hint.is_complete for hint in recorder.hints] == [False, False, False, True]
    assert recorder.errors == []
    assert [turn.role for turn in client.history] == ["user", "model"]
    assert client.history[1].text == "A BST keeps keys ordered."

    request = seen_requests[0]
    assert request.url.params["alt"] == "sse"
    assert request.headers["x-goog-api-key"] == "test-key"
    assert ":streamGenerateContent" in request.url.path
    body = json.loads(request.content)
    assert "systemInstruction" in body
    assert "binary search tree" in body["contents"][-1]["parts"][0]["text"]

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_second_request_carries_history_in_order(fast_settings):
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, text=_sse("hint"))

    client, http = _client(fast_settings, handler, HintRecorder())
    await client.generate_hint("first question")
    await client.generate_hint("second question")

    roles = [turn["role"] for turn in bodies[1]["contents"]]
    assert roles == ["user", "model", "user"]
    assert len(client.history) == 4

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_non_200_reports_error_and_leaves_history(fast_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    recorder = HintRecorder()
    client, http = _client(fast_settings, handler, recorder)

    await client.generate_hint("What is a heap")

    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], GenerationError)
    assert recorder.errors[0].status_code == 503
    assert client.history == []
    assert not client.is_active()

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_empty_answer_is_an_error(fast_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="data: [DONE]\n")

    recorder = HintRecorder()
    client, http = _client(fast_settings, handler, recorder)

    await client.generate_hint("anything")

    assert len(recorder.errors) == 1
    assert client.history == []

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_aborted_request_emits_nothing_and_keeps_history(fast_settings):
    release = asyncio.Event()

    async def _body():
        yield _sse("partial ").encode("utf-8")
        await release.wait()
        yield _sse("never seen").encode("utf-8")

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_body())

    recorder = HintRecorder()
    client, http = _client(fast_settings, handler, recorder)

    task = asyncio.create_task(client.generate_hint("What is a trie"))
    for _ in range(200):
        if recorder.hints:
            break
        await asyncio.sleep(0.001)
    assert client.is_active()

    client.abort()
    await task

    assert [hint.is_complete for hint in recorder.hints] == [False]
    assert recorder.errors == []
    assert client.history == []
    assert not client.is_active()

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_missing_key_reports_error_without_request(fast_settings):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, text=_sse("x"))

    recorder = HintRecorder()
    client, http = _client(replace(fast_settings, api_key=""), handler, recorder)

    await client.generate_hint("question")

    assert calls == []
    assert len(recorder.errors) == 1

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_cache_is_skipped_below_token_threshold(fast_settings):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"name": "cachedContents/abc"})

    client, http = _client(fast_settings, handler, HintRecorder())
    client.history = [ConversationTurn(role="user", text="short")]

    await client.create_cache()

    assert calls == []
    assert client.cached_content_name is None

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_cache_create_then_delete(fast_settings):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.method == "POST":
            body = json.loads(request.content)
            assert body["ttl"] == f"{fast_settings.cache_ttl_sec}s"
            return httpx.Response(200, json={"name": "cachedContents/abc"})
        return httpx.Response(200, json={})

    client, http = _client(fast_settings, handler, HintRecorder())
    client.history = [
        ConversationTurn(role="user", text="q" * 4000),
        ConversationTurn(role="model", text="a" * 4000),
    ]
    assert client.estimate_cache_tokens() >= fast_settings.cache_min_tokens

    await client.create_cache()
    assert client.cached_content_name == "cachedContents/abc"

    payload = client._build_generate_payload(ConversationTurn(role="user", text="next"))
    assert payload["cachedContent"] == "cachedContents/abc"
    assert "systemInstruction" not in payload

    await client.delete_cache()
    assert client.cached_content_name is None
    assert calls == [("POST", "/v1beta/cachedContents"), ("DELETE", "/v1beta/cachedContents/abc")]

    await client.close()
    await http.aclose()


@pytest.mark.asyncio
async def test_failed_cache_creation_can_be_retried(fast_settings):
    responses = [httpx.Response(500, json={}), httpx.Response(200, json={"name": "cachedContents/xyz"})]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client, http = _client(fast_settings, handler, HintRecorder())
    client.history = [ConversationTurn(role="user", text="q" * 8000)]

    await client.create_cache()
    assert client.cached_content_name is None

    await client.create_cache()
    assert client.cached_content_name == "cachedContents/xyz"

    await client.close()
    await http.aclose()


def test_system_instruction_follows_mode_and_style():
    from live_assist.hints.prompts import STYLE_INSTRUCTIONS, build_hint_system_instruction, build_user_turn_text

    design = build_hint_system_instruction("system_design", "bullets")
    assert "system design interview" in design
    assert STYLE_INSTRUCTIONS["bullets"] in design

    fallback = build_hint_system_instruction("unknown", "unknown")
    assert "coding/programming interview" in fallback
    assert STYLE_INSTRUCTIONS["structured"] in fallback

    assert build_user_turn_text("What is a heap") == (
        'Interviewer said:\n\n"What is a heap"\n\nProvide concise hints to help the candidate answer.'
    )


@pytest.mark.asyncio
async def test_runtime_model_and_key_changes_apply_to_next_request(fast_settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=_sse("ok"))

    client, http = _client(fast_settings, handler, HintRecorder())
    client.set_model("other-model")
    client.set_api_key("rotated-key")
    client.set_system_instruction("Answer in one word.")

    await client.generate_hint("question")

    assert seen[0].url.path.endswith("/models/other-model:streamGenerateContent")
    assert seen[0].headers["x-goog-api-key"] == "rotated-key"
    body = json.loads(seen[0].content)
    assert body["systemInstruction"]["parts"][0]["text"] == "Answer in one word."

    await client.close()
    await http.aclose()
