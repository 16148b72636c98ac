from live_assist.buffers import (
    RESPONSE_SEPARATOR,
    ResponseHistory,
    TranscriptBuffer,
    count_alnum,
    unprocessed_delta,
)


def test_unprocessed_delta_returns_suffix_when_prefix_matches():
    assert unprocessed_delta("tell me about", "tell me about your biggest failure") == " your biggest failure"


def test_unprocessed_delta_returns_full_transcript_after_reset():
    assert unprocessed_delta("tell me about", "new question") == "new question"
    assert unprocessed_delta("", "first words") == "first words"


def test_count_alnum_ignores_punctuation_and_spaces():
    assert count_alnum(" ?! ") == 0
    assert count_alnum(" a,b ") == 2


def test_transcript_buffer_appends_raw_tokens_and_truncates_to_recent_half():
    buffer = TranscriptBuffer(max_chars=10)
    buffer.append("What")
    buffer.append(" is")
    assert buffer.text == "What is"

    buffer.append(" a tree")
    assert buffer.text == " tree"
    assert len(buffer) == 5

    buffer.clear()
    assert not buffer


def test_response_history_puts_newest_hint_first():
    history = ResponseHistory(max_chars=1000)
    assert history.compose("first") == "first"
    history.commit("first")

    composed = history.compose("second")
    assert composed == f"second{RESPONSE_SEPARATOR}first"
    history.commit(composed)
    assert history.text.startswith("second")


def test_response_history_keeps_leading_half_when_over_cap():
    history = ResponseHistory(max_chars=20)
    kept = history.commit("x" * 30)
    assert kept == "x" * 10
