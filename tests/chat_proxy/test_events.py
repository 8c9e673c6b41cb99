import json

from claudeproxy.chat_proxy.events import (
    AssistantMessage,
    ContentDelta,
    LineDecoder,
    RawLine,
    ResultMessage,
    classify_line,
)

DELTA = json.dumps(
    {
        "type": "stream_event",
        "event": {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "héllo"},
        },
    }
)
ASSISTANT = json.dumps(
    {
        "type": "assistant",
        "message": {
            "role": "assistant",
            "model": "claude-opus-4-6",
            "content": [{"type": "text", "text": "héllo"}],
            "stop_reason": "end_turn",
        },
    }
)
RESULT = json.dumps(
    {
        "type": "result",
        "subtype": "success",
        "result": "héllo",
        "usage": {"input_tokens": 3, "output_tokens": 5},
        "modelUsage": {"claude-opus-4-6": {}},
        "session_id": "abc",
    }
)
STREAM = ("\n".join([DELTA, "garbage line", ASSISTANT, RESULT]) + "\n").encode("utf-8")


def test_classify_known_events():
    assert classify_line(DELTA) == ContentDelta(text="héllo", index=0)
    assistant = classify_line(ASSISTANT)
    assert isinstance(assistant, AssistantMessage)
    assert assistant.stop_reason == "end_turn"
    result = classify_line(RESULT)
    assert isinstance(result, ResultMessage)
    assert result.usage.total_tokens == 8
    assert list(result.model_usage) == ["claude-opus-4-6"]


def test_malformed_and_unknown_lines_become_raw():
    assert classify_line("not json") == RawLine(text="not json")
    raw = classify_line('{"type": "system", "subtype": "init"}')
    assert isinstance(raw, RawLine)
    assert raw.payload == {"type": "system", "subtype": "init"}
    assert classify_line("   ") is None


def _decode_in_pieces(size):
    decoder = LineDecoder()
    events = []
    for start in range(0, len(STREAM), size):
        events.extend(decoder.feed(STREAM[start : start + size]))
    events.extend(decoder.flush())
    return events


def test_events_independent_of_chunk_boundaries():
    whole = _decode_in_pieces(len(STREAM))
    assert [type(e).__name__ for e in whole] == [
        "ContentDelta",
        "RawLine",
        "AssistantMessage",
        "ResultMessage",
    ]
    # Sizes of 1 and 3 split the two-byte "é" across reads.
    for size in (1, 2, 3, 7, 64):
        assert _decode_in_pieces(size) == whole


def test_partial_line_held_until_flush():
    decoder = LineDecoder()
    assert decoder.feed(RESULT[:20]) == []
    assert decoder.pending == RESULT[:20]
    assert decoder.feed(RESULT[20:]) == []
    events = decoder.flush()
    assert len(events) == 1 and isinstance(events[0], ResultMessage)
    assert decoder.pending == ""
