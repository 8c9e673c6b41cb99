"""Typed events for the CLI's ``--output-format stream-json`` protocol.

Every stdout line is a JSON object tagged by ``type``. Only three kinds matter
to the proxy: partial text deltas (``stream_event`` wrapping a
``content_block_delta``), full ``assistant`` messages and the terminal
``result``. Anything else, including lines that are not JSON, becomes a
:class:`RawLine` so ordering and line counts are preserved.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenUsage":
        if not isinstance(payload, dict):
            return cls()
        return cls(
            input_tokens=_as_int(payload.get("input_tokens")),
            output_tokens=_as_int(payload.get("output_tokens")),
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ContentDelta:
    text: str
    index: Optional[int] = None


@dataclass(frozen=True)
class AssistantMessage:
    role: str
    content: Any
    stop_reason: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class ResultMessage:
    result: Any
    usage: TokenUsage = field(default_factory=TokenUsage)
    model_usage: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False
    subtype: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class RawLine:
    text: str
    payload: Any = None  # decoded JSON when the line parsed but was not recognised


ProcessEvent = Union[ContentDelta, AssistantMessage, ResultMessage, RawLine]


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def _classify_stream_event(payload: dict, line: str) -> ProcessEvent:
    event = payload.get("event")
    if isinstance(event, dict) and event.get("type") == "content_block_delta":
        delta = event.get("delta") or {}
        text = delta.get("text") if isinstance(delta, dict) else None
        index = event.get("index")
        return ContentDelta(
            text=text if isinstance(text, str) else "",
            index=index if isinstance(index, int) else None,
        )
    return RawLine(text=line, payload=payload)


def _classify_assistant(payload: dict, line: str) -> ProcessEvent:
    message = payload.get("message")
    if not isinstance(message, dict):
        return RawLine(text=line, payload=payload)
    return AssistantMessage(
        role=message.get("role") or "assistant",
        content=message.get("content"),
        stop_reason=message.get("stop_reason"),
        model=message.get("model"),
    )


def _classify_result(payload: dict) -> ResultMessage:
    model_usage = payload.get("modelUsage")
    return ResultMessage(
        result=payload.get("result"),
        usage=TokenUsage.from_payload(payload.get("usage")),
        model_usage=dict(model_usage) if isinstance(model_usage, dict) else {},
        is_error=bool(payload.get("is_error")),
        subtype=payload.get("subtype"),
        session_id=payload.get("session_id"),
    )


def classify_line(line: str) -> ProcessEvent | None:
    """Classify one output line; blank lines produce no event."""

    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        payload = json.loads(trimmed)
    except json.JSONDecodeError:
        logger.debug("[events] Non-JSON output line: %s", trimmed[:200])
        return RawLine(text=trimmed)
    if not isinstance(payload, dict):
        return RawLine(text=trimmed, payload=payload)

    kind = payload.get("type")
    if kind == "stream_event":
        return _classify_stream_event(payload, trimmed)
    if kind == "assistant":
        return _classify_assistant(payload, trimmed)
    if kind == "result":
        return _classify_result(payload)
    return RawLine(text=trimmed, payload=payload)


class LineDecoder:
    """Incremental splitter turning stdout bytes into events.

    Bytes are decoded with an incremental UTF-8 decoder so a multi-byte
    character split across reads is reassembled; the trailing fragment after
    the last newline is held until more data or :meth:`flush`.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, data: bytes | str) -> list[ProcessEvent]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._classify_all(lines)

    def flush(self) -> list[ProcessEvent]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._classify_all([tail])

    @staticmethod
    def _classify_all(lines: list[str]) -> list[ProcessEvent]:
        events: list[ProcessEvent] = []
        for line in lines:
            event = classify_line(line)
            if event is not None:
                events.append(event)
        return events
