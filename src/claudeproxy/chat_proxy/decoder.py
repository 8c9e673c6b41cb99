"""Convert Claude CLI output events into OpenAI response shapes."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from .events import AssistantMessage, ContentDelta, ResultMessage
from .model_aliases import DEFAULT_MODEL_NAME, normalize_model_name
from .models import ChatChoice, ChatCompletionResponse, ChoiceMessage, Usage
from .normalization import join_text_blocks

logger = logging.getLogger(__name__)


def ensure_string(value: Any) -> str:
    """Coerce backend content to a plain string.

    Order: strings pass through, ``None`` becomes empty, content-block lists
    are joined by their text blocks, anything else is JSON encoded. A dict or
    list must never reach the caller's ``content`` field.
    """

    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, list):
        return join_text_blocks(value)
    if isinstance(value, dict):
        logger.warning("[decoder] Stringifying object content with keys %s", sorted(value)[:5])
        try:
            return json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def extract_text_content(message: AssistantMessage) -> str:
    return ensure_string(message.content)


def _completion_id(request_id: str) -> str:
    return f"chatcmpl-{request_id}"


def cli_result_to_openai(result: ResultMessage, request_id: str) -> dict:
    """Build the non-streaming ``chat.completion`` body from a result event."""

    model_name = next(iter(result.model_usage), None) or DEFAULT_MODEL_NAME
    if result.is_error:
        logger.warning(
            "[decoder] Result flagged as error (subtype=%s)", result.subtype
        )
    response = ChatCompletionResponse(
        id=_completion_id(request_id),
        created=int(time.time()),
        model=normalize_model_name(model_name),
        choices=[
            ChatChoice(
                index=0,
                message=ChoiceMessage(
                    role="assistant", content=ensure_string(result.result)
                ),
                finish_reason="stop",
            )
        ],
        usage=Usage(
            prompt_tokens=result.usage.input_tokens,
            completion_tokens=result.usage.output_tokens,
            total_tokens=result.usage.total_tokens,
        ),
    )
    return response.model_dump()


def _chunk(
    request_id: str,
    model: Optional[str],
    delta: dict,
    finish_reason: Optional[str],
) -> dict:
    return {
        "id": _completion_id(request_id),
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": normalize_model_name(model),
        "choices": [
            {"index": 0, "delta": delta, "finish_reason": finish_reason}
        ],
    }


def _delta(text: str, is_first: bool) -> dict:
    delta: dict[str, Any] = {}
    if is_first:
        delta["role"] = "assistant"
    delta["content"] = text
    return delta


def cli_to_openai_chunk(
    message: AssistantMessage,
    request_id: str,
    is_first: bool = False,
    text: Optional[str] = None,
) -> dict:
    """Chunk for an assistant message; ``text`` overrides the message text."""

    content = extract_text_content(message) if text is None else text
    return _chunk(
        request_id,
        message.model,
        _delta(content, is_first),
        "stop" if message.stop_reason else None,
    )


def delta_to_chunk(
    delta: ContentDelta,
    request_id: str,
    model: Optional[str],
    is_first: bool = False,
) -> dict:
    return _chunk(request_id, model, _delta(delta.text, is_first), None)


def create_done_chunk(request_id: str, model: Optional[str]) -> dict:
    return _chunk(request_id, model, {}, "stop")


class StreamTranslator:
    """Per-request state for turning events into ``chat.completion.chunk`` dicts.

    Partial deltas are forwarded as they arrive. The CLI sends one assistant
    message per content block, so each message only contributes the text its
    own block has not already streamed as deltas. :meth:`finish` emits the
    terminal stop chunk unless one was already sent.
    """

    def __init__(self, request_id: str, model: Optional[str] = None):
        self.request_id = request_id
        self.model = model
        self.block_text = ""
        self.is_first = True
        self.finished = False
        self.chunks_sent = 0

    def _emit(self, chunk: dict) -> dict:
        self.is_first = False
        self.chunks_sent += 1
        if chunk["choices"][0]["finish_reason"]:
            self.finished = True
        return chunk

    def on_delta(self, event: ContentDelta) -> Optional[dict]:
        if not event.text or self.finished:
            return None
        self.block_text += event.text
        return self._emit(
            delta_to_chunk(event, self.request_id, self.model, self.is_first)
        )

    def on_assistant(self, event: AssistantMessage) -> Optional[dict]:
        if event.model:
            self.model = event.model
        if self.finished:
            return None
        text = extract_text_content(event)
        if text.startswith(self.block_text):
            remainder = text[len(self.block_text) :]
        else:
            # Deltas for this block were lost or differ; send the block whole.
            remainder = text
        self.block_text = ""
        if not remainder and not event.stop_reason:
            return None
        return self._emit(
            cli_to_openai_chunk(event, self.request_id, self.is_first, remainder)
        )

    def on_result(self, event: ResultMessage) -> None:
        if not self.model and event.model_usage:
            self.model = next(iter(event.model_usage))

    def finish(self) -> Optional[dict]:
        if self.finished:
            return None
        return self._emit(create_done_chunk(self.request_id, self.model))
