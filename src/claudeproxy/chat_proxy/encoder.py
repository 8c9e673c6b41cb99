"""Translate OpenAI chat requests into Claude CLI invocations.

Two input modes exist. Text-only requests become a single prompt argument;
requests containing any image part are sent as one stream-json message on
stdin, because that is the only way the CLI accepts images.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from .model_aliases import ModelAlias, resolve_model
from .models import ChatCompletionRequest, ChatMessage
from .normalization import (
    ContentBlock,
    TextBlock,
    content_has_images,
    content_to_blocks,
    content_to_text,
)

logger = logging.getLogger(__name__)

SYSTEM_ROLES = frozenset({"system", "developer"})


class InputMode(str, Enum):
    TEXT_ARGUMENT = "text"
    STREAM_MESSAGES = "stream-json"


@dataclass(frozen=True)
class EncodedInput:
    mode: InputMode
    prompt_text: str
    model_alias: ModelAlias
    system_prompt: Optional[str] = None
    structured_lines: tuple[str, ...] = field(default_factory=tuple)
    session_id: Optional[str] = None

    @property
    def uses_stdin(self) -> bool:
        return self.mode is InputMode.STREAM_MESSAGES


def wrap_system(text: str) -> str:
    return f"<system>\n{text}\n</system>"


def wrap_previous_response(text: str) -> str:
    return f"<previous_response>\n{text}\n</previous_response>"


def request_has_images(messages: Sequence[ChatMessage]) -> bool:
    return any(content_has_images(msg.content) for msg in messages)


def extract_messages_content(
    messages: Sequence[ChatMessage],
) -> tuple[Optional[str], str]:
    """Split messages into ``(system_prompt, conversation_prompt)``."""

    system_parts: list[str] = []
    conversation_parts: list[str] = []
    for msg in messages:
        text = content_to_text(msg.content)
        if msg.role in SYSTEM_ROLES:
            system_parts.append(text)
        elif msg.role == "user":
            conversation_parts.append(text)
        elif msg.role == "assistant":
            conversation_parts.append(wrap_previous_response(text) + "\n")
        else:
            logger.debug("[encoder] Ignoring message with role %r", msg.role)

    system_prompt = "\n\n".join(system_parts).strip() if system_parts else None
    return system_prompt, "\n".join(conversation_parts).strip()


def messages_to_prompt(messages: Sequence[ChatMessage]) -> str:
    system_prompt, conversation = extract_messages_content(messages)
    if system_prompt:
        return f"{wrap_system(system_prompt)}\n\n{conversation}"
    return conversation


def messages_to_blocks(messages: Sequence[ChatMessage]) -> list[ContentBlock]:
    """Collapse every turn into the content of a single user message.

    stream-json input only accepts the user role, so system and assistant
    turns are inlined as tagged text blocks in conversation order.
    """

    blocks: list[ContentBlock] = []
    for msg in messages:
        if msg.role in SYSTEM_ROLES:
            blocks.append(TextBlock(wrap_system(content_to_text(msg.content))))
        elif msg.role == "assistant":
            blocks.append(
                TextBlock(wrap_previous_response(content_to_text(msg.content)))
            )
        elif msg.role == "user":
            blocks.extend(content_to_blocks(msg.content))
    if not blocks:
        blocks.append(TextBlock(""))
    return blocks


def messages_to_stream_json(messages: Sequence[ChatMessage]) -> list[str]:
    line = {
        "type": "user",
        "message": {
            "role": "user",
            "content": [block.to_dict() for block in messages_to_blocks(messages)],
        },
    }
    return [json.dumps(line, ensure_ascii=False)]


def encode_request(request: ChatCompletionRequest) -> EncodedInput:
    messages = request.messages
    system_prompt, _ = extract_messages_content(messages)
    mode = (
        InputMode.STREAM_MESSAGES
        if request_has_images(messages)
        else InputMode.TEXT_ARGUMENT
    )
    return EncodedInput(
        mode=mode,
        prompt_text=messages_to_prompt(messages),
        system_prompt=system_prompt,
        structured_lines=tuple(messages_to_stream_json(messages)),
        model_alias=resolve_model(request.model),
        session_id=request.user,
    )
