import json

from claudeproxy.chat_proxy.encoder import (
    InputMode,
    encode_request,
    extract_messages_content,
    messages_to_blocks,
    messages_to_prompt,
)
from claudeproxy.chat_proxy.model_aliases import ModelAlias
from claudeproxy.chat_proxy.models import ChatCompletionRequest, ChatMessage
from claudeproxy.chat_proxy.normalization import ImageBlock, TextBlock

PNG_URI = "data:image/png;base64,iVBORw0KGgo="


def _request(messages, **extra):
    return ChatCompletionRequest.model_validate(
        {"model": "claude-sonnet-4", "messages": messages, **extra}
    )


def test_text_only_request_uses_argument_mode():
    encoded = encode_request(_request([{"role": "user", "content": "ping"}]))
    assert encoded.mode is InputMode.TEXT_ARGUMENT
    assert not encoded.uses_stdin
    assert encoded.prompt_text == "ping"
    assert encoded.model_alias is ModelAlias.SONNET


def test_image_request_uses_stream_messages():
    encoded = encode_request(
        _request(
            [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "describe"},
                        {"type": "image_url", "image_url": {"url": PNG_URI}},
                    ],
                }
            ]
        )
    )
    assert encoded.mode is InputMode.STREAM_MESSAGES
    assert encoded.uses_stdin
    assert len(encoded.structured_lines) == 1
    line = json.loads(encoded.structured_lines[0])
    assert line["type"] == "user"
    assert line["message"]["role"] == "user"
    blocks = line["message"]["content"]
    assert [b["type"] for b in blocks] == ["text", "image"]
    assert blocks[0]["text"] == "describe"
    assert blocks[1]["source"]["media_type"] == "image/png"


def test_system_and_assistant_turns_are_wrapped():
    messages = [
        ChatMessage(role="system", content="Be terse."),
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="assistant", content="hello"),
        ChatMessage(role="user", content="again"),
    ]
    system, conversation = extract_messages_content(messages)
    assert system == "Be terse."
    assert conversation == "hi\n<previous_response>\nhello\n</previous_response>\n\nagain"
    assert messages_to_prompt(messages).startswith("<system>\nBe terse.\n</system>\n\n")


def test_blocks_collapse_roles_in_order():
    messages = [
        ChatMessage(role="developer", content="rules"),
        ChatMessage(role="assistant", content=[{"type": "text", "text": "earlier"}]),
        ChatMessage(
            role="user",
            content=[{"type": "image_url", "image_url": {"url": PNG_URI}}],
        ),
    ]
    blocks = messages_to_blocks(messages)
    assert blocks[0] == TextBlock("<system>\nrules\n</system>")
    assert blocks[1] == TextBlock("<previous_response>\nearlier\n</previous_response>")
    assert isinstance(blocks[2], ImageBlock)


def test_blocks_never_empty():
    messages = [
        ChatMessage(
            role="user",
            content=[{"type": "image_url", "image_url": {"url": "http://x/y.png"}}],
        )
    ]
    assert messages_to_blocks(messages) == [TextBlock("")]


def test_user_field_becomes_session_id():
    encoded = encode_request(
        _request([{"role": "user", "content": "hi"}], user="caller-42")
    )
    assert encoded.session_id == "caller-42"
