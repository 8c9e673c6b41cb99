from claudeproxy.chat_proxy.normalization import (
    ImageBlock,
    TextBlock,
    content_has_images,
    content_to_blocks,
    content_to_text,
    join_text_blocks,
)

PNG_URI = "data:image/png;base64,iVBORw0KGgo="


def test_content_to_text_joins_parts_with_newlines():
    content = [
        {"type": "text", "text": "first"},
        {"type": "image_url", "image_url": {"url": PNG_URI}},
        {"type": "text", "text": "second"},
    ]
    assert content_to_text(content) == "first\nsecond"


def test_join_text_blocks_uses_no_separator():
    blocks = [
        {"type": "text", "text": "Hel"},
        {"type": "tool_use", "name": "x"},
        {"type": "text", "text": "lo"},
    ]
    assert join_text_blocks(blocks) == "Hello"


def test_unexpected_shapes_degrade_without_raising():
    assert content_to_text(None) == ""
    assert content_to_text(42) == "42"
    assert content_to_blocks(None) == []
    assert content_to_blocks({"weird": True}) == [TextBlock("{'weird': True}")]


def test_blocks_keep_part_order():
    content = [
        {"type": "image_url", "image_url": {"url": PNG_URI}},
        {"type": "text", "text": "what is this?"},
    ]
    blocks = content_to_blocks(content)
    assert blocks == [
        ImageBlock(media_type="image/png", data="iVBORw0KGgo="),
        TextBlock("what is this?"),
    ]


def test_remote_image_is_dropped(caplog):
    content = [
        {"type": "text", "text": "look"},
        {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
    ]
    with caplog.at_level("WARNING"):
        blocks = content_to_blocks(content)
    assert blocks == [TextBlock("look")]
    assert "non-data-URI" in caplog.text
    # Still counts as an image request for mode selection.
    assert content_has_images(content)


def test_image_block_wire_shape():
    block = ImageBlock(media_type="image/jpeg", data="abc")
    assert block.to_dict() == {
        "type": "image",
        "source": {"type": "base64", "media_type": "image/jpeg", "data": "abc"},
    }
