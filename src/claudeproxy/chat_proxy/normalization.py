"""Content normalization for OpenAI-style message content.

OpenAI content is either a plain string or a list of parts such as
``{"type": "text", "text": ...}`` and ``{"type": "image_url", "image_url": {"url": ...}}``.
The CLI only understands text and base64 image blocks, so everything here
degrades instead of raising: unknown parts are skipped, non-data-URI images
are dropped with a warning, and odd shapes are stringified.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Union

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(image/[a-z0-9.+-]+);base64,(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class TextBlock:
    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImageBlock:
    media_type: str
    data: str

    def to_dict(self) -> dict:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }


ContentBlock = Union[TextBlock, ImageBlock]


def _coerce_str(val: Any) -> str:
    """Coerce None to empty string and non-strings to str."""
    if val is None:
        return ""
    return val if isinstance(val, str) else str(val)


def _part_type(part: Any) -> str | None:
    if isinstance(part, dict):
        return part.get("type")
    return None


def is_image_part(part: Any) -> bool:
    return _part_type(part) == "image_url"


def content_has_images(content: Any) -> bool:
    if not isinstance(content, list):
        return False
    return any(is_image_part(part) for part in content)


def content_to_text(content: Any) -> str:
    """Flatten message content to text, joining text parts with newlines."""

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            part["text"]
            for part in content
            if _part_type(part) == "text" and isinstance(part.get("text"), str)
        ]
        return "\n".join(texts)
    return _coerce_str(content)


def join_text_blocks(blocks: Iterable[Any]) -> str:
    """Concatenate the text of ``{"type": "text"}`` blocks with no separator.

    Used for single response texts (assistant messages, result payloads),
    where the backend already splits text at arbitrary points.
    """

    return "".join(
        block["text"]
        for block in blocks
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def image_url_to_block(part: dict) -> ImageBlock | None:
    image_url = part.get("image_url")
    if isinstance(image_url, dict):
        url = image_url.get("url") or ""
    else:
        url = _coerce_str(image_url)
    match = _DATA_URI_RE.match(url)
    if not match:
        # Remote URLs cannot be handed to the CLI.
        logger.warning("[normalization] Skipping non-data-URI image: %s", url[:60])
        return None
    return ImageBlock(media_type=match.group(1), data=match.group(2))


def content_to_blocks(content: Any) -> list[ContentBlock]:
    """Convert message content to CLI content blocks, preserving part order."""

    if isinstance(content, str):
        return [TextBlock(content)]
    if not isinstance(content, list):
        text = _coerce_str(content)
        return [TextBlock(text)] if text else []

    blocks: list[ContentBlock] = []
    for part in content:
        ptype = _part_type(part)
        if ptype == "text":
            blocks.append(TextBlock(_coerce_str(part.get("text"))))
        elif ptype == "image_url":
            image = image_url_to_block(part)
            if image is not None:
                blocks.append(image)
        else:
            logger.debug("[normalization] Ignoring content part of type %r", ptype)
    return blocks
