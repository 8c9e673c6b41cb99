from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional


class ChatMessage(BaseModel):
    role: str
    content: Any = None  # str | list[dict]
    # Kept permissive; content shape is normalized by the encoder.

    model_config = ConfigDict(extra="allow")


class ChatCompletionRequest(BaseModel):
    model: Optional[str] = None  # unknown or missing names fall back to opus
    messages: List[ChatMessage]
    stream: Optional[bool] = False
    user: Optional[str] = None
    # Accepted for compatibility; the CLI exposes no sampling controls.
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None

    model_config = ConfigDict(extra="allow")


class ChoiceMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class ChatChoice(BaseModel):
    index: int = 0
    message: ChoiceMessage
    finish_reason: Optional[str] = "stop"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatChoice]
    usage: Usage = Field(default_factory=Usage)


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    owned_by: str = "anthropic"
    created: Optional[int] = None


class ModelList(BaseModel):
    object: str = "list"
    data: List[ModelCard]
