"""Model name mapping between OpenAI-style identifiers and CLI aliases."""

from __future__ import annotations

from enum import Enum


class ModelAlias(str, Enum):
    OPUS = "opus"
    SONNET = "sonnet"
    HAIKU = "haiku"


# Primary alias used when nothing in the table matches.
DEFAULT_ALIAS = ModelAlias.OPUS
DEFAULT_MODEL_NAME = "claude-sonnet-4"

PROVIDER_PREFIXES: tuple[str, ...] = ("claude-code-cli/", "claude-max/")

# Append-only: new identifiers and prefixes are added, never removed.
MODEL_MAP: dict[str, ModelAlias] = {
    "claude-opus-4": ModelAlias.OPUS,
    "claude-opus-4-6": ModelAlias.OPUS,
    "claude-sonnet-4": ModelAlias.SONNET,
    "claude-sonnet-4-5": ModelAlias.SONNET,
    "claude-haiku-4": ModelAlias.HAIKU,
    "claude-code-cli/claude-opus-4": ModelAlias.OPUS,
    "claude-code-cli/claude-opus-4-6": ModelAlias.OPUS,
    "claude-code-cli/claude-sonnet-4": ModelAlias.SONNET,
    "claude-code-cli/claude-sonnet-4-5": ModelAlias.SONNET,
    "claude-code-cli/claude-haiku-4": ModelAlias.HAIKU,
    "claude-max/claude-opus-4": ModelAlias.OPUS,
    "claude-max/claude-opus-4-6": ModelAlias.OPUS,
    "claude-max/claude-sonnet-4": ModelAlias.SONNET,
    "claude-max/claude-sonnet-4-5": ModelAlias.SONNET,
    "claude-max/claude-haiku-4": ModelAlias.HAIKU,
    "opus": ModelAlias.OPUS,
    "sonnet": ModelAlias.SONNET,
    "haiku": ModelAlias.HAIKU,
    "opus-max": ModelAlias.OPUS,
    "sonnet-max": ModelAlias.SONNET,
}

PUBLIC_MODEL_NAMES: dict[ModelAlias, str] = {
    ModelAlias.OPUS: "claude-opus-4",
    ModelAlias.SONNET: "claude-sonnet-4",
    ModelAlias.HAIKU: "claude-haiku-4",
}


def _strip_provider_prefix(model: str) -> str:
    for prefix in PROVIDER_PREFIXES:
        if model.startswith(prefix):
            return model[len(prefix) :]
    return model


def resolve_model(model: str | None) -> ModelAlias:
    """Map a requested model name to a CLI alias; never fails."""

    if not model:
        return DEFAULT_ALIAS
    alias = MODEL_MAP.get(model)
    if alias is not None:
        return alias
    alias = MODEL_MAP.get(_strip_provider_prefix(model))
    if alias is not None:
        return alias
    return DEFAULT_ALIAS


def normalize_model_name(model: str | None) -> str:
    """Collapse a backend model id (e.g. ``claude-sonnet-4-5-20250929``) to its public name.

    ``None`` shows up when the request was rate limited before any usage was
    reported; unknown families pass through unchanged.
    """

    if not model:
        return DEFAULT_MODEL_NAME
    if "opus" in model:
        return PUBLIC_MODEL_NAMES[ModelAlias.OPUS]
    if "sonnet" in model:
        return PUBLIC_MODEL_NAMES[ModelAlias.SONNET]
    if "haiku" in model:
        return PUBLIC_MODEL_NAMES[ModelAlias.HAIKU]
    return model


def public_model_ids() -> list[str]:
    return list(PUBLIC_MODEL_NAMES.values())
