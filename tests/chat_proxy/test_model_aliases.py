import pytest

from claudeproxy.chat_proxy.model_aliases import (
    ModelAlias,
    normalize_model_name,
    public_model_ids,
    resolve_model,
)


@pytest.mark.parametrize(
    "requested, expected",
    [
        ("claude-opus-4", ModelAlias.OPUS),
        ("claude-sonnet-4-5", ModelAlias.SONNET),
        ("claude-haiku-4", ModelAlias.HAIKU),
        ("claude-code-cli/claude-sonnet-4", ModelAlias.SONNET),
        ("claude-max/claude-haiku-4", ModelAlias.HAIKU),
        ("sonnet", ModelAlias.SONNET),
        ("sonnet-max", ModelAlias.SONNET),
    ],
)
def test_resolve_known_models(requested, expected):
    assert resolve_model(requested) is expected


def test_unknown_model_falls_back_to_opus():
    assert resolve_model("gpt-4o") is ModelAlias.OPUS
    assert resolve_model("claude-code-cli/unknown") is ModelAlias.OPUS
    assert resolve_model(None) is ModelAlias.OPUS
    assert resolve_model("") is ModelAlias.OPUS


def test_normalize_model_name():
    assert normalize_model_name("claude-sonnet-4-5-20250929") == "claude-sonnet-4"
    assert normalize_model_name("claude-opus-4-6") == "claude-opus-4"
    assert normalize_model_name("claude-3-5-haiku-latest") == "claude-haiku-4"
    assert normalize_model_name("mystery-model") == "mystery-model"
    assert normalize_model_name(None) == "claude-sonnet-4"


def test_public_model_ids():
    assert public_model_ids() == ["claude-opus-4", "claude-sonnet-4", "claude-haiku-4"]
