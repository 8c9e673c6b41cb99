import json
import os

import pytest
from typer.testing import CliRunner

from claudeproxy.chat_proxy import config_loader
from claudeproxy.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    for key in list(os.environ.keys()):
        if key.startswith("CLAUDE_PROXY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(tmp_path / "proxy.toml"))


def test_check_reports_version(fake_cli):
    result = runner.invoke(app, ["check", "--executable", fake_cli])
    assert result.exit_code == 0, result.output
    assert "1.0.0 (Claude Code)" in result.output


def test_check_missing_cli_prints_install_hint():
    result = runner.invoke(app, ["check", "--executable", "definitely-not-a-real-claude-binary"])
    assert result.exit_code == 1
    assert "npm install -g @anthropic-ai/claude-code" in result.output


def test_models_lists_public_ids():
    result = runner.invoke(app, ["models"])
    assert result.exit_code == 0
    assert result.output.split() == ["claude-opus-4", "claude-sonnet-4", "claude-haiku-4"]

    aliases = json.loads(runner.invoke(app, ["models", "--aliases"]).output)
    assert aliases["claude-code-cli/claude-sonnet-4-5"] == "sonnet"


def test_config_set_and_show():
    result = runner.invoke(app, ["config", "--set", "port=9999", "--set", "log_prompts=true"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["config"]["port"] == 9999
    assert payload["config"]["log_prompts"] is True

    shown = json.loads(runner.invoke(app, ["config"]).output)
    assert shown["config"]["port"] == 9999


def test_config_set_rejects_bad_input():
    assert runner.invoke(app, ["config", "--set", "port"]).exit_code == 2
    assert runner.invoke(app, ["config", "--set", "nope=1"]).exit_code == 1
