"""Typer CLI for running and inspecting the Claude proxy."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from typing import List, Optional

import typer

from .chat_proxy.config import ProxyConfig
from .chat_proxy.config_loader import list_env_overrides, update_config_file
from .chat_proxy.model_aliases import MODEL_MAP, public_model_ids
from .chat_proxy.subprocess_manager import verify_cli
from .logging_utils import configure_logging, resolve_level

app = typer.Typer(help="OpenAI-compatible proxy for the Claude CLI")


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override bind host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override bind port"),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: $CLAUDE_PROXY_LOG_LEVEL or info)"
    ),
):
    """Start the HTTP server."""
    import uvicorn

    level = resolve_level(log_level)
    log_path = configure_logging("claude_proxy", level=level)
    cfg = ProxyConfig.load()
    bind_host = host or cfg.host
    bind_port = port or cfg.port
    typer.echo(f"Serving on http://{bind_host}:{bind_port} (log: {log_path})")
    uvicorn.run(
        "claudeproxy.chat_proxy.app:app",
        host=bind_host,
        port=bind_port,
        log_level=logging.getLevelName(level).lower(),
    )


@app.command("check")
def cmd_check(
    executable: Optional[str] = typer.Option(
        None, "--executable", help="CLI executable to check (defaults to config)"
    ),
):
    """Verify the Claude CLI is installed and answers ``--version``."""
    target = executable or ProxyConfig.load().cli_executable
    status = asyncio.run(verify_cli(target))
    if not status["ok"]:
        typer.echo(status["error"])
        raise typer.Exit(1)
    typer.echo(f"{target}: {status['version']}")


@app.command("models")
def cmd_models(
    aliases: bool = typer.Option(
        False, "--aliases", help="Show every accepted model name and its CLI alias"
    ),
):
    if aliases:
        typer.echo(
            json.dumps({name: alias.value for name, alias in MODEL_MAP.items()}, indent=2)
        )
        return
    for model_id in public_model_ids():
        typer.echo(model_id)


@app.command("config")
def cmd_config(
    set_values: List[str] = typer.Option(
        [], "--set", help="Persist KEY=VALUE to the config file (repeatable)"
    ),
):
    """Print the effective configuration, optionally updating the file first."""
    if set_values:
        updates = {}
        for item in set_values:
            key, sep, value = item.partition("=")
            if not sep or not key.strip():
                typer.echo(f"Expected KEY=VALUE, got {item!r}")
                raise typer.Exit(2)
            updates[key.strip()] = value
        try:
            cfg = update_config_file(updates)
        except KeyError as exc:
            typer.echo(str(exc))
            raise typer.Exit(1)
    else:
        cfg = ProxyConfig.load()
    typer.echo(
        json.dumps(
            {"config": asdict(cfg), "env_overrides": list_env_overrides()}, indent=2
        )
    )


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
