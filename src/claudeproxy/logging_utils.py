"""Process-wide logging for the proxy server and CLI."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

__all__ = ["configure_logging", "resolve_level"]

LOG_DIR_ENV = "CLAUDE_PROXY_LOG_DIR"
LOG_LEVEL_ENV = "CLAUDE_PROXY_LOG_LEVEL"
_HANDLER_TAG = "_claudeproxy_handler"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def resolve_level(level: Union[int, str, None] = None) -> int:
    """Accept ``logging.DEBUG``, ``"debug"`` or nothing (env, then INFO)."""

    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    log_name: str,
    *,
    level: Union[int, str, None] = None,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 3,
) -> Path:
    """Send root logging to ``<log_dir>/<log_name>.log`` and, optionally, stderr.

    ``log_dir`` falls back to ``$CLAUDE_PROXY_LOG_DIR`` and then ``./logs``.
    Handlers from an earlier call are closed and replaced, so the CLI can
    reconfigure without duplicating output.
    """

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or "logs").expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"{log_name}.log"
    numeric_level = resolve_level(level)

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_TAG, False)]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(numeric_level)

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if include_console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_path
