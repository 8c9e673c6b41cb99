from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Follow the user's instructions precisely. "
    "When asked to output JSON, output ONLY raw JSON without markdown code fences."
)


@dataclass
class ProxyConfig:
    host: str = "127.0.0.1"
    port: int = 3456
    enable_metrics: bool = False
    log_path: str = "logs/claude_proxy.jsonl"
    max_log_bytes: int = 25_000_000
    log_retention_days: int = 30
    log_prompts: bool = False
    cli_executable: str = "claude"
    cli_cwd: str = "/tmp"  # neutral dir so no project CLAUDE.md gets picked up
    cli_timeout_s: float = 300.0
    kill_grace_s: float = 5.0
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    session_ttl_s: int = 3600
    config_file_path: Optional[str] = None

    @classmethod
    def load(cls) -> "ProxyConfig":
        from .config_loader import load_proxy_config

        return load_proxy_config()
