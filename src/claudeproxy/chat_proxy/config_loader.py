from __future__ import annotations

import os
import tempfile
import tomllib
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable

from .config import ProxyConfig

CONFIG_FILE_ENV = "CLAUDE_PROXY_CONFIG_FILE"
ENV_PREFIX = "CLAUDE_PROXY_"
DEFAULT_CONFIG_PATH = Path("configs/claude_proxy.toml")

_SECTION_MAP: dict[str, list[str]] = {
    "server": [
        "host",
        "port",
        "enable_metrics",
        "log_path",
        "max_log_bytes",
        "log_retention_days",
        "log_prompts",
    ],
    "backend": [
        "cli_executable",
        "cli_cwd",
        "cli_timeout_s",
        "kill_grace_s",
        "system_prompt",
    ],
    "sessions": ["session_ttl_s"],
}


def _field_types() -> dict[str, Any]:
    # `from __future__ import annotations` leaves dataclass field types as strings.
    return {f.name: f.type for f in fields(ProxyConfig)}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _coerce_float(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value).strip())


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_optional_str(value: Any) -> str | None:
    if value in ("", None):
        return None
    return str(value)


_CASTERS: dict[str, Callable[[Any], Any]] = {
    "bool": _coerce_bool,
    "int": _coerce_int,
    "float": _coerce_float,
    "str": _coerce_str,
    "Optional[str]": _coerce_optional_str,
    "str | None": _coerce_optional_str,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    key = field_type if isinstance(field_type, str) else getattr(field_type, "__name__", "")
    caster = _CASTERS.get(key)
    if caster is None:
        return value
    return caster(value)


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _env_name(field_name: str) -> str:
    return f"{ENV_PREFIX}{field_name.upper()}"


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``CLAUDE_PROXY_<FIELD>`` variables; unparsable values are ignored."""

    field_types = _field_types()
    for key in list(config):
        raw = os.environ.get(_env_name(key))
        if raw is None:
            continue
        try:
            config[key] = _coerce_value(field_types.get(key), raw)
        except ValueError:
            continue
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(ProxyConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types.get(key), value)
        except (TypeError, ValueError):
            normalized[key] = default_value
    return normalized


def _config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _ensure_config_file(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    write_config(ProxyConfig(), path)


def load_file_config() -> dict[str, Any]:
    path = _config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))
    return _normalize(base)


def load_proxy_config() -> ProxyConfig:
    path = _config_path()
    _ensure_config_file(path)
    normalized = _normalize(_read_config_file(path))
    normalized = _apply_env_overrides(normalized)
    cfg = ProxyConfig(**normalized)
    cfg.config_file_path = str(path)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = (
        str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    )
    return f'"{escaped}"'


def _ordered_sections(config: ProxyConfig) -> dict[str, dict[str, Any]]:
    config_dict = asdict(config)
    config_dict.pop("config_file_path", None)
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {key: config_dict[key] for key in keys if key in config_dict}
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: ProxyConfig, path: Path | None = None) -> None:
    path = Path(path or _config_path()).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        "# Claude proxy configuration.",
        "# Generated automatically. Edit values as needed.",
    ]
    for section, values in _ordered_sections(config).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {_format_value(value)}")

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="claude_proxy_config_", suffix=".toml", dir=path.parent
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def update_config_file(updates: dict[str, Any]) -> ProxyConfig:
    path = _config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))

    unknown = [key for key in updates if key not in base]
    if unknown:
        raise KeyError(f"Unknown configuration field(s): {', '.join(sorted(unknown))}")

    base.update(updates)
    file_config = ProxyConfig(**_normalize(base))
    file_config.config_file_path = str(path)
    write_config(file_config, path)
    return load_proxy_config()


def list_env_overrides() -> dict[str, str]:
    return {
        key: value
        for key, value in os.environ.items()
        if key.startswith(ENV_PREFIX) and key != CONFIG_FILE_ENV
    }
