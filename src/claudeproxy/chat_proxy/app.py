from __future__ import annotations

import inspect
import logging
import shutil
from dataclasses import asdict
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .config import ProxyConfig
from .config_loader import (
    list_env_overrides,
    load_file_config,
    update_config_file,
)
from .errors import ProxyError, err_invalid_request
from .forwarder import ChatForwarder
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator
from .model_aliases import public_model_ids
from .models import ModelCard, ModelList
from .sessions import SessionStore
from .subprocess_manager import verify_cli

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIG_PRECEDENCE = ["environment", "config_file", "defaults"]

_cfg = ProxyConfig.load()
_metrics = MetricsAggregator()
_logger = JsonlLogger(_cfg.log_path, _cfg.max_log_bytes, _cfg.log_retention_days)
_sessions = SessionStore(ttl_s=_cfg.session_ttl_s)
_forwarder = ChatForwarder(_cfg, _metrics, _logger, _sessions)

app = FastAPI(title="Claude CLI Chat Proxy", version="0.1")


def _runtime_config_snapshot() -> tuple[dict[str, Any], dict[str, Any], str | None]:
    runtime = asdict(_cfg)
    config_path = runtime.pop("config_file_path", None)
    return runtime, load_file_config(), config_path


@app.on_event("startup")
async def _startup():  # pragma: no cover
    status = await verify_cli(_cfg.cli_executable)
    if status["ok"]:
        logger.info("[app] Claude CLI available: %s", status["version"])
    else:
        logger.warning("[app] %s", status["error"])
    pruned = _logger.prune()
    if pruned:
        logger.info("[app] Pruned %d expired request logs", pruned)
    if _cfg.host not in {"127.0.0.1", "localhost", "::1"}:
        logger.warning(
            "[app] Listening on %s without authentication; the CLI runs with your account.",
            _cfg.host,
        )


@app.get("/v1/models")
async def list_models_api():
    cards = [ModelCard(id=model_id) for model_id in public_model_ids()]
    return ModelList(data=cards).model_dump(exclude_none=True)


@app.post("/v1/chat/completions")
async def chat_completions(req: Request):
    try:
        payload = await req.json()
    except ValueError:
        exc = err_invalid_request("Request body is not valid JSON.")
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    _sessions.cleanup()
    try:
        result = await _forwarder.handle_chat(payload)
    except ProxyError as exc:  # structured
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    if inspect.isasyncgen(result):
        return StreamingResponse(
            result,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
    return JSONResponse(content=result)


@app.get("/v1/metrics")
async def metrics_api():
    if not _cfg.enable_metrics:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "type": "disabled",
                    "code": 404,
                    "message": "Metrics disabled",
                }
            },
        )
    summary = _metrics.summary()
    summary["active_sessions"] = len(_sessions)
    return summary


@app.get("/v1/config/claude-proxy")
async def read_proxy_config():
    runtime_dict, file_dict, config_path = _runtime_config_snapshot()
    return JSONResponse(
        content={
            "runtime": runtime_dict,
            "file": file_dict,
            "config_file_path": config_path,
            "env_overrides": list_env_overrides(),
            "precedence": CONFIG_PRECEDENCE,
        }
    )


@app.put("/v1/config/claude-proxy")
async def update_proxy_config(payload: dict[str, Any] = Body(...)):
    if not payload:
        raise HTTPException(
            status_code=400, detail="Request body must be a non-empty object."
        )
    try:
        updated = update_config_file(payload)
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (OSError, ValueError) as exc:
        logger.exception("[app] Failed to update proxy config.")
        raise HTTPException(
            status_code=500, detail="Failed to update configuration."
        ) from exc

    runtime_dict = asdict(updated)
    config_path = runtime_dict.pop("config_file_path", None)
    return JSONResponse(
        content={
            "status": "written",
            "runtime": runtime_dict,
            "file": load_file_config(),
            "config_file_path": config_path,
            "env_overrides": list_env_overrides(),
            "precedence": CONFIG_PRECEDENCE,
            "requires_restart": True,
            "message": "Config file updated. Restart the proxy to apply changes.",
        }
    )


@app.get("/v1/health")
async def health():
    installed = shutil.which(_cfg.cli_executable) is not None
    return {
        "status": "ok" if installed else "degraded",
        "backend": {"executable": _cfg.cli_executable, "installed": installed},
        "uptime_seconds": _metrics.summary().get("uptime_seconds"),
    }


def main():  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host=_cfg.host, port=_cfg.port)


if __name__ == "__main__":  # pragma: no cover
    main()
