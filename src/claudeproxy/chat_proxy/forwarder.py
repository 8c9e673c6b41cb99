from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, AsyncGenerator, Callable, Dict, Optional, Union

from pydantic import ValidationError

from .config import ProxyConfig
from .decoder import StreamTranslator, cli_result_to_openai
from .encoder import EncodedInput, encode_request
from .errors import (
    BackendExitError,
    BridgeError,
    err_invalid_request,
    to_proxy_error,
)
from .events import AssistantMessage, ContentDelta, RawLine, ResultMessage
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator, MetricSample
from .model_aliases import PUBLIC_MODEL_NAMES
from .models import ChatCompletionRequest
from .sessions import SessionStore
from .subprocess_manager import CliSubprocess

logger = logging.getLogger(__name__)

ChatResult = Union[Dict[str, Any], AsyncGenerator[bytes, None]]
DONE_LINE = b"data: [DONE]\n\n"


def _sse(obj: dict) -> bytes:
    return f"data: {json.dumps(obj, ensure_ascii=False)}\n\n".encode()


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid request: {loc}: {first.get('msg')}" if loc else str(exc)


class _RequestStats:
    """Per-request timing and token counts fed to metrics and the JSONL log."""

    def __init__(self, request_id: str, encoded: EncodedInput, stream: bool):
        self.request_id = request_id
        self.encoded = encoded
        self.stream = stream
        self.started_at = time.time()
        self.first_output_at: Optional[float] = None
        self.tokens_out = 0
        self.model: Optional[str] = None
        self.outcome = "ok"

    def mark_output(self):
        if self.first_output_at is None:
            self.first_output_at = time.time()


class ChatForwarder:
    def __init__(
        self,
        cfg: ProxyConfig,
        metrics: MetricsAggregator,
        logger: JsonlLogger,
        sessions: SessionStore | None = None,
        process_factory: Callable[[ProxyConfig], CliSubprocess] | None = None,
    ):
        self.cfg = cfg
        self.metrics = metrics
        self.logger = logger
        self.sessions = sessions
        self.process_factory = process_factory or CliSubprocess.from_config

    def _parse(self, payload: Any) -> ChatCompletionRequest:
        if not isinstance(payload, dict):
            raise err_invalid_request("Request body must be a JSON object.")
        try:
            request = ChatCompletionRequest.model_validate(payload)
        except ValidationError as exc:
            raise err_invalid_request(_validation_message(exc)) from exc
        if not request.messages:
            raise err_invalid_request("'messages' must contain at least one message.")
        return request

    def _encode(self, request: ChatCompletionRequest) -> EncodedInput:
        encoded = encode_request(request)
        if self.sessions is not None and encoded.session_id:
            session_id = self.sessions.resolve(encoded.session_id)
            encoded = EncodedInput(
                mode=encoded.mode,
                prompt_text=encoded.prompt_text,
                model_alias=encoded.model_alias,
                system_prompt=encoded.system_prompt,
                structured_lines=encoded.structured_lines,
                session_id=session_id,
            )
        return encoded

    async def handle_chat(self, payload: Any) -> ChatResult:
        """Run one chat completion through a fresh CLI process.

        Returns the response body for non-streaming requests, or an async
        generator of SSE bytes. Failures before the first streamed byte are
        raised as :class:`ProxyError`.
        """

        request = self._parse(payload)
        encoded = self._encode(request)
        request_id = uuid.uuid4().hex[:24]
        stats = _RequestStats(request_id, encoded, request.stream)
        logger.info(
            "[forwarder] %s model=%s alias=%s mode=%s stream=%s",
            request_id,
            request.model,
            encoded.model_alias.value,
            encoded.mode.value,
            request.stream,
        )
        if self.cfg.log_prompts:
            logger.info("[forwarder] %s prompt: %s", request_id, encoded.prompt_text)

        proc = self.process_factory(self.cfg)
        try:
            await proc.start(encoded)
        except BridgeError as exc:
            stats.outcome = type(exc).__name__
            self.record(stats, request.model)
            raise to_proxy_error(exc) from exc

        if request.stream:
            return self._stream(proc, stats, request.model)
        try:
            return await self._collect(proc, stats)
        except BridgeError as exc:
            stats.outcome = type(exc).__name__
            raise to_proxy_error(exc) from exc
        finally:
            proc.kill()
            self.record(stats, request.model)

    async def _collect(self, proc: CliSubprocess, stats: _RequestStats) -> dict:
        result: Optional[ResultMessage] = None
        async for event in proc.events():
            stats.mark_output()
            if isinstance(event, ResultMessage):
                result = event
            elif isinstance(event, RawLine):
                logger.debug("[forwarder] %s raw line: %s", stats.request_id, event.text[:200])
        if result is None:
            raise BackendExitError(proc.returncode, proc.stderr_tail)
        if proc.returncode:
            logger.warning(
                "[forwarder] %s CLI exited with %s after a result",
                stats.request_id,
                proc.returncode,
            )
        stats.tokens_out = result.usage.output_tokens
        body = cli_result_to_openai(result, stats.request_id)
        stats.model = body["model"]
        return body

    async def _stream(
        self, proc: CliSubprocess, stats: _RequestStats, requested_model: Optional[str]
    ) -> AsyncGenerator[bytes, None]:
        translator = StreamTranslator(
            stats.request_id, PUBLIC_MODEL_NAMES[stats.encoded.model_alias]
        )
        events = proc.events()
        result: Optional[ResultMessage] = None
        try:
            try:
                async for event in events:
                    chunk = None
                    if isinstance(event, ContentDelta):
                        chunk = translator.on_delta(event)
                    elif isinstance(event, AssistantMessage):
                        chunk = translator.on_assistant(event)
                    elif isinstance(event, ResultMessage):
                        result = event
                        translator.on_result(event)
                    if chunk is not None:
                        stats.mark_output()
                        yield _sse(chunk)
                if result is None:
                    raise BackendExitError(proc.returncode, proc.stderr_tail)
            except BridgeError as exc:
                stats.outcome = type(exc).__name__
                logger.warning("[forwarder] %s stream failed: %s", stats.request_id, exc)
                yield _sse(to_proxy_error(exc).detail)
                yield DONE_LINE
                return
            if result.is_error:
                logger.warning(
                    "[forwarder] %s CLI reported an error result (subtype=%s)",
                    stats.request_id,
                    result.subtype,
                )
            stats.tokens_out = result.usage.output_tokens
            done = translator.finish()
            if done is not None:
                yield _sse(done)
            yield DONE_LINE
        except (GeneratorExit, asyncio.CancelledError):
            stats.outcome = "cancelled"
            logger.info("[forwarder] %s client went away; stopping CLI", stats.request_id)
            raise
        finally:
            # Runs on normal completion and when the client goes away mid-stream.
            await events.aclose()
            proc.kill()
            stats.model = translator.model
            self.record(stats, requested_model)

    def record(self, stats: _RequestStats, requested_model: Optional[str]):
        now = time.time()
        duration = now - stats.started_at
        first = stats.first_output_at or now
        tps = stats.tokens_out / duration if duration > 0 and stats.tokens_out else 0.0
        self.metrics.add(
            MetricSample(
                ts=now,
                model=stats.model or requested_model,
                mode=stats.encoded.mode.value,
                ttft_ms=(first - stats.started_at) * 1000,
                tokens_out=stats.tokens_out,
                duration_ms=duration * 1000,
                tokens_per_second=tps,
                stream=stats.stream,
                outcome=stats.outcome,
            )
        )
        record: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(now)),
            "request_id": stats.request_id,
            "model_requested": requested_model,
            "model": stats.model,
            "alias": stats.encoded.model_alias.value,
            "mode": stats.encoded.mode.value,
            "stream": stats.stream,
            "duration_ms": round(duration * 1000, 1),
            "tokens_out": stats.tokens_out,
            "outcome": stats.outcome,
        }
        if self.cfg.log_prompts:
            record["prompt"] = stats.encoded.prompt_text
        self.logger.log(record)
