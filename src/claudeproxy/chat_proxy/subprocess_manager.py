"""Claude CLI subprocess lifecycle: spawn, feed, parse, time out, tear down.

One :class:`CliSubprocess` belongs to exactly one request. The process is
always started from an argument vector via ``create_subprocess_exec``; no
argument ever passes through a shell.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from .config import DEFAULT_SYSTEM_PROMPT, ProxyConfig
from .encoder import EncodedInput
from .errors import (
    CLI_INSTALL_HINT,
    BackendNotFoundError,
    BackendTimeoutError,
    SpawnError,
)
from .events import LineDecoder, ProcessEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 300.0
_READ_CHUNK = 64 * 1024
_STDERR_TAIL_LINES = 20


class ProcessState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass
class ProcessHandle:
    pid: int
    started_at: float
    timeout_deadline: float
    killed: bool = False


def build_cli_args(
    encoded: EncodedInput, system_prompt: str = DEFAULT_SYSTEM_PROMPT
) -> list[str]:
    args = [
        "--print",
        "--output-format",
        "stream-json",
        "--verbose",  # stream-json output requires it
        "--include-partial-messages",
        "--model",
        encoded.model_alias.value,
        "--no-session-persistence",
        "--tools",
        "",  # no tools: behave as a plain chat model
        "--disable-slash-commands",
        "--setting-sources",
        "",
        "--system-prompt",
        system_prompt,
    ]
    if encoded.session_id:
        args += ["--session-id", encoded.session_id]
    if encoded.uses_stdin:
        args += ["--input-format", "stream-json"]
    elif encoded.prompt_text:
        # Caller text must never be read as an option.
        args += ["--", encoded.prompt_text]
    return args


class CliSubprocess:
    """Drive a single Claude CLI run and expose its output as events."""

    def __init__(
        self,
        executable: str = "claude",
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        cwd: Optional[str] = "/tmp",
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        kill_grace_s: float = 5.0,
        env: Optional[dict[str, str]] = None,
    ):
        self.executable = executable
        self.timeout_s = timeout_s
        self.cwd = cwd
        self.system_prompt = system_prompt
        self.kill_grace_s = kill_grace_s
        self.env = env
        self.state = ProcessState.IDLE
        self.handle: Optional[ProcessHandle] = None
        self.returncode: Optional[int] = None
        self.timed_out = False
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._escalation: Optional[asyncio.TimerHandle] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)

    @classmethod
    def from_config(
        cls, cfg: ProxyConfig, timeout_s: Optional[float] = None
    ) -> "CliSubprocess":
        return cls(
            cfg.cli_executable,
            timeout_s=timeout_s or cfg.cli_timeout_s,
            cwd=cfg.cli_cwd,
            system_prompt=cfg.system_prompt,
            kill_grace_s=cfg.kill_grace_s,
        )

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    def build_args(self, encoded: EncodedInput) -> list[str]:
        return build_cli_args(encoded, self.system_prompt)

    def _resolve_cwd(self) -> Optional[str]:
        if self.cwd and os.path.isdir(self.cwd):
            return self.cwd
        return None

    def _process_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.env:
            env.update({k: str(v) for k, v in self.env.items() if v is not None})
        return env

    async def start(self, encoded: EncodedInput) -> ProcessHandle:
        if self.state is not ProcessState.IDLE:
            raise RuntimeError(f"subprocess already {self.state.value}")
        self.state = ProcessState.SPAWNING
        if shutil.which(self.executable) is None:
            self.state = ProcessState.ERRORED
            raise BackendNotFoundError(self.executable)

        args = self.build_args(encoded)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._resolve_cwd(),
                env=self._process_env(),
            )
        except FileNotFoundError as exc:
            self.state = ProcessState.ERRORED
            raise BackendNotFoundError(self.executable) from exc
        except OSError as exc:
            self.state = ProcessState.ERRORED
            raise SpawnError(str(exc)) from exc

        started_at = time.time()
        self.handle = ProcessHandle(
            pid=self._proc.pid,
            started_at=started_at,
            timeout_deadline=started_at + self.timeout_s,
        )
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.timeout_s, self._on_timeout)
        self.state = ProcessState.RUNNING
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        logger.info(
            "[subprocess] Spawned pid=%s (mode: %s, model: %s)",
            self._proc.pid,
            encoded.mode.value,
            encoded.model_alias.value,
        )
        await self._deliver_input(encoded)
        return self.handle

    async def _deliver_input(self, encoded: EncodedInput) -> None:
        stdin = self._proc.stdin
        if stdin is None:
            return
        try:
            if encoded.uses_stdin:
                for line in encoded.structured_lines:
                    stdin.write(line.encode("utf-8") + b"\n")
                await stdin.drain()
            stdin.close()
        except (BrokenPipeError, ConnectionResetError) as exc:
            # An early exit is reported through the exit code.
            logger.warning("[subprocess] Failed writing stdin: %s", exc)

    async def _drain_stderr(self) -> None:
        stream = self._proc.stderr
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                self._stderr_tail.append(text[:200])
                logger.debug("[subprocess stderr] %s", text[:200])

    async def events(self) -> AsyncIterator[ProcessEvent]:
        """Yield events in emission order until the process closes.

        Raises :class:`BackendTimeoutError` after the remaining output has
        been flushed when the deadline fired. Closing the iterator early
        kills the process.
        """

        if self._proc is None or self._proc.stdout is None:
            raise RuntimeError("subprocess not started")
        decoder = LineDecoder()
        stdout = self._proc.stdout
        try:
            while True:
                chunk = await stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                logger.debug("[subprocess] Received %d bytes of stdout", len(chunk))
                for event in decoder.feed(chunk):
                    yield event
            self.state = ProcessState.CLOSING
            for event in decoder.flush():
                yield event
            self.returncode = await self._proc.wait()
            if self._stderr_task is not None:
                await self._stderr_task
        finally:
            self._cancel_timer()
            if self._proc.returncode is None:
                self.kill()
            self._cancel_escalation_if_done()

        logger.info("[subprocess] Process closed with code: %s", self.returncode)
        if self.timed_out:
            self.state = ProcessState.ERRORED
            raise BackendTimeoutError(self.timeout_s)
        self.state = ProcessState.CLOSED

    def _on_timeout(self) -> None:
        self._timer = None
        if self.kill():
            self.timed_out = True
            logger.warning(
                "[subprocess] pid=%s timed out after %ss",
                self.handle.pid if self.handle else None,
                self.timeout_s,
            )

    def kill(self, sig: int = signal.SIGTERM) -> bool:
        """Signal the process once; later calls are no-ops."""

        if self._proc is None or self.handle is None:
            return False
        if self.handle.killed or self._proc.returncode is not None:
            return False
        self.handle.killed = True
        self._cancel_timer()
        try:
            self._proc.send_signal(sig)
        except ProcessLookupError:
            return False
        logger.info("[subprocess] Sent signal %s to pid=%s", sig, self._proc.pid)
        loop = asyncio.get_running_loop()
        self._escalation = loop.call_later(self.kill_grace_s, self._force_kill)
        return True

    def _force_kill(self) -> None:
        self._escalation = None
        if self._proc is not None and self._proc.returncode is None:
            logger.warning("[subprocess] pid=%s ignored SIGTERM; killing", self._proc.pid)
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_escalation_if_done(self) -> None:
        if self._escalation is not None and self._proc.returncode is not None:
            self._escalation.cancel()
            self._escalation = None

    def is_running(self) -> bool:
        return (
            self._proc is not None
            and self.handle is not None
            and not self.handle.killed
            and self._proc.returncode is None
        )


async def verify_cli(executable: str = "claude", timeout_s: float = 10.0) -> dict:
    """Check that the CLI is installed by running ``<executable> --version``."""

    if shutil.which(executable) is None:
        return {"ok": False, "error": f"Claude CLI not found. {CLI_INSTALL_HINT}"}
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        return {"ok": False, "error": f"Claude CLI check failed: {exc}"}
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        return {"ok": False, "error": f"Claude CLI did not answer within {timeout_s:g}s"}
    if proc.returncode != 0:
        return {"ok": False, "error": "Claude CLI returned non-zero exit code"}
    return {"ok": True, "version": stdout.decode("utf-8", errors="replace").strip()}
