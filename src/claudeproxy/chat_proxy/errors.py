from __future__ import annotations

from fastapi import HTTPException

CLI_INSTALL_HINT = "Install with: npm install -g @anthropic-ai/claude-code"


class BridgeError(RuntimeError):
    """Base class for process-level failures surfaced to the caller."""


class BackendNotFoundError(BridgeError):
    """The CLI executable could not be located."""

    def __init__(self, executable: str):
        self.executable = executable
        super().__init__(f"Claude CLI not found ('{executable}'). {CLI_INSTALL_HINT}")


class SpawnError(BridgeError):
    """The CLI executable exists but the process could not be started."""


class BackendTimeoutError(BridgeError):
    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Request timed out after {timeout_s:g}s")


class BackendExitError(BridgeError):
    """The process exited without producing a result event."""

    def __init__(self, returncode: int | None, stderr_tail: str = ""):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        message = f"Claude CLI exited with code {returncode} without a result"
        if stderr_tail:
            message += f": {stderr_tail}"
        super().__init__(message)


class ProxyError(HTTPException):
    def __init__(
        self, status_code: int, err_type: str, message: str, hint: str | None = None
    ):
        payload = {"error": {"type": err_type, "code": status_code, "message": message}}
        if hint:
            payload["error"]["hint"] = hint
        super().__init__(status_code=status_code, detail=payload)


def err_invalid_request(message: str) -> ProxyError:
    return ProxyError(400, "invalid_request_error", message)


def err_backend_not_installed(exc: BackendNotFoundError) -> ProxyError:
    return ProxyError(424, "backend_not_installed", str(exc), CLI_INSTALL_HINT)


def err_spawn_failed(exc: Exception) -> ProxyError:
    return ProxyError(502, "backend_spawn_failed", f"Failed to start Claude CLI: {exc}")


def err_backend_timeout(exc: BackendTimeoutError) -> ProxyError:
    return ProxyError(504, "backend_timeout", str(exc))


def err_backend_failed(exc: BackendExitError) -> ProxyError:
    return ProxyError(502, "backend_failed", str(exc))


def to_proxy_error(exc: BridgeError) -> ProxyError:
    """Map a process-level failure onto its HTTP error payload."""

    if isinstance(exc, BackendNotFoundError):
        return err_backend_not_installed(exc)
    if isinstance(exc, BackendTimeoutError):
        return err_backend_timeout(exc)
    if isinstance(exc, BackendExitError):
        return err_backend_failed(exc)
    return err_spawn_failed(exc)
