"""Deterministic error model and exit code contract."""

from __future__ import annotations

import errno
from dataclasses import dataclass
from enum import Enum, IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    SPAWN_ERROR = 5
    UNSUPPORTED_PLATFORM = 8


class PtyErrorKind(str, Enum):
    SPAWN_FAILED = "spawn-failed"
    NOT_AVAILABLE = "not-available"
    BROKEN_PIPE = "broken-pipe"
    PROCESS_EXITED = "process-exited"
    INVALID_UTF8 = "invalid-utf8"
    LOCK_POISONED = "lock-poisoned"
    SIGNAL_UNSUPPORTED = "signal-unsupported"
    RESIZE_FAILED = "resize-failed"
    INVALID_ARGUMENT = "invalid-argument"


_EXIT_CODES = {
    PtyErrorKind.SPAWN_FAILED: ExitCode.SPAWN_ERROR,
    PtyErrorKind.NOT_AVAILABLE: ExitCode.UNSUPPORTED_PLATFORM,
    PtyErrorKind.INVALID_ARGUMENT: ExitCode.INVALID_ARGS,
}

# Win32 set is ERROR_BROKEN_PIPE and ERROR_NO_DATA.
_BROKEN_PIPE_ERRNOS = {errno.EPIPE, errno.EIO, errno.ECONNRESET}
_BROKEN_PIPE_WINERRORS = {109, 232}


@dataclass
class PtyError(Exception):
    message: str
    kind: PtyErrorKind = PtyErrorKind.SPAWN_FAILED
    hint: str = ""
    operation: str = ""
    os_error: int | None = None

    def __str__(self) -> str:
        text = self.message
        if self.os_error is not None:
            text = f"{text} (os error {self.os_error})"
        if self.hint:
            return f"{text} Hint: {self.hint}"
        return text

    @property
    def code(self) -> ExitCode:
        return _EXIT_CODES.get(self.kind, ExitCode.RUNTIME_ERROR)


def os_error_code(exc: OSError) -> int | None:
    winerror = getattr(exc, "winerror", None)
    if isinstance(winerror, int):
        return winerror
    return exc.errno


def classify_os_error(
    exc: OSError,
    *,
    operation: str,
    default: PtyErrorKind,
    hint: str = "",
) -> PtyError:
    code = os_error_code(exc)
    # Win32 codes overlap errno values (ERROR_ACCESS_DENIED == EIO).
    broken_codes = _BROKEN_PIPE_WINERRORS if isinstance(getattr(exc, "winerror", None), int) else _BROKEN_PIPE_ERRNOS
    kind = default
    if isinstance(exc, BrokenPipeError) or code in broken_codes:
        kind = PtyErrorKind.BROKEN_PIPE
    return PtyError(
        f"PTY {operation} failed: {exc.strerror or exc}",
        kind=kind,
        hint=hint,
        operation=operation,
        os_error=code,
    )


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
