"""Terminal session domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from oxpty.config import DEFAULT_COLS, DEFAULT_ROWS, MAX_DIMENSION
from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells.models import ShellKind


class SignalKind(str, Enum):
    INTERRUPT = "interrupt"
    BREAK = "break"
    QUIT = "quit"
    SUSPEND = "suspend"
    EOF = "eof"


class BackendKind(str, Enum):
    UNIX = "unix"
    CONPTY = "conpty"
    WINPTY = "winpty"


class SessionStatus(str, Enum):
    RUNNING = "running"
    EXITED = "exited"
    CLOSED = "closed"


@dataclass(frozen=True)
class PtySize:
    rows: int = DEFAULT_ROWS
    cols: int = DEFAULT_COLS

    def validated(self) -> PtySize:
        if not (0 < self.rows <= MAX_DIMENSION and 0 < self.cols <= MAX_DIMENSION):
            raise PtyError(
                f"Invalid PTY size: {self.cols}x{self.rows}",
                kind=PtyErrorKind.INVALID_ARGUMENT,
                hint=f"Use row/column values between 1 and {MAX_DIMENSION}.",
                operation="resize",
            )
        return self


@dataclass(frozen=True)
class PaneHandle:
    pane_id: str
    shell: ShellKind
    executable: str
    backend: BackendKind
