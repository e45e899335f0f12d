"""Pywinpty-backed PTY for Windows builds without ConPTY."""

from __future__ import annotations

import importlib.util
import logging as py_logging
import os
import shutil
import signal as py_signal
import subprocess
import time
from collections.abc import Callable, Mapping
from typing import Any

from oxpty.config import DEFAULT_TERM
from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells.models import Shell
from oxpty.terminal.backends.base import (
    CTRL_C,
    FORCE_KILL_WAIT_SECONDS,
    READ_POLL_INTERVAL,
    READER_JOIN_TIMEOUT,
    TERMINATE_GRACE_SECONDS,
    OutputSink,
)
from oxpty.terminal.models import PtySize, SignalKind
from oxpty.terminal.reader import ReaderThread

logger = py_logging.getLogger(__name__)

# cols, rows -> winpty.PTY-like object.
PtyFactory = Callable[[int, int], Any]

CTRL_Z = "\x1a"
_EXIT_POLL = 0.05


def is_winpty_available() -> bool:
    return importlib.util.find_spec("winpty") is not None


def _create_winpty(cols: int, rows: int) -> Any:
    try:
        from winpty import PTY, Backend
    except Exception as exc:
        raise PtyError(
            "pywinpty backend is unavailable.",
            kind=PtyErrorKind.NOT_AVAILABLE,
            hint="Install the `pywinpty` package on Windows.",
            operation="spawn",
        ) from exc
    return PTY(cols, rows, backend=Backend.WinPTY)


def _environment_block(env: Mapping[str, str]) -> str:
    return "\0".join(f"{name}={value}" for name, value in env.items()) + "\0"


class WinptyBackend:
    capability = "winpty"

    def __init__(
        self,
        *,
        factory: PtyFactory | None = None,
        term: str = DEFAULT_TERM,
        poll_interval: float = READ_POLL_INTERVAL,
        grace_period: float = TERMINATE_GRACE_SECONDS,
        kill: Callable[[int, int], None] | None = None,
    ) -> None:
        self._factory = factory or _create_winpty
        self._term = term
        self._poll_interval = poll_interval
        self._grace_period = grace_period
        self._kill = kill or os.kill
        self._pty: Any = None
        self._pid: int | None = None
        self._reader: ReaderThread | None = None
        self._newline = "\r"
        self._eof = False
        self._terminated = False

    @property
    def pid(self) -> int | None:
        return self._pid

    def spawn(
        self,
        shell: Shell,
        size: PtySize,
        sink: OutputSink,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if self._pty is not None:
            raise PtyError(
                "PTY backend already spawned a process.",
                kind=PtyErrorKind.SPAWN_FAILED,
                operation="spawn",
            )
        child_env = dict(os.environ if env is None else env)
        child_env.setdefault("TERM", self._term)
        appname = shutil.which(shell.executable) or shell.executable
        cmdline = " " + subprocess.list2cmdline(list(shell.args)) if shell.args else None
        try:
            pty = self._factory(size.cols, size.rows)
            started = pty.spawn(appname, cmdline=cmdline, cwd=cwd, env=_environment_block(child_env))
        except PtyError:
            raise
        except Exception as exc:
            raise PtyError(
                f"Failed to start {shell.executable}.",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint=str(exc) or "Check the shell installation.",
                operation="spawn",
            ) from exc
        if not started:
            raise PtyError(
                f"Failed to start {shell.executable}.",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint="The WinPTY agent refused to spawn the process.",
                operation="spawn",
            )

        self._pty = pty
        pid = getattr(pty, "pid", None)
        self._pid = int(pid) if pid else None
        self._newline = shell.newline
        logger.info("Spawned %s (pid %s) through WinPTY", shell.executable, self._pid)
        self._reader = ReaderThread(
            f"oxpty-winpty-{self._pid}",
            self._pump,
            sink,
            idle_interval=self._poll_interval,
        )
        self._reader.start()

    def write(self, data: bytes) -> None:
        self._write_text(data.decode("utf-8", errors="replace"), operation="write")

    def try_read(self) -> bytes:
        pty = self._pty
        if pty is None or self._eof:
            return b""
        try:
            text = pty.read(blocking=False)
            at_eof = not text and bool(pty.iseof())
        except Exception:
            logger.debug("WinPTY read failed", exc_info=True)
            self._eof = True
            return b""
        if not text:
            self._eof = at_eof
            return b""
        if isinstance(text, bytes):
            return text
        return text.encode("utf-8")

    def resize(self, size: PtySize) -> None:
        pty = self._require_pty("resize")
        try:
            pty.set_size(size.cols, size.rows)
        except Exception as exc:
            raise PtyError(
                "Failed to resize the WinPTY console.",
                kind=PtyErrorKind.RESIZE_FAILED,
                hint=str(exc),
                operation="resize",
            ) from exc

    def signal(self, kind: SignalKind) -> None:
        if kind in (SignalKind.INTERRUPT, SignalKind.BREAK):
            self._write_text(CTRL_C.decode("ascii"), operation="signal")
            return
        if kind == SignalKind.EOF:
            self._write_text(CTRL_Z, operation="signal")
            return
        raise PtyError(
            f"Signal {kind.value} is not supported by the WinPTY backend.",
            kind=PtyErrorKind.SIGNAL_UNSUPPORTED,
            operation="signal",
        )

    def is_alive(self) -> bool:
        if self._pty is None or self._terminated or self._eof:
            return False
        try:
            return bool(self._pty.isalive())
        except Exception:
            return False

    def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        pty = self._pty
        if pty is None:
            return

        if self._alive(pty):
            try:
                pty.write(f"exit{self._newline}")
            except Exception:
                logger.debug("Graceful exit request failed", exc_info=True)
            if not self._wait_exit(pty, self._grace_period) and self._pid is not None:
                logger.info("pid %s still running, killing", self._pid)
                try:
                    # os.kill maps to TerminateProcess on Windows.
                    self._kill(self._pid, py_signal.SIGTERM)
                except OSError:
                    logger.warning("Failed to kill pid %s", self._pid, exc_info=True)
                self._wait_exit(pty, FORCE_KILL_WAIT_SECONDS)

        if self._reader is not None:
            self._reader.stop()
            self._reader.join(READER_JOIN_TIMEOUT)
        # Dropping the PTY closes the WinPTY agent and its pipes.
        self._pty = None
        logger.info("Terminated WinPTY session for pid %s", self._pid)

    def _pump(self) -> bytes | None:
        data = self.try_read()
        if data:
            return data
        if self._eof or self._pty is None:
            return None
        if not self._alive(self._pty):
            return self.try_read() or None
        return b""

    def _write_text(self, text: str, *, operation: str) -> None:
        pty = self._require_pty(operation)
        try:
            pty.write(text)
        except Exception as exc:
            raise PtyError(
                "Failed to write to the WinPTY console.",
                kind=PtyErrorKind.BROKEN_PIPE,
                hint=str(exc),
                operation=operation,
            ) from exc

    def _require_pty(self, operation: str) -> Any:
        if self._pty is None or self._terminated:
            raise PtyError(
                "PTY session is not running.",
                kind=PtyErrorKind.PROCESS_EXITED,
                operation=operation,
            )
        return self._pty

    def _alive(self, pty: Any) -> bool:
        try:
            return bool(pty.isalive())
        except Exception:
            return False

    def _wait_exit(self, pty: Any, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while self._alive(pty):
            if time.monotonic() >= deadline:
                return False
            time.sleep(_EXIT_POLL)
        return True
