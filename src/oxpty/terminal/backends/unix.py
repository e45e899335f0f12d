"""POSIX pseudo-terminal backend built on ptyprocess."""

from __future__ import annotations

import fcntl
import logging as py_logging
import os
import select
import signal as py_signal
import time
from collections.abc import Callable, Mapping
from typing import Any

from oxpty.config import DEFAULT_TERM
from oxpty.errors import PtyError, PtyErrorKind, classify_os_error
from oxpty.shells.models import Shell
from oxpty.terminal.backends.base import (
    FORCE_KILL_WAIT_SECONDS,
    READ_CHUNK_SIZE,
    READ_POLL_INTERVAL,
    READER_JOIN_TIMEOUT,
    TERMINATE_GRACE_SECONDS,
    OutputSink,
)
from oxpty.terminal.models import PtySize, SignalKind
from oxpty.terminal.reader import ReaderThread

logger = py_logging.getLogger(__name__)

# argv, cwd, env, (rows, cols) -> ptyprocess.PtyProcess-like object.
PtySpawner = Callable[[list[str], "str | None", "dict[str, str]", "tuple[int, int]"], Any]

_SIGNALS = {
    SignalKind.INTERRUPT: py_signal.SIGINT,
    SignalKind.QUIT: py_signal.SIGQUIT,
    # Ctrl+\ is the closest POSIX counterpart of Ctrl+Break.
    SignalKind.BREAK: py_signal.SIGQUIT,
    SignalKind.SUSPEND: py_signal.SIGTSTP,
}
_EXIT_POLL = 0.02


def _spawn_with_ptyprocess(
    argv: list[str],
    cwd: str | None,
    env: dict[str, str],
    dimensions: tuple[int, int],
) -> Any:
    try:
        from ptyprocess import PtyProcess
    except Exception as exc:
        raise PtyError(
            "ptyprocess backend is unavailable.",
            kind=PtyErrorKind.NOT_AVAILABLE,
            hint="Install the `ptyprocess` package.",
            operation="spawn",
        ) from exc
    if cwd is None:
        return PtyProcess.spawn(argv, env=env, dimensions=dimensions)

    # preexec_fn failures travel back through ptyprocess's exec error pipe.
    def enter_cwd() -> None:
        os.chdir(cwd)

    return PtyProcess.spawn(argv, env=env, dimensions=dimensions, preexec_fn=enter_cwd)


def _is_alive(process: Any) -> bool:
    try:
        return bool(process.isalive())
    except Exception:
        logger.debug("Liveness check failed for pid %s", getattr(process, "pid", "?"), exc_info=True)
        return False


def _wait_exit(process: Any, timeout: float) -> bool:
    deadline = time.monotonic() + timeout
    while _is_alive(process):
        if time.monotonic() >= deadline:
            return False
        time.sleep(_EXIT_POLL)
    return True


class UnixBackend:
    capability = "unix-pty"

    def __init__(
        self,
        *,
        spawner: PtySpawner | None = None,
        term: str = DEFAULT_TERM,
        poll_interval: float = READ_POLL_INTERVAL,
        grace_period: float = TERMINATE_GRACE_SECONDS,
    ) -> None:
        self._spawner = spawner or _spawn_with_ptyprocess
        self._term = term
        self._poll_interval = poll_interval
        self._grace_period = grace_period
        self._process: Any = None
        self._reader: ReaderThread | None = None
        self._eof = False
        self._terminated = False

    @property
    def pid(self) -> int | None:
        return None if self._process is None else int(self._process.pid)

    def spawn(
        self,
        shell: Shell,
        size: PtySize,
        sink: OutputSink,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if self._process is not None:
            raise PtyError(
                "PTY backend already spawned a process.",
                kind=PtyErrorKind.SPAWN_FAILED,
                operation="spawn",
            )
        if cwd and not os.path.isdir(cwd):
            raise PtyError(
                f"Working directory does not exist: {cwd}",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint="Choose an existing directory for the terminal.",
                operation="spawn",
            )
        child_env = dict(os.environ if env is None else env)
        child_env.setdefault("TERM", self._term)
        try:
            process = self._spawner(shell.argv, cwd, child_env, (size.rows, size.cols))
        except PtyError:
            raise
        except OSError as exc:
            raise classify_os_error(
                exc,
                operation="spawn",
                default=PtyErrorKind.SPAWN_FAILED,
                hint=f"Could not start {shell.executable}.",
            ) from exc
        except Exception as exc:
            raise PtyError(
                f"Failed to start {shell.executable}.",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint=str(exc) or "Check the shell installation.",
                operation="spawn",
            ) from exc

        self._process = process
        try:
            flags = fcntl.fcntl(process.fd, fcntl.F_GETFL)
            fcntl.fcntl(process.fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
        except OSError as exc:
            self._discard_process()
            self._process = None
            raise classify_os_error(exc, operation="spawn", default=PtyErrorKind.SPAWN_FAILED) from exc

        logger.info("Spawned %s (pid %s) in a %sx%s PTY", shell.executable, process.pid, size.cols, size.rows)
        self._reader = ReaderThread(f"oxpty-reader-{process.pid}", self._pump, sink)
        self._reader.start()

    def write(self, data: bytes) -> None:
        process = self._require_process("write")
        view = memoryview(data)
        while view:
            try:
                written = os.write(process.fd, view)
            except BlockingIOError:
                select.select([], [process.fd], [], self._poll_interval)
                continue
            except OSError as exc:
                raise classify_os_error(exc, operation="write", default=PtyErrorKind.BROKEN_PIPE) from exc
            view = view[written:]

    def try_read(self) -> bytes:
        process = self._process
        if process is None or self._eof:
            return b""
        try:
            ready, _, _ = select.select([process.fd], [], [], 0)
        except (OSError, ValueError):
            self._eof = True
            return b""
        if not ready:
            return b""
        try:
            data = os.read(process.fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return b""
        except OSError:
            # Linux reports EIO once the slave side has closed.
            self._eof = True
            return b""
        if not data:
            self._eof = True
        return data

    def resize(self, size: PtySize) -> None:
        process = self._require_process("resize")
        try:
            process.setwinsize(size.rows, size.cols)
        except OSError as exc:
            raise classify_os_error(exc, operation="resize", default=PtyErrorKind.RESIZE_FAILED) from exc

    def signal(self, kind: SignalKind) -> None:
        process = self._require_process("signal")
        if kind == SignalKind.EOF:
            try:
                process.sendeof()
            except OSError as exc:
                raise classify_os_error(exc, operation="signal", default=PtyErrorKind.BROKEN_PIPE) from exc
            return

        signum = _SIGNALS.get(kind)
        if signum is None:
            raise PtyError(
                f"Signal {kind.value} is not supported by the POSIX backend.",
                kind=PtyErrorKind.SIGNAL_UNSUPPORTED,
                operation="signal",
            )
        try:
            os.killpg(self._foreground_group(process), signum)
        except ProcessLookupError as exc:
            raise PtyError(
                "Shell process has exited.",
                kind=PtyErrorKind.PROCESS_EXITED,
                operation="signal",
            ) from exc
        except OSError as exc:
            raise classify_os_error(exc, operation="signal", default=PtyErrorKind.SIGNAL_UNSUPPORTED) from exc

    def is_alive(self) -> bool:
        if self._process is None or self._terminated or self._eof:
            return False
        return _is_alive(self._process)

    def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        process = self._process
        if process is None:
            return

        if _is_alive(process):
            self._signal_group(process, py_signal.SIGHUP)
            if not _wait_exit(process, self._grace_period):
                logger.info("pid %s ignored SIGHUP, sending SIGKILL", process.pid)
                self._signal_group(process, py_signal.SIGKILL)
                _wait_exit(process, FORCE_KILL_WAIT_SECONDS)

        if self._reader is not None:
            self._reader.stop()
            self._reader.join(READER_JOIN_TIMEOUT)
        self._discard_process()
        logger.info("Terminated PTY session for pid %s", process.pid)

    def _pump(self) -> bytes | None:
        process = self._process
        if process is None or self._eof:
            return None
        try:
            ready, _, _ = select.select([process.fd], [], [], self._poll_interval)
        except (OSError, ValueError):
            return None
        if not ready:
            return b"" if _is_alive(process) else None
        data = self.try_read()
        if self._eof and not data:
            return None
        return data

    def _require_process(self, operation: str) -> Any:
        if self._process is None or self._terminated:
            raise PtyError(
                "PTY session is not running.",
                kind=PtyErrorKind.PROCESS_EXITED,
                operation=operation,
            )
        return self._process

    def _foreground_group(self, process: Any) -> int:
        try:
            return os.tcgetpgrp(process.fd)
        except OSError:
            return os.getpgid(process.pid)

    def _signal_group(self, process: Any, signum: int) -> None:
        try:
            os.killpg(process.pid, signum)
        except ProcessLookupError:
            return
        except OSError:
            logger.debug("killpg(%s, %s) failed, signalling pid only", process.pid, signum, exc_info=True)
            try:
                process.kill(signum)
            except OSError:
                logger.debug("kill(%s, %s) failed", process.pid, signum, exc_info=True)

    def _discard_process(self) -> None:
        process = self._process
        if process is None:
            return
        try:
            process.close(force=True)
        except Exception:
            logger.warning("Failed to close PTY for pid %s", process.pid, exc_info=True)
