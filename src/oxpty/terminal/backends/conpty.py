"""Native Windows pseudo console (ConPTY) backend."""

from __future__ import annotations

import logging as py_logging
import os
import subprocess
import threading
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from oxpty.config import DEFAULT_TERM
from oxpty.errors import PtyError, PtyErrorKind, classify_os_error
from oxpty.shells.models import Shell
from oxpty.terminal.backends._win32 import Win32Api, environment_block, has_pseudo_console_api
from oxpty.terminal.backends.base import (
    CTRL_C,
    FORCE_KILL_WAIT_SECONDS,
    READ_CHUNK_SIZE,
    READER_JOIN_TIMEOUT,
    TERMINATE_GRACE_SECONDS,
    OutputSink,
)
from oxpty.terminal.models import PtySize, SignalKind
from oxpty.terminal.reader import ReaderThread

logger = py_logging.getLogger(__name__)


def is_conpty_available() -> bool:
    return has_pseudo_console_api()


@dataclass
class ConsoleHandles:
    """Every OS handle a ConPTY session owns, in release order."""

    pseudo_console: int | None = None
    input_write: int | None = None
    output_read: int | None = None
    input_read: int | None = None
    output_write: int | None = None
    process: int | None = None
    thread: int | None = None

    def close(self, api: Any, name: str) -> bool:
        handle = getattr(self, name)
        if handle is None:
            return False
        setattr(self, name, None)
        try:
            if name == "pseudo_console":
                api.close_pseudo_console(handle)
            else:
                api.close_handle(handle)
        except OSError:
            logger.warning("Failed to close %s handle", name, exc_info=True)
        return True

    def release(self, api: Any) -> list[str]:
        released: list[str] = []
        for field in fields(self):
            if self.close(api, field.name):
                released.append(field.name)
        return released


class ConPtyBackend:
    capability = "conpty"

    def __init__(
        self,
        *,
        api: Any = None,
        term: str = DEFAULT_TERM,
        grace_period: float = TERMINATE_GRACE_SECONDS,
    ) -> None:
        self._api = api
        self._term = term
        self._grace_period = grace_period
        self._handles = ConsoleHandles()
        self._handle_lock = threading.Lock()
        self._reader: ReaderThread | None = None
        self._pid: int | None = None
        self._eof = False
        self._terminated = False

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def handles(self) -> ConsoleHandles:
        return self._handles

    def _load_api(self) -> Any:
        if self._api is None:
            try:
                self._api = Win32Api()
            except (AttributeError, OSError) as exc:
                raise PtyError(
                    "The Windows pseudo console API is unavailable.",
                    kind=PtyErrorKind.NOT_AVAILABLE,
                    hint="ConPTY requires Windows 10 1809 or newer.",
                    operation="spawn",
                ) from exc
        return self._api

    def spawn(
        self,
        shell: Shell,
        size: PtySize,
        sink: OutputSink,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        api = self._load_api()
        handles = self._handles
        if handles.process is not None:
            raise PtyError(
                "PTY backend already spawned a process.",
                kind=PtyErrorKind.SPAWN_FAILED,
                operation="spawn",
            )
        child_env = dict(os.environ if env is None else env)
        child_env.setdefault("TERM", self._term)
        command_line = subprocess.list2cmdline(shell.argv)
        try:
            handles.input_read, handles.input_write = api.create_pipe()
            handles.output_read, handles.output_write = api.create_pipe()
            handles.pseudo_console = api.create_pseudo_console(
                size.cols, size.rows, handles.input_read, handles.output_write
            )
            created = api.create_process(
                command_line,
                cwd=cwd,
                environment=environment_block(child_env),
                pseudo_console=handles.pseudo_console,
            )
        except OSError as exc:
            released = handles.release(api)
            logger.error("ConPTY spawn of %s failed, released %s", shell.executable, ", ".join(released) or "nothing")
            raise classify_os_error(
                exc,
                operation="spawn",
                default=PtyErrorKind.SPAWN_FAILED,
                hint=f"Could not start {shell.executable}.",
            ) from exc

        handles.process, handles.thread, self._pid = created.process, created.thread, created.pid
        # The pseudo console duplicated its ends of both pipes.
        handles.close(api, "input_read")
        handles.close(api, "output_write")

        logger.info("Spawned %s (pid %s) in a %sx%s pseudo console", shell.executable, created.pid, size.cols, size.rows)
        self._reader = ReaderThread(f"oxpty-conpty-{created.pid}", self._pump, sink)
        self._reader.start()

    def write(self, data: bytes) -> None:
        api = self._require_api("write")
        handle = self._handles.input_write
        if handle is None:
            raise PtyError(
                "PTY input stream is closed.",
                kind=PtyErrorKind.BROKEN_PIPE,
                hint="Input was closed by an end-of-input signal.",
                operation="write",
            )
        view = memoryview(data)
        while view:
            try:
                written = api.write_file(handle, bytes(view))
            except OSError as exc:
                raise classify_os_error(exc, operation="write", default=PtyErrorKind.BROKEN_PIPE) from exc
            view = view[written:]

    def try_read(self) -> bytes:
        # The reader thread is the only consumer of the output pipe while it runs.
        if self._reader is not None and self._reader.is_running():
            return b""
        handle = self._handles.output_read
        if handle is None or self._api is None or self._eof:
            return b""
        try:
            available = self._api.peek_available(handle)
            if not available:
                return b""
            data = self._api.read_file(handle, min(available, READ_CHUNK_SIZE))
        except OSError:
            self._eof = True
            return b""
        if not data:
            self._eof = True
        return data

    def resize(self, size: PtySize) -> None:
        api = self._require_api("resize")
        console = self._handles.pseudo_console
        if console is None:
            raise PtyError("Pseudo console is closed.", kind=PtyErrorKind.PROCESS_EXITED, operation="resize")
        try:
            api.resize_pseudo_console(console, size.cols, size.rows)
        except OSError as exc:
            raise classify_os_error(exc, operation="resize", default=PtyErrorKind.RESIZE_FAILED) from exc

    def signal(self, kind: SignalKind) -> None:
        api = self._require_api("signal")
        if kind in (SignalKind.INTERRUPT, SignalKind.BREAK):
            # Ctrl+C typed into the pseudo console raises CTRL_C_EVENT for its process group.
            self.write(CTRL_C)
            return
        if kind == SignalKind.EOF:
            with self._handle_lock:
                self._handles.close(api, "input_write")
            return
        raise PtyError(
            f"Signal {kind.value} is not supported by the ConPTY backend.",
            kind=PtyErrorKind.SIGNAL_UNSUPPORTED,
            operation="signal",
        )

    def is_alive(self) -> bool:
        process = self._handles.process
        if process is None or self._terminated or self._api is None:
            return False
        try:
            return self._api.exit_code(process) is None
        except OSError:
            return False

    def terminate(self) -> None:
        with self._handle_lock:
            if self._terminated:
                return
            self._terminated = True
        api = self._api
        if api is None:
            return
        handles = self._handles
        pid = self._pid

        # Closing the pseudo console sends CTRL_CLOSE_EVENT to attached clients.
        handles.close(api, "pseudo_console")
        process = handles.process
        if process is not None and not self._wait(api, process, self._grace_period):
            logger.info("pid %s still running after console close, terminating", pid)
            try:
                api.terminate_process(process, 1)
            except OSError:
                logger.warning("TerminateProcess failed for pid %s", pid, exc_info=True)
            self._wait(api, process, FORCE_KILL_WAIT_SECONDS)

        if self._reader is not None:
            self._reader.stop()
            self._reader.join(READER_JOIN_TIMEOUT)
        released = handles.release(api)
        logger.info("Terminated ConPTY session for pid %s (released %s)", pid, ", ".join(released) or "nothing")

    def _wait(self, api: Any, process: int, timeout: float) -> bool:
        try:
            return bool(api.wait_for_process(process, timeout))
        except OSError:
            logger.debug("WaitForSingleObject failed", exc_info=True)
            return False

    def _pump(self) -> bytes | None:
        handle = self._handles.output_read
        if handle is None or self._api is None:
            return None
        try:
            data = self._api.read_file(handle, READ_CHUNK_SIZE)
        except OSError:
            logger.debug("ConPTY output read failed", exc_info=True)
            return None
        if not data:
            self._eof = True
            return None
        return data

    def _require_api(self, operation: str) -> Any:
        if self._api is None or self._handles.process is None or self._terminated:
            raise PtyError(
                "PTY session is not running.",
                kind=PtyErrorKind.PROCESS_EXITED,
                operation=operation,
            )
        return self._api
