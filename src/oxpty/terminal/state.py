"""Per-session shared state guarded by a single lock."""

from __future__ import annotations

import codecs
import logging as py_logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from oxpty.terminal.models import PtySize

logger = py_logging.getLogger(__name__)

_NEWLINES = {"\n", "\r"}


class SessionState:
    """Output accumulator, pending line, size and liveness of one session.

    The reader thread is the only producer of output; every other field is
    mutated by the session facade. A critical section that raises leaves the
    state marked poisoned; the next acquisition logs and carries on with the
    inner data instead of failing every later call.
    """

    def __init__(self, size: PtySize | None = None) -> None:
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._poisoned = False
        self._raw = bytearray()
        self._text: list[str] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: list[str] = []
        self._size = size or PtySize()
        self._alive = True
        self._exit_reason = ""
        self._updated = False
        self._total_bytes = 0
        self._echo: str | None = None
        self._echo_line_end = False

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._changed:
            if self._poisoned:
                logger.warning("Recovering session state after a failed update")
                self._poisoned = False
            try:
                yield
            except BaseException:
                self._poisoned = True
                raise

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    # Reader side.

    def append_output(self, data: bytes) -> None:
        if not data:
            return
        with self.locked():
            self._raw.extend(data)
            self._text.append(self._decoder.decode(data))
            if self._echo is not None:
                self._strip_echo()
            self._total_bytes += len(data)
            self._updated = True
            self._changed.notify_all()

    def mark_exited(self, reason: str = "") -> None:
        with self.locked():
            if not self._alive:
                return
            self._alive = False
            self._exit_reason = reason
            self._updated = True
            self._changed.notify_all()
        logger.debug("Session marked exited: %s", reason or "unknown")

    # Facade side.

    @property
    def alive(self) -> bool:
        with self.locked():
            return self._alive

    @property
    def exit_reason(self) -> str:
        with self.locked():
            return self._exit_reason

    @property
    def total_bytes(self) -> int:
        with self.locked():
            return self._total_bytes

    def output_text(self) -> str:
        with self.locked():
            return self._joined_text()

    def output_bytes(self) -> bytes:
        with self.locked():
            return bytes(self._raw)

    def clear_output(self) -> None:
        with self.locked():
            self._reset_output()

    def expect_echo(self, command: str) -> None:
        """Clear output and drop the terminal's echo of ``command`` once it arrives."""
        body = command.rstrip("\r\n")
        with self.locked():
            self._reset_output()
            self._echo = body or None
            self._echo_line_end = body != command

    def drain_output(self) -> str:
        with self.locked():
            text = self._joined_text()
            self._reset_output()
            return text

    def take_update_flag(self) -> bool:
        with self.locked():
            updated = self._updated
            self._updated = False
            return updated

    def push_pending(self, char: str) -> None:
        with self.locked():
            if char in _NEWLINES:
                self._pending.clear()
            else:
                self._pending.append(char)

    def pop_pending(self) -> str | None:
        with self.locked():
            if not self._pending:
                return None
            return self._pending.pop()

    @property
    def pending_input(self) -> str:
        with self.locked():
            return "".join(self._pending)

    @property
    def size(self) -> PtySize:
        with self.locked():
            return self._size

    @size.setter
    def size(self, value: PtySize) -> None:
        with self.locked():
            self._size = value

    def wait_for(self, marker: str, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self.locked():
            while True:
                if marker in self._joined_text():
                    return True
                remaining = deadline - time.monotonic()
                if not self._alive or remaining <= 0:
                    return False
                self._changed.wait(remaining)

    def _joined_text(self) -> str:
        if len(self._text) > 1:
            self._text[:] = ["".join(self._text)]
        return self._text[0] if self._text else ""

    def _reset_output(self) -> None:
        self._raw.clear()
        self._text.clear()
        self._decoder.reset()
        self._echo = None

    def _strip_echo(self) -> None:
        text = self._joined_text()
        body = self._echo or ""
        if len(text) < len(body):
            if not body.startswith(text):
                self._echo = None
            return
        if not text.startswith(body):
            self._echo = None
            return
        end = len(body)
        if self._echo_line_end:
            rest = text[end : end + 2]
            if rest in ("", "\r"):
                # The line ending has not fully arrived yet.
                return
            if rest == "\r\n":
                end += 2
            elif rest[0] in _NEWLINES:
                end += 1
        echoed = text[:end]
        del self._raw[: len(echoed.encode("utf-8"))]
        self._text[:] = [text[end:]]
        self._echo = None
