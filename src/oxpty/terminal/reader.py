"""Background reader that moves PTY output into a session's accumulator."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable

from oxpty.errors import PtyError
from oxpty.terminal.backends.base import READER_JOIN_TIMEOUT, OutputSink

logger = py_logging.getLogger(__name__)

# Returns new bytes, b"" when nothing is ready yet, or None at end of stream.
Pump = Callable[[], "bytes | None"]


class ReaderThread:
    def __init__(
        self,
        name: str,
        pump: Pump,
        sink: OutputSink,
        *,
        idle_interval: float = 0.0,
    ) -> None:
        self._pump = pump
        self._sink = sink
        self._idle_interval = idle_interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def name(self) -> str:
        return self._thread.name

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float = READER_JOIN_TIMEOUT) -> bool:
        if self._thread.ident is None or self._thread is threading.current_thread():
            return True
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Reader thread %s did not stop within %.1fs", self.name, timeout)
            return False
        return True

    def is_running(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        reason = "stopped"
        total = 0
        try:
            while not self._stop.is_set():
                chunk = self._pump()
                if chunk is None:
                    reason = "end of stream"
                    break
                if chunk:
                    total += len(chunk)
                    self._sink.append_output(chunk)
                elif self._idle_interval:
                    self._stop.wait(self._idle_interval)
        except (PtyError, OSError) as exc:
            reason = f"read failed: {exc}"
            logger.debug("Reader %s stopped after error", self.name, exc_info=True)
        finally:
            logger.debug("Reader %s finished (%s, %s bytes)", self.name, reason, total)
            self._sink.mark_exited(reason)
