"""Backend capability contract shared by the platform PTY implementations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from oxpty.shells.models import Shell
from oxpty.terminal.models import PtySize, SignalKind

READ_CHUNK_SIZE = 65536
READ_POLL_INTERVAL = 0.05
TERMINATE_GRACE_SECONDS = 1.0
FORCE_KILL_WAIT_SECONDS = 5.0
READER_JOIN_TIMEOUT = 2.0
BACKSPACE = b"\x7f"
CTRL_C = b"\x03"


class OutputSink(Protocol):
    def append_output(self, data: bytes) -> None: ...

    def mark_exited(self, reason: str) -> None: ...


class Backend(Protocol):
    capability: str

    def spawn(
        self,
        shell: Shell,
        size: PtySize,
        sink: OutputSink,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None: ...

    def write(self, data: bytes) -> None: ...

    def try_read(self) -> bytes: ...

    def resize(self, size: PtySize) -> None: ...

    def signal(self, kind: SignalKind) -> None: ...

    def is_alive(self) -> bool: ...

    def terminate(self) -> None: ...
