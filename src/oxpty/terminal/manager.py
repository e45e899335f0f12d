"""Pane-keyed registry of PTY sessions with exit-time cleanup."""

from __future__ import annotations

import atexit
import logging as py_logging
import threading
from collections.abc import Callable
from typing import Any

from oxpty.errors import PtyError, PtyErrorKind
from oxpty.terminal.models import PaneHandle
from oxpty.terminal.session import Pty, SelectorLike

logger = py_logging.getLogger(__name__)

Opener = Callable[..., Pty]


class SessionManager:
    def __init__(self, opener: Opener | None = None, *, register_atexit: bool = True) -> None:
        self._opener = opener or Pty.open
        self._sessions: dict[str, Pty] = {}
        # Guards the mapping only; session I/O never takes this lock.
        self._lock = threading.Lock()
        if register_atexit:
            atexit.register(self.close_all)

    def open(self, pane_id: str, selector: SelectorLike = None, **kwargs: Any) -> Pty:
        with self._lock:
            if pane_id in self._sessions:
                raise PtyError(
                    f"Pane already has a terminal: {pane_id}",
                    kind=PtyErrorKind.INVALID_ARGUMENT,
                    hint="Close the current session before opening a new one.",
                    operation="open",
                )
        session = self._opener(selector, **kwargs)
        with self._lock:
            if pane_id in self._sessions:
                session.terminate()
                raise PtyError(
                    f"Pane already has a terminal: {pane_id}",
                    kind=PtyErrorKind.INVALID_ARGUMENT,
                    operation="open",
                )
            self._sessions[pane_id] = session
        logger.info("Opened %s terminal for pane %s", session.shell.kind.value, pane_id)
        return session

    def get(self, pane_id: str) -> Pty:
        with self._lock:
            session = self._sessions.get(pane_id)
        if session is None:
            raise PtyError(
                f"Pane has no terminal: {pane_id}",
                kind=PtyErrorKind.INVALID_ARGUMENT,
                hint="Open a terminal for the pane first.",
            )
        return session

    def close(self, pane_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(pane_id, None)
        if session is None:
            raise PtyError(
                f"Pane has no terminal: {pane_id}",
                kind=PtyErrorKind.INVALID_ARGUMENT,
                hint="Select an active terminal pane.",
                operation="close",
            )
        session.terminate()
        logger.info("Closed terminal for pane %s", pane_id)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.items())
            self._sessions.clear()
        for pane_id, session in sessions:
            logger.debug("Closing terminal for pane %s", pane_id)
            session.terminate()

    def list_handles(self) -> list[PaneHandle]:
        with self._lock:
            items = sorted(self._sessions.items())
        return [
            PaneHandle(
                pane_id=pane_id,
                shell=session.shell.kind,
                executable=session.shell.executable,
                backend=session.backend_kind,
            )
            for pane_id, session in items
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
