"""Unified PTY session facade used by editor panes."""

from __future__ import annotations

import logging as py_logging
import os
import threading
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any

from oxpty.config import TerminalConfig
from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells.models import Shell, ShellKind, ShellSelector
from oxpty.shells.registry import ShellProbe, from_selector
from oxpty.shells.wsl import wsl_shell_args
from oxpty.terminal.backends.base import BACKSPACE, Backend
from oxpty.terminal.models import BackendKind, PtySize, SessionStatus, SignalKind
from oxpty.terminal.selection import Probe, choose_backend, create_backend
from oxpty.terminal.state import SessionState

logger = py_logging.getLogger(__name__)

BackendFactory = Callable[..., Any]
SelectorLike = ShellSelector | ShellKind | str | None


def _coerce_selector(selector: SelectorLike, config: TerminalConfig) -> ShellSelector:
    if selector is None:
        return ShellSelector.from_config(config)
    if isinstance(selector, ShellSelector):
        return selector
    return ShellSelector(shell=selector)


def _apply_wsl_distribution(shell: Shell, distribution: str) -> Shell:
    if shell.kind != ShellKind.WSL or not distribution or "-d" in shell.args:
        return shell
    return shell.with_args(wsl_shell_args(distribution))


class Pty:
    """One interactive shell running under a pseudo-terminal.

    A session is safe to share between the UI thread and the editor core:
    output and bookkeeping live in a locked :class:`SessionState`, and writes
    are serialized by a separate writer lock so a slow write never stalls the
    reader thread.

    Write-type operations return ``True`` when the bytes reached the backend
    and ``False`` once the shell has exited; they only raise for failures
    the caller can act on.
    """

    def __init__(
        self,
        shell: Shell,
        backend: Backend,
        backend_kind: BackendKind,
        state: SessionState,
    ) -> None:
        self._shell = shell
        self._backend = backend
        self._backend_kind = backend_kind
        self._state = state
        self._write_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        self._reported_signals: set[SignalKind] = set()

    @classmethod
    def open(
        cls,
        selector: SelectorLike = None,
        *,
        config: TerminalConfig | None = None,
        size: PtySize | None = None,
        env: Mapping[str, str] | None = None,
        probe: ShellProbe | None = None,
        backend_factory: BackendFactory | None = None,
        conpty_probe: Probe | None = None,
        fallback_probe: Probe | None = None,
        system_name: str | None = None,
    ) -> Pty:
        cfg = config or TerminalConfig()
        chosen = _coerce_selector(selector, cfg)
        shell_probe = probe or ShellProbe.current(system_name=system_name)
        shell = _apply_wsl_distribution(from_selector(chosen, shell_probe), cfg.wsl_distribution)
        requested = (size or PtySize(rows=cfg.rows, cols=cfg.cols)).validated()

        kind = choose_backend(
            system_name=system_name or shell_probe.system,
            conpty_probe=conpty_probe,
            fallback_probe=fallback_probe,
            allow_fallback=cfg.allow_fallback,
            force_fallback=cfg.force_fallback,
        )
        backend = (backend_factory or create_backend)(kind, term=cfg.term)

        child_env = dict(os.environ if env is None else env)
        child_env.update(cfg.env)
        cwd = chosen.cwd or cfg.cwd or None
        state = SessionState(requested)
        logger.debug("Opening %s session for %s", kind.value, shell.executable)
        backend.spawn(shell, requested, state, cwd=cwd, env=child_env)
        if not backend.is_alive():
            backend.terminate()
            early_output = state.output_text().strip()
            hint = early_output.splitlines()[-1] if early_output else "Check the shell arguments and working directory."
            raise PtyError(
                f"{shell.executable} exited immediately after starting.",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint=hint,
                operation="spawn",
            )
        return cls(shell, backend, kind, state)

    # Properties.

    @property
    def shell(self) -> Shell:
        return self._shell

    @property
    def backend_kind(self) -> BackendKind:
        return self._backend_kind

    @property
    def backend_name(self) -> str:
        return self._backend.capability

    @property
    def size(self) -> PtySize:
        return self._state.size

    @property
    def pending_input(self) -> str:
        return self._state.pending_input

    @property
    def status(self) -> SessionStatus:
        if self._closed:
            return SessionStatus.CLOSED
        return SessionStatus.RUNNING if self.is_alive() else SessionStatus.EXITED

    # Input.

    def write(self, data: bytes | str) -> bool:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            return self.is_alive()
        return self._forward(payload)

    def run_command(self, text: str) -> bool:
        return self.write(text)

    def silent_run_command(self, text: str) -> bool:
        """Run ``text`` keeping only what the command prints, without its echo."""
        self._state.expect_echo(text)
        return self.run_command(text)

    def char_input(self, char: str) -> bool:
        if len(char) != 1:
            raise PtyError(
                f"char_input expects a single character, got {len(char)}",
                kind=PtyErrorKind.INVALID_ARGUMENT,
                operation="char_input",
            )
        if not self.is_alive():
            return False
        self._state.push_pending(char)
        return self._forward(char.encode("utf-8"))

    def char_pop(self) -> str | None:
        if not self.is_alive():
            return None
        popped = self._state.pop_pending()
        self._forward(BACKSPACE)
        return popped

    def clear(self) -> bool:
        """Drop accumulated output and ask the shell for a fresh prompt."""
        self._state.clear_output()
        return self.write(self._shell.newline)

    # Output.

    def output(self) -> str:
        return self._state.output_text()

    def output_bytes(self) -> bytes:
        return self._state.output_bytes()

    def clear_output(self) -> None:
        self._state.clear_output()

    def drain_output(self) -> str:
        return self._state.drain_output()

    def has_updates(self) -> bool:
        return self._state.take_update_flag()

    def wait_for_output(self, marker: str, timeout: float = 5.0) -> bool:
        return self._state.wait_for(marker, timeout)

    # Control.

    def resize(self, rows: int, cols: int) -> bool:
        size = PtySize(rows=rows, cols=cols).validated()
        if not self.is_alive():
            return False
        try:
            self._backend.resize(size)
        except PtyError as exc:
            if self._mark_exited_if_dead(exc):
                return False
            logger.warning("Resize to %sx%s failed: %s", cols, rows, exc)
            raise
        self._state.size = size
        logger.debug("Resized session to %sx%s", cols, rows)
        return True

    def signal(self, kind: SignalKind) -> bool:
        if not self.is_alive():
            return False
        try:
            with self._write_lock:
                self._backend.signal(kind)
        except PtyError as exc:
            if exc.kind == PtyErrorKind.SIGNAL_UNSUPPORTED:
                if kind not in self._reported_signals:
                    self._reported_signals.add(kind)
                    logger.warning("%s", exc)
                return False
            if self._mark_exited_if_dead(exc):
                return False
            raise
        return True

    def is_alive(self) -> bool:
        if self._closed or not self._state.alive:
            return False
        if self._backend.is_alive():
            return True
        self._state.mark_exited("process exited")
        return False

    def terminate(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._backend.terminate()
        except PtyError:
            logger.warning("Backend termination reported an error", exc_info=True)
        self._state.mark_exited("terminated")

    close = terminate

    def __enter__(self) -> Pty:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.terminate()

    def __repr__(self) -> str:
        return f"Pty(shell={self._shell.kind.value!r}, backend={self._backend_kind.value!r}, status={self.status.value!r})"

    def _forward(self, payload: bytes) -> bool:
        if not self.is_alive():
            return False
        with self._write_lock:
            try:
                self._backend.write(payload)
            except PtyError as exc:
                if self._mark_exited_if_dead(exc):
                    return False
                logger.warning("Write of %s bytes failed: %s", len(payload), exc)
                raise
        return True

    def _mark_exited_if_dead(self, exc: PtyError) -> bool:
        if exc.kind == PtyErrorKind.PROCESS_EXITED or not self._backend.is_alive():
            self._state.mark_exited(str(exc))
            return True
        return False


def open_session(selector: SelectorLike = None, **kwargs: Any) -> Pty:
    return Pty.open(selector, **kwargs)
