from __future__ import annotations

import logging as py_logging
import threading

import pytest

from oxpty.config import TerminalConfig
from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells import ShellKind, ShellProbe, ShellSelector
from oxpty.terminal import BackendKind, Pty, PtySize, SessionStatus, SignalKind, open_session


class _FakeBackend:
    capability = "fake"

    def __init__(self) -> None:
        self.sink = None
        self.spawned: dict[str, object] = {}
        self.writes: list[bytes] = []
        self.sizes: list[PtySize] = []
        self.signals: list[SignalKind] = []
        self.unsupported: set[SignalKind] = set()
        self.write_error: PtyError | None = None
        self.resize_error: PtyError | None = None
        self.spawn_error: PtyError | None = None
        self.alive = True
        self.terminate_calls = 0

    def spawn(self, shell, size, sink, *, cwd=None, env=None) -> None:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.sink = sink
        self.spawned = {"shell": shell, "size": size, "cwd": cwd, "env": dict(env or {})}

    def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(data)

    def try_read(self) -> bytes:
        return b""

    def resize(self, size: PtySize) -> None:
        if self.resize_error is not None:
            raise self.resize_error
        self.sizes.append(size)

    def signal(self, kind: SignalKind) -> None:
        if kind in self.unsupported:
            raise PtyError(f"{kind.value} is not supported", kind=PtyErrorKind.SIGNAL_UNSUPPORTED)
        self.signals.append(kind)

    def is_alive(self) -> bool:
        return self.alive

    def terminate(self) -> None:
        self.terminate_calls += 1
        self.alive = False

    def emit(self, data: bytes) -> None:
        self.sink.append_output(data)

    def exit(self) -> None:
        self.alive = False
        self.sink.mark_exited("end of stream")


def _unix_probe() -> ShellProbe:
    bins = {"bash": "/usr/bin/bash", "zsh": "/usr/bin/zsh"}
    return ShellProbe(system="Linux", environ={}, which=bins.get, is_file=lambda path: path in bins.values())


def _open(backend: _FakeBackend, selector=None, **kwargs) -> Pty:
    seen: list[tuple[BackendKind, str]] = []

    def factory(kind: BackendKind, *, term: str) -> _FakeBackend:
        seen.append((kind, term))
        return backend

    kwargs.setdefault("probe", _unix_probe())
    kwargs.setdefault("env", {"PATH": "/usr/bin"})
    session = Pty.open(selector, backend_factory=factory, **kwargs)
    assert len(seen) == 1
    return session


def test_open_spawns_detected_shell_with_config_defaults() -> None:
    backend = _FakeBackend()
    config = TerminalConfig(cwd="/srv/project", env={"LANG": "C.UTF-8"}, term="xterm")
    seen: list[tuple[BackendKind, str]] = []

    def factory(kind: BackendKind, *, term: str) -> _FakeBackend:
        seen.append((kind, term))
        return backend

    session = Pty.open(config=config, probe=_unix_probe(), env={"PATH": "/usr/bin"}, backend_factory=factory)

    assert seen == [(BackendKind.UNIX, "xterm")]
    assert session.shell.kind == ShellKind.BASH
    assert session.backend_kind == BackendKind.UNIX
    assert session.backend_name == "fake"
    assert session.size == PtySize(rows=24, cols=80)
    assert backend.spawned["size"] == PtySize(rows=24, cols=80)
    assert backend.spawned["cwd"] == "/srv/project"
    assert backend.spawned["env"] == {"PATH": "/usr/bin", "LANG": "C.UTF-8"}
    assert session.status == SessionStatus.RUNNING


def test_open_uses_selector_cwd_and_size() -> None:
    backend = _FakeBackend()

    session = _open(backend, ShellSelector(shell="zsh", args=("-f",), cwd="/tmp"), size=PtySize(rows=50, cols=200))

    assert session.shell.argv == ["/usr/bin/zsh", "-f"]
    assert backend.spawned["cwd"] == "/tmp"
    assert session.size == PtySize(rows=50, cols=200)


def test_open_rejects_invalid_size_before_spawning() -> None:
    backend = _FakeBackend()

    with pytest.raises(PtyError) as exc_info:
        Pty.open(size=PtySize(rows=0, cols=80), probe=_unix_probe(), backend_factory=lambda kind, term: backend)

    assert exc_info.value.kind == PtyErrorKind.INVALID_ARGUMENT
    assert backend.spawned == {}


def test_open_propagates_spawn_failure() -> None:
    backend = _FakeBackend()
    backend.spawn_error = PtyError("exec failed", kind=PtyErrorKind.SPAWN_FAILED)

    with pytest.raises(PtyError) as exc_info:
        _open(backend)

    assert exc_info.value.kind == PtyErrorKind.SPAWN_FAILED


def test_open_rejects_shell_that_dies_during_spawn() -> None:
    class _DeadOnArrival(_FakeBackend):
        def spawn(self, shell, size, sink, *, cwd=None, env=None) -> None:
            super().spawn(shell, size, sink, cwd=cwd, env=env)
            sink.append_output(b"bash: --bogus: invalid option\r\n")
            self.alive = False

    backend = _DeadOnArrival()

    with pytest.raises(PtyError) as exc_info:
        Pty.open(probe=_unix_probe(), env={}, backend_factory=lambda kind, term: backend)

    assert exc_info.value.kind == PtyErrorKind.SPAWN_FAILED
    assert exc_info.value.hint == "bash: --bogus: invalid option"
    assert backend.terminate_calls == 1


def test_open_falls_back_to_winpty_when_conpty_is_missing() -> None:
    backend = _FakeBackend()
    bins = {"cmd.exe": r"C:\Windows\System32\cmd.exe"}
    probe = ShellProbe(system="Windows", environ={}, which=bins.get, is_file=lambda path: False)

    session = _open(backend, probe=probe, conpty_probe=lambda: False, fallback_probe=lambda: True)

    assert session.backend_kind == BackendKind.WINPTY
    assert session.shell.newline == "\r"


def test_open_applies_wsl_distribution_from_config() -> None:
    backend = _FakeBackend()
    bins = {"wsl.exe": r"C:\Windows\System32\wsl.exe"}
    probe = ShellProbe(system="Windows", environ={}, which=bins.get, is_file=lambda path: False)

    session = _open(
        backend,
        "wsl",
        probe=probe,
        config=TerminalConfig(wsl_distribution="Ubuntu"),
        conpty_probe=lambda: True,
    )

    assert session.backend_kind == BackendKind.CONPTY
    assert session.shell.args == ("-d", "Ubuntu")


def test_run_command_forwards_exact_bytes() -> None:
    backend = _FakeBackend()
    session = _open(backend)

    assert session.run_command("echo héllo\n") is True
    assert session.write(b"\x1b[A") is True

    assert backend.writes == ["echo héllo\n".encode("utf-8"), b"\x1b[A"]


def test_char_input_tracks_pending_line_and_matches_run_command() -> None:
    typed = _FakeBackend()
    session = _open(typed)

    for char in "ls -la\n":
        assert session.char_input(char) is True
        if char != "\n":
            assert session.pending_input.endswith(char)

    assert b"".join(typed.writes) == b"ls -la\n"
    assert session.pending_input == ""


def test_char_input_rejects_more_than_one_character() -> None:
    session = _open(_FakeBackend())

    with pytest.raises(PtyError) as exc_info:
        session.char_input("ab")

    assert exc_info.value.kind == PtyErrorKind.INVALID_ARGUMENT


def test_char_pop_removes_pending_character_and_sends_delete() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    session.char_input("l")
    session.char_input("s")

    assert session.char_pop() == "s"
    assert session.pending_input == "l"
    assert session.char_pop() == "l"
    assert session.char_pop() is None

    assert backend.writes == [b"l", b"s", b"\x7f", b"\x7f", b"\x7f"]


def test_output_accessors_and_update_flag() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    assert session.has_updates() is False

    backend.emit(b"prompt$ ")

    assert session.has_updates() is True
    assert session.has_updates() is False
    assert session.output() == "prompt$ "
    assert session.output_bytes() == b"prompt$ "
    assert session.drain_output() == "prompt$ "
    assert session.output() == ""


def test_silent_run_command_and_clear_drop_previous_output() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    backend.emit(b"old output")

    assert session.silent_run_command("pwd\n") is True
    assert session.output() == ""

    backend.emit(b"more")
    assert session.clear() is True

    assert session.output() == ""
    assert backend.writes == [b"pwd\n", b"\n"]


def test_wait_for_output_sees_output_from_reader_thread() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    timer = threading.Timer(0.05, backend.emit, args=(b"DONE\n",))
    timer.start()
    try:
        assert session.wait_for_output("DONE", timeout=5.0) is True
    finally:
        timer.cancel()


def test_resize_updates_size_and_validates_bounds() -> None:
    backend = _FakeBackend()
    session = _open(backend)

    assert session.resize(30, 100) is True
    assert session.size == PtySize(rows=30, cols=100)
    assert backend.sizes == [PtySize(rows=30, cols=100)]

    with pytest.raises(PtyError) as exc_info:
        session.resize(0, 100)
    assert exc_info.value.kind == PtyErrorKind.INVALID_ARGUMENT
    assert session.size == PtySize(rows=30, cols=100)


def test_failed_resize_keeps_previous_size() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    backend.resize_error = PtyError("ioctl failed", kind=PtyErrorKind.RESIZE_FAILED)

    with pytest.raises(PtyError) as exc_info:
        session.resize(40, 120)

    assert exc_info.value.kind == PtyErrorKind.RESIZE_FAILED
    assert session.size == PtySize(rows=24, cols=80)


def test_signal_forwards_supported_kinds() -> None:
    backend = _FakeBackend()
    session = _open(backend)

    assert session.signal(SignalKind.INTERRUPT) is True
    assert session.signal(SignalKind.EOF) is True

    assert backend.signals == [SignalKind.INTERRUPT, SignalKind.EOF]


def test_unsupported_signal_is_reported_once(caplog: pytest.LogCaptureFixture) -> None:
    backend = _FakeBackend()
    backend.unsupported = {SignalKind.SUSPEND}
    session = _open(backend)

    with caplog.at_level(py_logging.WARNING, logger="oxpty.terminal.session"):
        assert session.signal(SignalKind.SUSPEND) is False
        assert session.signal(SignalKind.SUSPEND) is False

    warnings = [record for record in caplog.records if "suspend" in record.getMessage()]
    assert len(warnings) == 1
    assert session.is_alive() is True


def test_operations_after_exit_are_noops() -> None:
    backend = _FakeBackend()
    session = _open(backend)

    backend.exit()

    assert session.status == SessionStatus.EXITED
    assert session.run_command("echo\n") is False
    assert session.char_input("x") is False
    assert session.char_pop() is None
    assert session.signal(SignalKind.INTERRUPT) is False
    assert session.resize(30, 100) is False
    assert backend.writes == []
    assert backend.signals == []


def test_broken_pipe_while_alive_raises() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    backend.write_error = PtyError("PTY write failed", kind=PtyErrorKind.BROKEN_PIPE)

    with pytest.raises(PtyError) as exc_info:
        session.run_command("ls\n")

    assert exc_info.value.kind == PtyErrorKind.BROKEN_PIPE


def test_broken_pipe_after_child_exit_reports_false() -> None:
    backend = _FakeBackend()
    session = _open(backend)

    def dying_write(data: bytes) -> None:
        backend.alive = False
        raise PtyError("PTY write failed", kind=PtyErrorKind.BROKEN_PIPE)

    backend.write = dying_write  # type: ignore[method-assign]

    assert session.run_command("exit\n") is False
    assert session.status == SessionStatus.EXITED


def test_terminate_is_idempotent_and_closes_session() -> None:
    backend = _FakeBackend()
    session = _open(backend)

    session.terminate()
    session.close()

    assert backend.terminate_calls == 1
    assert session.status == SessionStatus.CLOSED
    assert session.is_alive() is False
    assert session.run_command("ls\n") is False


def test_context_manager_terminates_on_exit() -> None:
    backend = _FakeBackend()

    with open_session(
        probe=_unix_probe(),
        env={},
        backend_factory=lambda kind, term: backend,
    ) as session:
        assert "bash" in repr(session)

    assert backend.terminate_calls == 1
    assert session.status == SessionStatus.CLOSED


def test_terminate_swallows_backend_errors(caplog: pytest.LogCaptureFixture) -> None:
    backend = _FakeBackend()
    session = _open(backend)

    def failing_terminate() -> None:
        raise PtyError("close failed", kind=PtyErrorKind.BROKEN_PIPE)

    backend.terminate = failing_terminate  # type: ignore[method-assign]

    with caplog.at_level(py_logging.WARNING, logger="oxpty.terminal.session"):
        session.terminate()

    assert session.status == SessionStatus.CLOSED
    assert "Backend termination reported an error" in caplog.text


def test_silent_run_command_keeps_only_command_output() -> None:
    backend = _FakeBackend()
    session = _open(backend)
    backend.emit(b"bash$ ")

    assert session.silent_run_command("echo hi\n") is True
    backend.emit(b"echo hi\r\n")
    backend.emit(b"hi\r\nbash$ ")

    assert session.output() == "hi\r\nbash$ "


def test_signal_waits_for_an_in_flight_write() -> None:
    entered = threading.Event()
    release = threading.Event()
    order: list[str] = []

    class _SlowWriter(_FakeBackend):
        def write(self, data: bytes) -> None:
            entered.set()
            release.wait(5.0)
            order.append("write")

        def signal(self, kind: SignalKind) -> None:
            order.append(kind.value)

    backend = _SlowWriter()
    session = _open(backend)
    writer = threading.Thread(target=session.write, args=(b"long input",))
    writer.start()
    assert entered.wait(5.0)

    signaller = threading.Thread(target=session.signal, args=(SignalKind.INTERRUPT,))
    signaller.start()
    signaller.join(0.1)
    assert order == []

    release.set()
    writer.join(5.0)
    signaller.join(5.0)

    assert order == ["write", SignalKind.INTERRUPT.value]
