from __future__ import annotations

import pytest

from oxpty.config import TerminalConfig
from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells import Shell, ShellKind, ShellSelector
from oxpty.terminal import PtySize


def test_default_size_is_24_by_80() -> None:
    assert PtySize() == PtySize(rows=24, cols=80)


@pytest.mark.parametrize(("rows", "cols"), [(0, 80), (24, 0), (-1, 80), (24, 0x8000)])
def test_invalid_sizes_are_rejected(rows: int, cols: int) -> None:
    with pytest.raises(PtyError) as exc_info:
        PtySize(rows=rows, cols=cols).validated()

    assert exc_info.value.kind == PtyErrorKind.INVALID_ARGUMENT


def test_largest_size_is_accepted() -> None:
    size = PtySize(rows=0x7FFF, cols=0x7FFF)

    assert size.validated() is size


def test_shell_argv_and_extra_args() -> None:
    shell = Shell(kind=ShellKind.GIT_BASH, executable=r"C:\Program Files\Git\bin\bash.exe", args=("--login", "-i"))

    extended = shell.with_args(["-c", "ls"])

    assert extended.argv == [r"C:\Program Files\Git\bin\bash.exe", "--login", "-i", "-c", "ls"]
    assert shell.with_args(()) is shell
    assert extended.name == "Git Bash"
    assert extended.newline == "\r"


def test_selector_from_config() -> None:
    auto = ShellSelector.from_config(TerminalConfig())
    named = ShellSelector.from_config(TerminalConfig(shell="fish", shell_args=["-l"], cwd="/srv"))

    assert auto.is_auto is True
    assert auto.cwd is None
    assert named == ShellSelector(shell="fish", args=("-l",), cwd="/srv")
    assert named.is_auto is False
