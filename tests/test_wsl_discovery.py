from __future__ import annotations

import subprocess

import pytest

from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells.wsl import decode_process_output, list_distributions, validate_distribution, wsl_shell_args


def test_list_distributions_sorts_and_deduplicates() -> None:
    calls: list[list[str]] = []

    def runner(cmd, **kwargs):
        calls.append(list(cmd))
        return subprocess.CompletedProcess(cmd, 0, stdout="Ubuntu\nDebian\n\nUbuntu\n", stderr="")

    assert list_distributions(runner=runner) == ["Debian", "Ubuntu"]
    assert calls == [["wsl.exe", "-l", "-q"]]


def test_list_distributions_decodes_utf16_output() -> None:
    payload = "\ufeffUbuntu-22.04\r\nkali-linux\r\n".encode("utf-16le")

    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout=payload, stderr=b"")

    assert list_distributions(runner=runner) == ["Ubuntu-22.04", "kali-linux"]


def test_list_distributions_returns_empty_list_without_distributions() -> None:
    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")

    assert list_distributions(runner=runner) == []


def test_list_distributions_raises_on_failure() -> None:
    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="WSL is not enabled")

    with pytest.raises(PtyError) as exc_info:
        list_distributions(runner=runner)

    assert exc_info.value.kind == PtyErrorKind.NOT_AVAILABLE
    assert "WSL is not enabled" in exc_info.value.hint


def test_list_distributions_wraps_missing_executable() -> None:
    def runner(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    with pytest.raises(PtyError) as exc_info:
        list_distributions(runner=runner)

    assert exc_info.value.kind == PtyErrorKind.NOT_AVAILABLE
    assert isinstance(exc_info.value.__cause__, FileNotFoundError)


def test_decode_process_output_handles_text_and_empty_values() -> None:
    assert decode_process_output(None) == ""
    assert decode_process_output(b"") == ""
    assert decode_process_output("Ubuntu") == "Ubuntu"
    assert decode_process_output("Ubuntu\n".encode("utf-8")) == "Ubuntu\n"


def test_validate_distribution() -> None:
    assert validate_distribution("Ubuntu", ["Debian", "Ubuntu"]) is True
    assert validate_distribution("Arch", ["Debian", "Ubuntu"]) is False


def test_wsl_shell_args() -> None:
    assert wsl_shell_args(" Ubuntu ") == ("-d", "Ubuntu")
    assert wsl_shell_args("") == ()
    with pytest.raises(PtyError) as exc_info:
        wsl_shell_args("--exec")
    assert exc_info.value.kind == PtyErrorKind.INVALID_ARGUMENT
