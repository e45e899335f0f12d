from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

from oxpty.config import (
    DEFAULT_TERM,
    FORCE_FALLBACK_ENV,
    SHELL_ENV,
    TerminalConfig,
    load_config,
    save_config,
    set_default_shell,
    set_wsl_distribution,
)


def test_load_missing_config_returns_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.toml", environ={})

    assert cfg.shell == "auto"
    assert (cfg.rows, cfg.cols) == (24, 80)
    assert cfg.allow_fallback is True
    assert cfg.force_fallback is False
    assert cfg.term == DEFAULT_TERM
    assert cfg.env == {}


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    cfg = TerminalConfig(
        shell="pwsh",
        shell_args=["-NoProfile"],
        cwd=r"C:\Users\dev",
        rows=40,
        cols=120,
        wsl_distribution="Ubuntu",
        allow_fallback=False,
        env={"LANG": "C.UTF-8"},
        log_level="DEBUG",
    )

    save_config(cfg, path)
    loaded = load_config(path, environ={})

    assert loaded == cfg


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_saved_config_is_private(tmp_path: Path) -> None:
    path = save_config(TerminalConfig(), tmp_path / "config.toml")

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_corrupt_toml_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("shell = [unterminated", encoding="utf-8")

    cfg = load_config(path, environ={})

    assert cfg == TerminalConfig()


def test_invalid_fields_are_replaced_by_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                'shell = ""',
                "rows = 0",
                "cols = 70000",
                'allow_fallback = "nope"',
                'log_level = "TRACE"',
                'shell_args = ["-l", 3]',
                "",
                "[env]",
                'GOOD = "yes"',
                '"BAD-NAME" = "no"',
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    cfg = load_config(path, environ={})

    assert cfg.shell == "auto"
    assert (cfg.rows, cfg.cols) == (24, 80)
    assert cfg.allow_fallback is True
    assert cfg.log_level == "INFO"
    assert cfg.shell_args == ["-l"]
    assert cfg.env == {"GOOD": "yes"}


def test_environment_overrides_file_values(tmp_path: Path) -> None:
    path = save_config(TerminalConfig(shell="bash"), tmp_path / "config.toml")

    cfg = load_config(path, environ={SHELL_ENV: "zsh", FORCE_FALLBACK_ENV: "1"})

    assert cfg.shell == "zsh"
    assert cfg.force_fallback is True


def test_environment_overrides_apply_without_a_file(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.toml", environ={FORCE_FALLBACK_ENV: "off"})

    assert cfg.force_fallback is False
    assert cfg.shell == "auto"


def test_model_rejects_invalid_assignments() -> None:
    cfg = TerminalConfig()

    with pytest.raises(ValidationError):
        cfg.rows = 0
    with pytest.raises(ValidationError):
        cfg.shell = "   "
    with pytest.raises(ValidationError):
        cfg.env = {"1BAD": "x"}


def test_set_default_shell_persists(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"

    set_default_shell("fish", path)

    assert load_config(path, environ={}).shell == "fish"


def test_set_wsl_distribution_persists_and_keeps_other_fields(tmp_path: Path) -> None:
    path = save_config(TerminalConfig(shell="wsl", cols=132), tmp_path / "config.toml")

    set_wsl_distribution("Debian", path)
    cfg = load_config(path, environ={})

    assert cfg.wsl_distribution == "Debian"
    assert cfg.shell == "wsl"
    assert cfg.cols == 132


def test_set_default_shell_ignores_environment_overrides(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "config.toml"
    monkeypatch.setenv(SHELL_ENV, "zsh")

    set_default_shell("bash", path)

    assert load_config(path, environ={}).shell == "bash"
