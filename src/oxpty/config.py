"""XDG config loading/saving."""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Mapping
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/oxpty/config.toml").expanduser()
DEFAULT_ROWS = 24
DEFAULT_COLS = 80
MAX_DIMENSION = 0x7FFF
DEFAULT_TERM = "xterm-256color"
SHELL_ENV = "OXPTY_SHELL"
FORCE_FALLBACK_ENV = "OXPTY_FORCE_FALLBACK"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}
_TRUTHY = {"1", "true", "yes", "on"}
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

LogLevel = Literal["DEBUG", "INFO", "WARN", "ERROR"]


class TerminalConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    shell: str = "auto"
    shell_args: list[str] = Field(default_factory=list)
    cwd: str = ""
    rows: int = Field(default=DEFAULT_ROWS, ge=1, le=MAX_DIMENSION)
    cols: int = Field(default=DEFAULT_COLS, ge=1, le=MAX_DIMENSION)
    wsl_distribution: str = ""
    allow_fallback: bool = True
    force_fallback: bool = False
    term: str = DEFAULT_TERM
    env: dict[str, str] = Field(default_factory=dict)
    log_level: LogLevel = "INFO"

    @field_validator("shell")
    @classmethod
    def _validate_shell(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Shell cannot be empty")
        return stripped

    @field_validator("env")
    @classmethod
    def _validate_env(cls, value: dict[str, str]) -> dict[str, str]:
        for name in value:
            if not _ENV_NAME.match(name):
                raise ValueError(f"Invalid environment variable name: {name}")
        return value


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _normalize_args(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _normalize_env(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {
        name: str(item)
        for name, item in value.items()
        if isinstance(name, str) and _ENV_NAME.match(name) and isinstance(item, (str, int))
    }


def _dimension(value: object, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= MAX_DIMENSION:
        return value
    return default


def _apply_env_overrides(cfg: TerminalConfig, environ: Mapping[str, str]) -> None:
    shell_override = environ.get(SHELL_ENV, "").strip()
    if shell_override:
        cfg.shell = shell_override
    fallback_override = environ.get(FORCE_FALLBACK_ENV, "").strip().lower()
    if fallback_override:
        cfg.force_fallback = fallback_override in _TRUTHY


def _sanitize(raw: dict[str, object]) -> TerminalConfig:
    cfg = TerminalConfig()

    shell = raw.get("shell", cfg.shell)
    if isinstance(shell, str) and shell.strip():
        cfg.shell = shell

    cfg.shell_args = _normalize_args(raw.get("shell_args", []))

    cwd = raw.get("cwd", cfg.cwd)
    if isinstance(cwd, str):
        cfg.cwd = cwd

    cfg.rows = _dimension(raw.get("rows"), cfg.rows)
    cfg.cols = _dimension(raw.get("cols"), cfg.cols)

    wsl_distribution = raw.get("wsl_distribution", "")
    if isinstance(wsl_distribution, str):
        cfg.wsl_distribution = wsl_distribution.strip()

    allow_fallback = raw.get("allow_fallback", cfg.allow_fallback)
    if isinstance(allow_fallback, bool):
        cfg.allow_fallback = allow_fallback

    force_fallback = raw.get("force_fallback", cfg.force_fallback)
    if isinstance(force_fallback, bool):
        cfg.force_fallback = force_fallback

    term = raw.get("term", cfg.term)
    if isinstance(term, str) and term.strip():
        cfg.term = term.strip()

    cfg.env = _normalize_env(raw.get("env", {}))

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str) and log_level.upper() in _VALID_LOG_LEVELS:
        cfg.log_level = cast(LogLevel, log_level.upper())

    return cfg


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> TerminalConfig:
    resolved = get_config_path(path)
    env = os.environ if environ is None else environ
    cfg = TerminalConfig()
    if resolved.exists():
        try:
            with resolved.open("rb") as handle:
                raw = tomllib.load(handle)
        except (tomllib.TOMLDecodeError, OSError):
            raw = {}
        if isinstance(raw, dict):
            cfg = _sanitize(raw)
    _apply_env_overrides(cfg, env)
    return cfg


def save_config(config: TerminalConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"shell = {_toml_scalar(config.shell)}",
        f"shell_args = {_toml_scalar(list(config.shell_args))}",
        f"cwd = {_toml_scalar(config.cwd)}",
        f"rows = {_toml_scalar(config.rows)}",
        f"cols = {_toml_scalar(config.cols)}",
        f"wsl_distribution = {_toml_scalar(config.wsl_distribution)}",
        f"allow_fallback = {_toml_scalar(config.allow_fallback)}",
        f"force_fallback = {_toml_scalar(config.force_fallback)}",
        f"term = {_toml_scalar(config.term)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]

    if config.env:
        lines.append("")
        lines.append("[env]")
        for name, value in sorted(config.env.items()):
            lines.append(f"{name} = {_toml_scalar(value)}")

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved


def set_default_shell(shell: str, path: str | Path | None = None) -> TerminalConfig:
    config = load_config(path, environ={})
    config.shell = shell
    save_config(config, path)
    return config


def set_wsl_distribution(distribution: str, path: str | Path | None = None) -> TerminalConfig:
    config = load_config(path, environ={})
    config.wsl_distribution = distribution
    save_config(config, path)
    return config
