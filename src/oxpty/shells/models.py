"""Shell identity models."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

from oxpty.config import TerminalConfig


class ShellKind(str, Enum):
    POWERSHELL_CORE = "pwsh"
    POWERSHELL = "powershell"
    CMD = "cmd"
    WSL = "wsl"
    GIT_BASH = "git-bash"
    BASH = "bash"
    ZSH = "zsh"
    FISH = "fish"
    DASH = "dash"
    CUSTOM = "custom"


_DISPLAY_NAMES = {
    ShellKind.POWERSHELL_CORE: "PowerShell Core",
    ShellKind.POWERSHELL: "Windows PowerShell",
    ShellKind.CMD: "Command Prompt",
    ShellKind.WSL: "WSL",
    ShellKind.GIT_BASH: "Git Bash",
    ShellKind.BASH: "Bash",
    ShellKind.ZSH: "Zsh",
    ShellKind.FISH: "Fish",
    ShellKind.DASH: "Dash",
}

# Console shells on Windows submit a line on carriage return.
_CARRIAGE_RETURN_KINDS = {
    ShellKind.POWERSHELL_CORE,
    ShellKind.POWERSHELL,
    ShellKind.CMD,
    ShellKind.WSL,
    ShellKind.GIT_BASH,
}


@dataclass(frozen=True)
class Shell:
    kind: ShellKind
    executable: str
    args: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def name(self) -> str:
        return _DISPLAY_NAMES.get(self.kind, self.executable)

    @property
    def newline(self) -> str:
        return "\r" if self.kind in _CARRIAGE_RETURN_KINDS else "\n"

    def with_args(self, extra: Sequence[str]) -> Shell:
        if not extra:
            return self
        return replace(self, args=(*self.args, *extra))


@dataclass(frozen=True)
class ShellSelector:
    """Caller-side shell choice: kind, alias or executable path plus extras.

    ``shell=None`` (or ``"auto"``) asks the registry to detect the best shell.
    """

    shell: ShellKind | str | None = None
    args: tuple[str, ...] = ()
    cwd: str | None = None

    @property
    def is_auto(self) -> bool:
        return self.shell is None or (isinstance(self.shell, str) and self.shell.strip().lower() == "auto")

    @classmethod
    def from_config(cls, config: TerminalConfig) -> ShellSelector:
        return cls(
            shell=None if config.shell == "auto" else config.shell,
            args=tuple(config.shell_args),
            cwd=config.cwd or None,
        )
