"""Shell discovery: detect, list and resolve installed shells.

Every call re-probes the environment; nothing is cached at module level so a
shell installed while the editor runs is picked up by the next session.
"""

from __future__ import annotations

import logging as py_logging
import os
import platform
import posixpath
import shutil
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import PureWindowsPath

from oxpty.errors import PtyError, PtyErrorKind
from oxpty.shells.models import Shell, ShellKind, ShellSelector
from oxpty.shells.wsl import Runner, decode_process_output

logger = py_logging.getLogger(__name__)

WINDOWS_PRIORITY = (
    ShellKind.POWERSHELL_CORE,
    ShellKind.POWERSHELL,
    ShellKind.CMD,
    ShellKind.WSL,
    ShellKind.GIT_BASH,
)
UNIX_PRIORITY = (ShellKind.BASH, ShellKind.ZSH, ShellKind.FISH, ShellKind.DASH)

DEFAULT_ARGS: dict[ShellKind, tuple[str, ...]] = {
    ShellKind.POWERSHELL_CORE: ("-NoLogo",),
    ShellKind.POWERSHELL: ("-NoLogo",),
    ShellKind.GIT_BASH: ("--login", "-i"),
}

_ALIASES = {
    "pwsh": ShellKind.POWERSHELL_CORE,
    "pwsh.exe": ShellKind.POWERSHELL_CORE,
    "powershell-core": ShellKind.POWERSHELL_CORE,
    "powershell": ShellKind.POWERSHELL,
    "powershell.exe": ShellKind.POWERSHELL,
    "cmd": ShellKind.CMD,
    "cmd.exe": ShellKind.CMD,
    "wsl": ShellKind.WSL,
    "wsl.exe": ShellKind.WSL,
    "git-bash": ShellKind.GIT_BASH,
    "gitbash": ShellKind.GIT_BASH,
    "bash": ShellKind.BASH,
    "zsh": ShellKind.ZSH,
    "fish": ShellKind.FISH,
    "dash": ShellKind.DASH,
}

_VERSION_ARGS: dict[ShellKind, tuple[str, ...]] = {
    ShellKind.POWERSHELL_CORE: ("--version",),
    ShellKind.POWERSHELL: (
        "-NoLogo",
        "-NoProfile",
        "-Command",
        "$PSVersionTable.PSVersion.ToString()",
    ),
    ShellKind.CMD: ("/c", "ver"),
    ShellKind.WSL: ("--version",),
    ShellKind.GIT_BASH: ("--version",),
    ShellKind.BASH: ("--version",),
    ShellKind.ZSH: ("--version",),
    ShellKind.FISH: ("--version",),
}


def _default_is_file(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


@dataclass(frozen=True)
class ShellProbe:
    system: str
    environ: Mapping[str, str]
    which: Callable[[str], str | None]
    is_file: Callable[[str], bool]

    @classmethod
    def current(
        cls,
        *,
        system_name: str | None = None,
        environ: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] | None = None,
        is_file: Callable[[str], bool] | None = None,
    ) -> ShellProbe:
        env = dict(os.environ if environ is None else environ)
        search_path = next((value for key, value in env.items() if key.upper() == "PATH"), None)

        def _which(name: str) -> str | None:
            return shutil.which(name, path=search_path)

        return cls(
            system=system_name or platform.system(),
            environ=env,
            which=which or _which,
            is_file=is_file or _default_is_file,
        )

    @property
    def is_windows(self) -> bool:
        return self.system.lower() == "windows"

    def env(self, name: str) -> str:
        # Windows environment names are case-insensitive.
        if self.is_windows:
            for key, value in self.environ.items():
                if key.upper() == name.upper():
                    return value
            return ""
        return self.environ.get(name, "")

    def first_existing(self, candidates: list[str]) -> str | None:
        for candidate in candidates:
            if candidate and self.is_file(candidate):
                return candidate
        return None


def _win_join(*parts: str) -> str:
    return str(PureWindowsPath(*parts))


def _system32(probe: ShellProbe, *parts: str) -> str:
    root = probe.env("SystemRoot") or probe.env("windir") or r"C:\Windows"
    return _win_join(root, "System32", *parts)


def _program_files(probe: ShellProbe) -> list[str]:
    roots = [
        probe.env("ProgramFiles") or r"C:\Program Files",
        probe.env("ProgramFiles(x86)") or r"C:\Program Files (x86)",
        probe.env("ProgramW6432"),
    ]
    unique: list[str] = []
    for root in roots:
        if root and root not in unique:
            unique.append(root)
    return unique


def _git_bash_candidates(probe: ShellProbe) -> list[str]:
    candidates: list[str] = []
    git = probe.which("git.exe") or probe.which("git")
    if git:
        # git.exe lives in <root>\cmd or <root>\bin; bash.exe in <root>\bin.
        install_root = PureWindowsPath(git).parent.parent
        candidates.append(_win_join(str(install_root), "bin", "bash.exe"))
    for root in _program_files(probe):
        candidates.append(_win_join(root, "Git", "bin", "bash.exe"))
    local_app_data = probe.env("LOCALAPPDATA")
    if local_app_data:
        candidates.append(_win_join(local_app_data, "Programs", "Git", "bin", "bash.exe"))
    candidates.append(r"C:\Git\bin\bash.exe")
    return candidates


def _resolve_windows(kind: ShellKind, probe: ShellProbe) -> str | None:
    if kind == ShellKind.POWERSHELL_CORE:
        found = probe.which("pwsh.exe")
        if found:
            return found
        return probe.first_existing(
            [_win_join(root, "PowerShell", "7", "pwsh.exe") for root in _program_files(probe)]
        )
    if kind == ShellKind.POWERSHELL:
        return probe.which("powershell.exe") or probe.first_existing(
            [_system32(probe, "WindowsPowerShell", "v1.0", "powershell.exe")]
        )
    if kind == ShellKind.CMD:
        return probe.first_existing([probe.env("COMSPEC")]) or probe.which("cmd.exe") or probe.first_existing(
            [_system32(probe, "cmd.exe")]
        )
    if kind == ShellKind.WSL:
        return probe.which("wsl.exe") or probe.first_existing([_system32(probe, "wsl.exe")])
    if kind == ShellKind.GIT_BASH:
        return probe.first_existing(_git_bash_candidates(probe))
    return None


def _resolve_unix(kind: ShellKind, probe: ShellProbe) -> str | None:
    if kind not in UNIX_PRIORITY:
        return None
    return probe.which(kind.value)


def _kind_for_executable(path: str) -> ShellKind:
    name = posixpath.basename(path.replace("\\", "/")).lower()
    kind = _ALIASES.get(name)
    if kind is None and name.endswith(".exe"):
        kind = _ALIASES.get(name[:-4])
    if kind is None or kind == ShellKind.GIT_BASH:
        return ShellKind.CUSTOM
    return kind


def _login_shell(probe: ShellProbe) -> Shell | None:
    configured = probe.env("SHELL").strip()
    if not configured:
        return None
    path = configured if probe.is_file(configured) else probe.which(configured)
    if not path:
        logger.debug("Ignoring $SHELL=%s: not an executable", configured)
        return None
    return Shell(kind=_kind_for_executable(path), executable=path)


def resolve(kind: ShellKind, probe: ShellProbe | None = None) -> Shell | None:
    active = probe or ShellProbe.current()
    if kind == ShellKind.CUSTOM:
        return None
    executable = _resolve_windows(kind, active) if active.is_windows else _resolve_unix(kind, active)
    if not executable:
        return None
    return Shell(kind=kind, executable=executable, args=DEFAULT_ARGS.get(kind, ()))


def available(probe: ShellProbe | None = None) -> list[Shell]:
    active = probe or ShellProbe.current()
    if active.is_windows:
        priority = WINDOWS_PRIORITY
        shells: list[Shell] = []
    else:
        priority = UNIX_PRIORITY
        login = _login_shell(active)
        shells = [login] if login is not None and login.kind == ShellKind.CUSTOM else []
    for kind in priority:
        shell = resolve(kind, active)
        if shell is not None:
            shells.append(shell)
    logger.debug("Available shells: %s", ", ".join(shell.kind.value for shell in shells) or "none")
    return shells


def detect(probe: ShellProbe | None = None) -> Shell:
    active = probe or ShellProbe.current()
    if not active.is_windows:
        login = _login_shell(active)
        if login is not None:
            return login
    for kind in WINDOWS_PRIORITY if active.is_windows else UNIX_PRIORITY:
        shell = resolve(kind, active)
        if shell is not None:
            logger.debug("Detected shell %s at %s", shell.kind.value, shell.executable)
            return shell
    raise PtyError(
        "No supported shell executable was found.",
        kind=PtyErrorKind.SPAWN_FAILED,
        hint="Install a shell or set `shell` in the oxpty config.",
        operation="detect",
    )


def _resolve_named(name: str, probe: ShellProbe) -> Shell:
    kind = _ALIASES.get(name.lower())
    if kind is not None:
        shell = resolve(kind, probe)
        if shell is None:
            raise PtyError(
                f"Shell is not installed: {name}",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint="Run `oxpty shells` to list the shells found on this machine.",
                operation="resolve",
            )
        return shell

    path = name if probe.is_file(name) else probe.which(name)
    if not path:
        raise PtyError(
            f"Unknown shell: {name}",
            kind=PtyErrorKind.SPAWN_FAILED,
            hint="Use a known shell name or the full path to an executable.",
            operation="resolve",
        )
    return Shell(kind=_kind_for_executable(path), executable=path)


def from_selector(selector: ShellSelector | None = None, probe: ShellProbe | None = None) -> Shell:
    active = probe or ShellProbe.current()
    chosen = selector or ShellSelector()
    if chosen.is_auto:
        shell = detect(active)
    elif isinstance(chosen.shell, ShellKind):
        if chosen.shell == ShellKind.CUSTOM:
            raise PtyError(
                "A custom shell needs an executable path.",
                kind=PtyErrorKind.INVALID_ARGUMENT,
                hint="Pass the executable path instead of the custom kind.",
                operation="resolve",
            )
        resolved = resolve(chosen.shell, active)
        if resolved is None:
            raise PtyError(
                f"Shell is not installed: {chosen.shell.value}",
                kind=PtyErrorKind.SPAWN_FAILED,
                hint="Run `oxpty shells` to list the shells found on this machine.",
                operation="resolve",
            )
        shell = resolved
    else:
        shell = _resolve_named(str(chosen.shell).strip(), active)
    return shell.with_args(chosen.args)


def probe_version(shell: Shell, runner: Runner = subprocess.run, *, timeout: float = 5.0) -> str:
    args = _VERSION_ARGS.get(shell.kind)
    if args is None:
        return ""
    try:
        result = runner(
            [shell.executable, *args],
            capture_output=True,
            text=False,
            check=False,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("Version probe failed for %s: %s", shell.executable, exc)
        return ""
    if result.returncode != 0:
        return ""
    for line in decode_process_output(result.stdout).splitlines():
        if line.strip():
            return line.strip()
    return ""
