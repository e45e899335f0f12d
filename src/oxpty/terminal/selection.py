"""Backend choice per platform and capability probe."""

from __future__ import annotations

import logging as py_logging
import platform
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from oxpty.config import DEFAULT_TERM
from oxpty.errors import PtyError, PtyErrorKind
from oxpty.terminal.models import BackendKind

logger = py_logging.getLogger(__name__)

Probe = Callable[[], bool]

_DESCRIPTIONS = {
    BackendKind.UNIX: "POSIX pseudo-terminal (ptyprocess)",
    BackendKind.CONPTY: "Windows pseudo console (ConPTY)",
    BackendKind.WINPTY: "WinPTY agent (pywinpty)",
}


@dataclass(frozen=True)
class BackendInfo:
    kind: BackendKind | None
    platform: str
    conpty_available: bool
    fallback_available: bool
    description: str


def _default_conpty_probe() -> bool:
    from oxpty.terminal.backends.conpty import is_conpty_available

    return is_conpty_available()


def _default_fallback_probe() -> bool:
    from oxpty.terminal.backends.fallback import is_winpty_available

    return is_winpty_available()


def _is_windows(system_name: str | None) -> bool:
    return (system_name or platform.system()).lower() == "windows"


def choose_backend(
    *,
    system_name: str | None = None,
    conpty_probe: Probe | None = None,
    fallback_probe: Probe | None = None,
    allow_fallback: bool = True,
    force_fallback: bool = False,
) -> BackendKind:
    if not _is_windows(system_name):
        return BackendKind.UNIX

    conpty = False if force_fallback else (conpty_probe or _default_conpty_probe)()
    if conpty:
        return BackendKind.CONPTY

    if force_fallback:
        logger.info("ConPTY disabled by configuration, using the WinPTY fallback")
    else:
        logger.warning("ConPTY is not available on this system, trying the WinPTY fallback")

    if allow_fallback and (fallback_probe or _default_fallback_probe)():
        return BackendKind.WINPTY
    raise PtyError(
        "No pseudo-terminal backend is available.",
        kind=PtyErrorKind.NOT_AVAILABLE,
        hint=(
            "Upgrade to Windows 10 1809 or newer, or install `pywinpty` and enable allow_fallback."
            if allow_fallback
            else "Enable allow_fallback in the oxpty config to use WinPTY."
        ),
        operation="open",
    )


def create_backend(kind: BackendKind, *, term: str = DEFAULT_TERM) -> Any:
    if kind == BackendKind.UNIX:
        from oxpty.terminal.backends.unix import UnixBackend

        return UnixBackend(term=term)
    if kind == BackendKind.CONPTY:
        from oxpty.terminal.backends.conpty import ConPtyBackend

        return ConPtyBackend(term=term)
    if kind == BackendKind.WINPTY:
        from oxpty.terminal.backends.fallback import WinptyBackend

        return WinptyBackend(term=term)
    raise PtyError(f"Unknown backend: {kind}", kind=PtyErrorKind.INVALID_ARGUMENT)


def backend_info(
    *,
    system_name: str | None = None,
    conpty_probe: Probe | None = None,
    fallback_probe: Probe | None = None,
    allow_fallback: bool = True,
    force_fallback: bool = False,
) -> BackendInfo:
    system = system_name or platform.system()
    windows = _is_windows(system)
    conpty = windows and (conpty_probe or _default_conpty_probe)()
    fallback = windows and (fallback_probe or _default_fallback_probe)()
    try:
        kind: BackendKind | None = choose_backend(
            system_name=system,
            conpty_probe=lambda: conpty,
            fallback_probe=lambda: fallback,
            allow_fallback=allow_fallback,
            force_fallback=force_fallback,
        )
    except PtyError:
        kind = None
    return BackendInfo(
        kind=kind,
        platform=system,
        conpty_available=conpty,
        fallback_available=fallback,
        description=_DESCRIPTIONS[kind] if kind is not None else "unavailable",
    )
