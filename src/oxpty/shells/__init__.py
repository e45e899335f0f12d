"""Shell identity, discovery and WSL helpers."""

from .models import Shell, ShellKind, ShellSelector
from .registry import ShellProbe, available, detect, from_selector, probe_version, resolve

__all__ = [
    "available",
    "detect",
    "from_selector",
    "probe_version",
    "resolve",
    "Shell",
    "ShellKind",
    "ShellProbe",
    "ShellSelector",
]
