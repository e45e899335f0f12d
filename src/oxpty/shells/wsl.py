"""WSL distribution discovery and shell argument builders."""

from __future__ import annotations

import logging as py_logging
import subprocess
from collections.abc import Callable, Sequence

from oxpty.errors import PtyError, PtyErrorKind

logger = py_logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


def decode_process_output(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if not value:
        return ""

    # wsl.exe may emit UTF-16LE in Windows consoles.
    if b"\x00" in value:
        for encoding in ("utf-16le", "utf-16"):
            try:
                return value.decode(encoding).replace("\ufeff", "")
            except UnicodeDecodeError:
                continue

    for encoding in ("utf-8", "cp1252"):
        try:
            return value.decode(encoding)
        except UnicodeDecodeError:
            continue
    return value.decode("utf-8", errors="replace")


def list_distributions(runner: Runner = subprocess.run, *, executable: str = "wsl.exe") -> list[str]:
    logger.debug("Listing WSL distributions using %s -l -q", executable)
    try:
        result = runner([executable, "-l", "-q"], capture_output=True, text=False, check=False)
    except OSError as exc:
        raise PtyError(
            "Failed to list WSL distributions.",
            kind=PtyErrorKind.NOT_AVAILABLE,
            hint="Check WSL installation.",
            operation="list-distributions",
        ) from exc
    stdout = decode_process_output(result.stdout)
    stderr = decode_process_output(result.stderr)
    if result.returncode != 0:
        logger.error("WSL distribution listing failed: %s", stderr.strip())
        raise PtyError(
            "Failed to list WSL distributions.",
            kind=PtyErrorKind.NOT_AVAILABLE,
            hint=(stderr or "Check WSL installation.").strip(),
            operation="list-distributions",
        )

    distros = sorted({line.strip() for line in stdout.splitlines() if line.strip()})
    logger.debug("Discovered %s WSL distributions", len(distros))
    return distros


def validate_distribution(distribution: str, available: Sequence[str]) -> bool:
    return distribution in set(available)


def wsl_shell_args(distribution: str) -> tuple[str, ...]:
    name = distribution.strip()
    if not name:
        return ()
    if name.startswith("-"):
        raise PtyError(
            f"Invalid WSL distribution name: {name}",
            kind=PtyErrorKind.INVALID_ARGUMENT,
            hint="Use a distribution name listed by `wsl.exe -l -q`.",
        )
    return ("-d", name)
