"""Diagnostics CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import json
import logging as py_logging
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from typing_extensions import TypedDict

from .config import TerminalConfig, load_config
from .errors import ExitCode, PtyError, user_facing_error
from .logging import configure_logging, default_log_path
from .shells.models import ShellSelector
from .shells.registry import ShellProbe, available, detect, probe_version
from .shells.wsl import Runner
from .terminal.selection import BackendInfo, backend_info
from .terminal.session import Pty

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

Opener = Callable[..., Pty]


class BackendReport(TypedDict):
    platform: str
    backend: str | None
    description: str
    conpty_available: bool
    fallback_available: bool


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _wait_type(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--wait must be a number of seconds") from exc
    if seconds < 0 or seconds > 600:
        raise argparse.ArgumentTypeError("--wait must be between 0 and 600 seconds")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oxpty")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    shells = commands.add_parser("shells", help="List shells found on this machine")
    shells.add_argument("--versions", action="store_true", help="Probe each shell for its version")

    info = commands.add_parser("info", help="Report the PTY backend this platform would use")
    info.add_argument("--json", action="store_true", dest="as_json")

    run = commands.add_parser("exec", help="Run one command in a fresh PTY session")
    run.add_argument("text", help="Command line to type into the shell")
    run.add_argument("--shell", default=None, help="Shell name or executable path (default: auto)")
    run.add_argument("--wait", type=_wait_type, default=1.0, help="Seconds to collect output")
    run.add_argument("--marker", default="", help="Stop waiting once this text appears")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def build_backend_report(info: BackendInfo) -> BackendReport:
    return BackendReport(
        platform=info.platform,
        backend=info.kind.value if info.kind is not None else None,
        description=info.description,
        conpty_available=info.conpty_available,
        fallback_available=info.fallback_available,
    )


def cmd_shells(
    namespace: argparse.Namespace,
    *,
    probe: ShellProbe | None = None,
    runner: Runner = subprocess.run,
    out: TextIO | None = None,
) -> int:
    out = out or sys.stdout
    active = probe or ShellProbe.current()
    shells = available(active)
    if not shells:
        print("No supported shells found.", file=out)
        return int(ExitCode.SPAWN_ERROR)
    default = detect(active)
    for shell in shells:
        marker = "*" if shell.executable == default.executable else " "
        line = f"{marker} {shell.kind.value:<11} {shell.executable}"
        if namespace.versions:
            version = probe_version(shell, runner)
            if version:
                line = f"{line}  ({version})"
        print(line, file=out)
    return int(ExitCode.SUCCESS)


def cmd_info(
    namespace: argparse.Namespace,
    config: TerminalConfig,
    *,
    out: TextIO | None = None,
) -> int:
    out = out or sys.stdout
    info = backend_info(allow_fallback=config.allow_fallback, force_fallback=config.force_fallback)
    report = build_backend_report(info)
    if namespace.as_json:
        print(json.dumps(report, sort_keys=True), file=out)
    else:
        print(f"platform:  {report['platform']}", file=out)
        print(f"backend:   {report['backend'] or 'none'} ({report['description']})", file=out)
        print(f"conpty:    {'yes' if report['conpty_available'] else 'no'}", file=out)
        print(f"fallback:  {'yes' if report['fallback_available'] else 'no'}", file=out)
    if info.kind is None:
        return int(ExitCode.UNSUPPORTED_PLATFORM)
    return int(ExitCode.SUCCESS)


def cmd_exec(
    namespace: argparse.Namespace,
    config: TerminalConfig,
    *,
    opener: Opener = Pty.open,
    out: TextIO | None = None,
) -> int:
    out = out or sys.stdout
    selector = ShellSelector(shell=namespace.shell) if namespace.shell else None
    with opener(selector, config=config) as session:
        session.run_command(namespace.text + session.shell.newline)
        if namespace.marker:
            session.wait_for_output(namespace.marker, namespace.wait)
        else:
            time.sleep(namespace.wait)
        out.write(session.drain_output())
        out.flush()
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    opener: Opener | None = None,
    probe: ShellProbe | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)

    try:
        if namespace.command == "shells":
            return cmd_shells(namespace, probe=probe)
        if namespace.command == "info":
            return cmd_info(namespace, config)
        return cmd_exec(namespace, config, opener=opener or Pty.open)
    except PtyError as exc:
        logger.error(
            "Handled PtyError (kind=%s, code=%s): %s",
            exc.kind.value,
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
