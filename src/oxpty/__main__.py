"""Module entrypoint for `python -m oxpty`."""

from oxpty.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
