"""Module entrypoint for ``python -m wark``."""

from __future__ import annotations

from wark.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
