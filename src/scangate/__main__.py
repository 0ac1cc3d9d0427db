"""Module entrypoint for ``python -m scangate``."""

from __future__ import annotations

from scangate.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
