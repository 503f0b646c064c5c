"""Module entrypoint for ``python -m issue_loop``."""

from __future__ import annotations

from issue_loop.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
