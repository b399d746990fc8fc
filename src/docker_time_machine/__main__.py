"""Module entrypoint for ``python -m docker_time_machine``."""

from __future__ import annotations

from docker_time_machine.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
