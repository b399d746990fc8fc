"""UI package exports for the command-line surface."""

from docker_time_machine.ui.cli import CLIError, build_parser, main, run_cli

__all__ = ["CLIError", "build_parser", "main", "run_cli"]
