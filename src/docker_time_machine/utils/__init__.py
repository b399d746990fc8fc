"""Shared utilities: cooperative cancellation and subprocess execution."""

from docker_time_machine.utils.cancellation import (
    CancellationToken,
    OperationCancelledError,
    raise_if_cancelled,
)
from docker_time_machine.utils.process import CommandResult, run_command

__all__ = [
    "CancellationToken",
    "CommandResult",
    "OperationCancelledError",
    "raise_if_cancelled",
    "run_command",
]
