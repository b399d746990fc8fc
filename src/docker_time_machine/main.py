"""Executable CLI entrypoint for ``docker_time_machine``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Process exit codes shared by every subcommand."""

    SUCCESS = 0
    ANALYSIS_FAILED = 1
    CONFIG_ERROR = 2
    VCS_ERROR = 3
    INTERNAL_ERROR = 4


_KNOWN_CODES = frozenset(int(code) for code in ExitCode)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m docker_time_machine`` and the ``dtm`` script."""

    try:
        from docker_time_machine.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits on --help and usage errors.
        return _as_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _report(exc, exit_code)
        return int(exit_code)


def _as_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in _KNOWN_CODES:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _routing_table() -> tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]:
    from docker_time_machine.analysis.errors import AnalysisError
    from docker_time_machine.config import ConfigLoadError, ConfigValidationError
    from docker_time_machine.runtime.docker_engine import DockerEngineError
    from docker_time_machine.utils.cancellation import OperationCancelledError
    from docker_time_machine.vcs.git_engine import GitEngineError

    # First match wins; the generic OS and value errors come last.
    return (
        ((ConfigLoadError, ConfigValidationError), ExitCode.CONFIG_ERROR),
        ((GitEngineError,), ExitCode.VCS_ERROR),
        (
            (AnalysisError, DockerEngineError, OperationCancelledError, KeyboardInterrupt),
            ExitCode.ANALYSIS_FAILED,
        ),
        (
            (FileNotFoundError, NotADirectoryError, PermissionError, ValueError),
            ExitCode.CONFIG_ERROR,
        ),
    )


def _route_exception(exc: BaseException) -> ExitCode:
    table = _routing_table()
    for item in _causes(exc):
        for types, code in table:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and its explicit or implicit causes, stopping on cycles."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__suppress_context__:
            current = None
        else:
            current = current.__context__


def _report(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
    elif isinstance(exc, KeyboardInterrupt):
        _write_stderr("interrupted")
    else:
        _write_stderr(f"error: {str(exc).strip() or type(exc).__name__}")


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
