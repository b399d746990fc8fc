"""Subprocess execution shared by the git and docker collaborators."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from docker_time_machine.utils.cancellation import OperationCancelledError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from docker_time_machine.utils.cancellation import CancellationToken

_POLL_INTERVAL_SECONDS = 0.1
_TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    command: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env_overrides: Mapping[str, str] | None = None,
    input_text: str | None = None,
    cancel_token: CancellationToken | None = None,
) -> CommandResult:
    """Run ``command`` to completion, honouring ``cancel_token`` while it runs.

    Without a token this is a plain ``subprocess.run``. With a token the child
    is polled; once the token is set the child is terminated (then killed) and
    ``OperationCancelledError`` is raised.
    """
    argv = tuple(command)
    run_cwd = Path(cwd).resolve() if cwd is not None else Path.cwd()
    env = os.environ.copy()
    env.update(env_overrides or {})

    if cancel_token is None:
        completed = subprocess.run(
            argv,
            cwd=run_cwd,
            env=env,
            text=True,
            capture_output=True,
            input=input_text,
            check=False,
        )
        return CommandResult(
            command=argv,
            cwd=run_cwd.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    cancel_token.raise_if_cancelled()
    process = subprocess.Popen(
        argv,
        cwd=run_cwd,
        env=env,
        text=True,
        stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    pending_input = input_text
    while True:
        try:
            stdout, stderr = process.communicate(
                input=pending_input, timeout=_POLL_INTERVAL_SECONDS
            )
            break
        except subprocess.TimeoutExpired:
            # communicate() must not be handed the input twice.
            pending_input = None
            if cancel_token.is_cancelled:
                _terminate(process)
                raise OperationCancelledError(
                    f"cancelled while running: {' '.join(argv)}"
                ) from None

    return CommandResult(
        command=argv,
        cwd=run_cwd.as_posix(),
        returncode=process.returncode,
        stdout=stdout,
        stderr=stderr,
    )


def _terminate(process: subprocess.Popen[str]) -> None:
    process.terminate()
    try:
        process.communicate(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()


__all__ = ["CommandResult", "run_command"]
