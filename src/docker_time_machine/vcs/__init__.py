"""Version-control collaborator backed by the git CLI."""

from docker_time_machine.vcs.git_engine import (
    CheckoutError,
    GitCommandError,
    GitEngine,
    GitEngineError,
    RefNotFoundError,
    RestoreError,
    WorkingTreeState,
)

__all__ = [
    "CheckoutError",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "RefNotFoundError",
    "RestoreError",
    "WorkingTreeState",
]
