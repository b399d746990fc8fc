"""Git CLI wrapper: history enumeration, ref resolution and working-tree checkout."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from docker_time_machine.analysis.models import HistoricalPoint
from docker_time_machine.utils.cancellation import raise_if_cancelled
from docker_time_machine.utils.process import CommandResult, run_command

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

    from docker_time_machine.utils.cancellation import CancellationToken

_FIELD_SEPARATOR = "\x1f"
_LOG_FORMAT = "%H%x1f%an%x1f%aI%x1f%s"
_HEX_IDENTITY_RE = re.compile(r"^[0-9a-fA-F]{4,64}$")


class GitEngineError(RuntimeError):
    """Base error for git engine failures."""


class GitCommandError(GitEngineError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class RefNotFoundError(GitEngineError):
    """Raised when a name resolves to no branch, tag or commit."""

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"could not resolve revision: {ref}")


class CheckoutError(GitEngineError):
    """Raised when the working tree cannot be moved to a point."""


class RestoreError(GitEngineError):
    """Raised when the working tree cannot be returned to its captured state."""


@dataclass(frozen=True, slots=True)
class WorkingTreeState:
    """Where the working tree pointed before a run: a branch or a detached commit."""

    ref: str
    commit: str
    detached: bool

    def describe(self) -> str:
        return self.commit if self.detached else self.ref


class GitEngine:
    """Deterministic wrapper around the git CLI for one repository."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        git_binary: str = "git",
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self.git_binary = git_binary
        self._env_overrides = dict(env_overrides or {})

    def ensure_repository(self) -> None:
        """Raise ``GitEngineError`` unless ``repo_path`` is inside a git work tree."""
        if not self.repo_path.is_dir():
            raise GitEngineError(f"repository path is not a directory: {self.repo_path}")
        result = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        if result.returncode != 0 or result.stdout.strip() != "true":
            raise GitEngineError(f"not a git repository: {self.repo_path}")

    def resolve_ref(self, name: str) -> str:
        """Resolve a commit identity, branch or tag to a full commit identity."""
        ref = name.strip()
        if not ref or ref.startswith("-"):
            raise RefNotFoundError(name)

        candidates = [f"refs/heads/{ref}", f"refs/tags/{ref}", ref]
        if _HEX_IDENTITY_RE.fullmatch(ref):
            candidates.insert(0, candidates.pop())

        for candidate in candidates:
            result = self._run_git(
                ["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"], check=False
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        raise RefNotFoundError(name)

    def show_point(self, ref: str) -> HistoricalPoint:
        """Return the ``HistoricalPoint`` for a single resolvable ref."""
        identity = self.resolve_ref(ref)
        output = self._run_git(["log", "-1", f"--format={_LOG_FORMAT}", identity]).stdout
        line = output.strip("\n")
        if not line:
            raise RefNotFoundError(ref)
        return _parse_log_line(line)

    def iter_ancestry(
        self,
        start: str,
        *,
        path_filter: str | None = None,
        exclude: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[HistoricalPoint]:
        """Lazily yield points reachable from ``start`` in git's ancestry order.

        ``exclude`` drops every point reachable from it; ``path_filter`` keeps
        only points touching that path. Closing the iterator early stops the
        underlying ``git log`` process.
        """
        args = ["log", f"--format={_LOG_FORMAT}", start]
        if exclude is not None:
            args.append(f"^{exclude}")
        if path_filter is not None:
            args.extend(["--", path_filter])

        command = (self.git_binary, *args)
        try:
            process = subprocess.Popen(
                command,
                cwd=self.repo_path,
                env=self._env(),
                text=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise GitEngineError(f"git executable not found: {self.git_binary}") from exc
        completed = False
        try:
            assert process.stdout is not None
            for raw_line in process.stdout:
                raise_if_cancelled(cancel_token)
                line = raw_line.rstrip("\n")
                if line:
                    yield _parse_log_line(line)
            stderr = process.stderr.read() if process.stderr is not None else ""
            returncode = process.wait()
            completed = True
            if returncode != 0:
                raise GitCommandError(
                    command=command, returncode=returncode, stdout="", stderr=stderr
                )
        finally:
            if not completed:
                process.kill()
                process.wait()
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()

    def current_state(self) -> WorkingTreeState:
        """Capture the branch (or detached commit) HEAD currently points at."""
        commit_result = self._run_git(["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        commit = commit_result.stdout.strip()
        if commit_result.returncode != 0 or not commit:
            raise GitEngineError(f"unable to read HEAD in {self.repo_path}")

        branch_result = self._run_git(["symbolic-ref", "--quiet", "--short", "HEAD"], check=False)
        branch = branch_result.stdout.strip()
        if branch_result.returncode == 0 and branch:
            return WorkingTreeState(ref=branch, commit=commit, detached=False)
        return WorkingTreeState(ref=commit, commit=commit, detached=True)

    def is_dirty(self) -> bool:
        """Return True when tracked files carry uncommitted modifications."""
        output = self._run_git(["status", "--porcelain", "--untracked-files=no"]).stdout
        return bool(output.strip())

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = self._run_git(
            ["merge-base", "--is-ancestor", ancestor, descendant], check=False
        )
        return result.returncode == 0

    def checkout(self, identity: str, *, cancel_token: CancellationToken | None = None) -> None:
        """Force the working tree onto ``identity`` as a detached HEAD."""
        try:
            self._run_git(
                ["checkout", "--force", "--quiet", "--detach", identity],
                cancel_token=cancel_token,
            )
        except GitCommandError as exc:
            raise CheckoutError(f"failed to checkout {identity}: {exc.stderr.strip()}") from exc

    def restore(self, state: WorkingTreeState) -> None:
        """Return the working tree to a captured state; not cancellable."""
        if state.detached:
            args = ["checkout", "--force", "--quiet", "--detach", state.commit]
        else:
            args = ["checkout", "--force", "--quiet", state.ref]
        try:
            self._run_git(args)
        except GitCommandError as exc:
            raise RestoreError(
                f"failed to restore working tree to {state.describe()}: {exc.stderr.strip()}"
            ) from exc
        except (GitEngineError, OSError) as exc:
            raise RestoreError(
                f"failed to restore working tree to {state.describe()}: {exc}"
            ) from exc

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)
        return env

    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        cancel_token: CancellationToken | None = None,
    ) -> CommandResult:
        overrides = {"GIT_TERMINAL_PROMPT": "0", **self._env_overrides}
        try:
            result = run_command(
                (self.git_binary, *args),
                cwd=self.repo_path,
                env_overrides=overrides,
                cancel_token=cancel_token,
            )
        except FileNotFoundError as exc:
            raise GitEngineError(f"git executable not found: {self.git_binary}") from exc

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


def _parse_log_line(line: str) -> HistoricalPoint:
    parts = line.split(_FIELD_SEPARATOR, 3)
    if len(parts) != 4:
        raise GitEngineError(f"unexpected git log record: {line!r}")
    identity, author, authored_at, subject = parts
    return HistoricalPoint(
        identity=identity,
        subject=subject,
        author=author,
        timestamp=datetime.fromisoformat(authored_at),
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
