"""
Run controller: drives the build step over selected points under a working-tree guard.

The guard captures where HEAD points before anything is checked out and puts
it back on every exit path, including errors, cancellation and
``KeyboardInterrupt``. A failed restore is logged and recorded on the guard;
it never replaces the exception that is already propagating.
"""

from __future__ import annotations

from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from docker_time_machine.analysis.diff import compute_size_deltas, find_size_extremes
from docker_time_machine.analysis.errors import DirtyWorkingTreeError
from docker_time_machine.analysis.layers import build_layer_table
from docker_time_machine.analysis.models import RunSummary
from docker_time_machine.utils.cancellation import raise_if_cancelled
from docker_time_machine.vcs.git_engine import RestoreError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docker_time_machine.analysis.build_step import BuildStep
    from docker_time_machine.analysis.models import BuildResult, HistoricalPoint
    from docker_time_machine.utils.cancellation import CancellationToken
    from docker_time_machine.vcs.git_engine import GitEngine, WorkingTreeState


class WorkingTreeGuard:
    """Context manager owning the working tree for the duration of one run."""

    def __init__(
        self, git: GitEngine, *, allow_dirty: bool = False, logger: Any | None = None
    ) -> None:
        self._git = git
        self._allow_dirty = allow_dirty
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self.state: WorkingTreeState | None = None
        self.restore_error: str | None = None

    def __enter__(self) -> WorkingTreeGuard:
        if not self._allow_dirty and self._git.is_dirty():
            raise DirtyWorkingTreeError(str(self._git.repo_path))
        self.state = self._git.current_state()
        self._logger.debug(
            "working_tree_captured", ref=self.state.ref, detached=self.state.detached
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self.state is None:
            return
        try:
            self._git.restore(self.state)
        except RestoreError as restore_exc:
            self.restore_error = str(restore_exc)
            self._logger.warning(
                "working_tree_restore_failed",
                ref=self.state.describe(),
                error=self.restore_error,
                during_error=exc_type.__name__ if exc_type is not None else None,
            )
        else:
            self._logger.debug("working_tree_restored", ref=self.state.describe())


class RunController:
    def __init__(
        self,
        git: GitEngine,
        build_step: BuildStep,
        *,
        allow_dirty: bool = False,
        logger: Any | None = None,
    ) -> None:
        self._git = git
        self._build_step = build_step
        self._allow_dirty = allow_dirty
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run(
        self,
        points: Iterable[HistoricalPoint],
        *,
        skip_failed: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> RunSummary:
        """Build every point in order and post-process the results.

        ``skip_failed`` only lowers the log level of per-point failures; every
        point is built either way. Cancellation propagates once the working
        tree has been restored.
        """
        collected: list[BuildResult] = []
        guard = WorkingTreeGuard(self._git, allow_dirty=self._allow_dirty, logger=self._logger)
        with guard:
            for position, point in enumerate(points):
                raise_if_cancelled(cancel_token)
                result = self._build_step.build(point, cancel_token=cancel_token)
                collected.append(result)
                if not result.succeeded:
                    log_failure = self._logger.debug if skip_failed else self._logger.warning
                    log_failure(
                        "run_point_failed",
                        position=position,
                        point=point.short_id,
                        error=result.error,
                    )

        results = compute_size_deltas(collected)
        summary = RunSummary(
            results=results,
            extremes=find_size_extremes(results),
            layer_table=build_layer_table(results),
            restore_error=guard.restore_error,
        )
        self._logger.info(
            "run_completed",
            points=len(results),
            succeeded=len(summary.successful),
            failed=len(summary.failed),
            restore_error=summary.restore_error,
        )
        return summary


__all__ = ["RunController", "WorkingTreeGuard"]
