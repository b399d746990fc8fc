"""
Analysis facade wiring the collaborators to the pipeline from one config mapping.

``TimeMachine`` is what the CLI talks to: ``run`` (history analysis),
``bisect`` (threshold search) and ``compare`` (two refs). It owns the
``GitEngine``/``DockerEngine`` instances unless they are injected.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from docker_time_machine.analysis.bisect import Bisector
from docker_time_machine.analysis.build_step import BuildStep
from docker_time_machine.analysis.compare import Comparer
from docker_time_machine.analysis.controller import RunController, WorkingTreeGuard
from docker_time_machine.analysis.selector import PointSelector
from docker_time_machine.config.schema import default_config, merge_config
from docker_time_machine.runtime.docker_engine import DockerEngine
from docker_time_machine.vcs.git_engine import GitEngine

if TYPE_CHECKING:
    from collections.abc import Mapping

    from docker_time_machine.analysis.compare import ComparisonResult
    from docker_time_machine.analysis.models import BisectOutcome, RunSummary
    from docker_time_machine.utils.cancellation import CancellationToken

_HEAD = "HEAD"


def parse_date_bound(value: str | None) -> datetime | None:
    """Parse ``YYYY-MM-DD`` as midnight UTC; empty means unbounded."""
    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError as exc:
        raise ValueError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc
    return parsed.replace(tzinfo=UTC)


class TimeMachine:
    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        repo_path: Path | str = ".",
        git: GitEngine | None = None,
        docker: DockerEngine | None = None,
        logger: Any | None = None,
    ) -> None:
        self.config = merge_config(default_config(), config or {})
        self.repo_path = Path(repo_path).resolve()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        if git is None:
            git = GitEngine(self.repo_path, git_binary=self.config["git"]["git_binary"])
            git.ensure_repository()
        self.git = git
        self.docker = (
            docker
            if docker is not None
            else DockerEngine(docker_binary=self.config["build"]["docker_binary"])
        )

        build_cfg = self.config["build"]
        self.dockerfile: str = self.config["analyze"]["dockerfile"]
        self.build_step = BuildStep(
            self.git,
            self.docker,
            repo_path=self.repo_path,
            dockerfile=self.dockerfile,
            tag_prefix=build_cfg["tag_prefix"],
            no_cache=build_cfg["no_cache"],
            remove_images=build_cfg["remove_images"],
            include_empty_layers=build_cfg["include_empty_layers"],
            logger=self._logger,
        )
        self.selector = PointSelector(self.git, logger=self._logger)
        self._allow_dirty: bool = self.config["git"]["allow_dirty"]

    def run(self, *, cancel_token: CancellationToken | None = None) -> RunSummary:
        """Select points per ``analyze`` config and build them all."""
        analyze = self.config["analyze"]
        points = self.selector.select(
            analyze["branch"] or _HEAD,
            since=parse_date_bound(analyze["since"]),
            until=parse_date_bound(analyze["until"]),
            max_count=analyze["max_commits"],
            cancel_token=cancel_token,
        )
        self._logger.info("analysis_started", points=len(points), dockerfile=self.dockerfile)
        controller = RunController(
            self.git, self.build_step, allow_dirty=self._allow_dirty, logger=self._logger
        )
        return controller.run(
            points, skip_failed=analyze["skip_failed"], cancel_token=cancel_token
        )

    def bisect(self, *, cancel_token: CancellationToken | None = None) -> BisectOutcome:
        """Find the first point in ``[good, bad]`` that exceeds the configured thresholds."""
        settings = self.config["bisect"]
        bisector = Bisector(
            self.build_step,
            size_threshold_mb=settings["size_threshold_mb"],
            time_threshold_seconds=settings["time_threshold_seconds"],
            logger=self._logger,
        )
        bad = settings["bad"] or _HEAD
        good = settings["good"] or self.selector.oldest_touching(
            bad, self.dockerfile, cancel_token=cancel_token
        ).identity
        points = self.selector.select_range(
            good, bad, path_filter=self.dockerfile, cancel_token=cancel_token
        )
        self._logger.info("bisect_started", good=good, bad=bad, points=len(points))

        guard = WorkingTreeGuard(self.git, allow_dirty=self._allow_dirty, logger=self._logger)
        with guard:
            outcome = bisector.find_regression(points, cancel_token=cancel_token)
        return replace(outcome, restore_error=guard.restore_error)

    def compare(
        self,
        ref_a: str,
        ref_b: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ComparisonResult:
        comparer = Comparer(
            self.git, self.build_step, allow_dirty=self._allow_dirty, logger=self._logger
        )
        return comparer.compare(ref_a, ref_b, cancel_token=cancel_token)


__all__ = ["TimeMachine", "parse_date_bound"]
