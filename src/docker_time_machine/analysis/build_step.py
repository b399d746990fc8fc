"""
Build step: check out one point, build its image, measure it, release it.

Checkout, build and inspect failures are recorded on the returned
``BuildResult``; they never raise. Missing layer history only empties
``layers``. Image removal is attempted after every build attempt and its
failures are logged. Cancellation is the one condition that propagates.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from docker_time_machine.analysis.layers import layers_from_history
from docker_time_machine.analysis.models import BuildResult, LayerRecord
from docker_time_machine.constants import (
    DEFAULT_DOCKERFILE,
    DEFAULT_TAG_PREFIX,
    TAG_IDENTITY_LENGTH,
)
from docker_time_machine.runtime.docker_engine import DockerEngineError, HistoryUnavailableError
from docker_time_machine.utils.cancellation import raise_if_cancelled
from docker_time_machine.vcs.git_engine import CheckoutError

if TYPE_CHECKING:
    from docker_time_machine.analysis.models import HistoricalPoint
    from docker_time_machine.runtime.docker_engine import DockerEngine
    from docker_time_machine.utils.cancellation import CancellationToken
    from docker_time_machine.vcs.git_engine import GitEngine


def snapshot_tag(point_identity: str, prefix: str = DEFAULT_TAG_PREFIX) -> str:
    return f"{prefix}:{point_identity[:TAG_IDENTITY_LENGTH].lower()}"


class BuildStep:
    def __init__(
        self,
        git: GitEngine,
        docker: DockerEngine,
        *,
        repo_path: Path | str,
        dockerfile: str = DEFAULT_DOCKERFILE,
        tag_prefix: str = DEFAULT_TAG_PREFIX,
        no_cache: bool = False,
        remove_images: bool = True,
        include_empty_layers: bool = False,
        clock: Callable[[], float] = time.perf_counter,
        logger: Any | None = None,
    ) -> None:
        self._git = git
        self._docker = docker
        self.repo_path = Path(repo_path)
        self.dockerfile = dockerfile
        self.tag_prefix = tag_prefix
        self.no_cache = no_cache
        self.remove_images = remove_images
        self.include_empty_layers = include_empty_layers
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def build(
        self, point: HistoricalPoint, *, cancel_token: CancellationToken | None = None
    ) -> BuildResult:
        raise_if_cancelled(cancel_token)
        log = self._logger.bind(point=point.short_id)

        try:
            self._git.checkout(point.identity, cancel_token=cancel_token)
        except CheckoutError as exc:
            log.warning("build_step_checkout_failed", error=str(exc))
            return BuildResult.failure(point, f"checkout failed: {exc}")

        if not (self.repo_path / self.dockerfile).is_file():
            log.info("build_step_dockerfile_missing", dockerfile=self.dockerfile)
            return BuildResult.failure(point, f"{self.dockerfile} not found at this commit")

        tag = snapshot_tag(point.identity, self.tag_prefix)
        log.debug("build_step_started", tag=tag, no_cache=self.no_cache)
        try:
            return self._build_and_measure(point, tag, log, cancel_token)
        finally:
            self._release(tag, log)

    def _build_and_measure(
        self,
        point: HistoricalPoint,
        tag: str,
        log: Any,
        cancel_token: CancellationToken | None,
    ) -> BuildResult:
        started = self._clock()
        try:
            self._docker.build(
                self.repo_path,
                self.dockerfile,
                tag,
                no_cache=self.no_cache,
                cancel_token=cancel_token,
            )
        except DockerEngineError as exc:
            log.debug("build_step_build_failed", tag=tag, error=str(exc))
            return BuildResult.failure(point, f"build failed: {exc}")
        build_time = self._clock() - started

        try:
            inspection = self._docker.inspect(tag, cancel_token=cancel_token)
        except DockerEngineError as exc:
            log.warning("build_step_inspect_failed", tag=tag, error=str(exc))
            return BuildResult.failure(point, f"inspect failed: {exc}")

        layers: tuple[LayerRecord, ...] = ()
        try:
            history = self._docker.history(tag, cancel_token=cancel_token)
        except HistoryUnavailableError as exc:
            log.warning("build_step_history_unavailable", tag=tag, error=str(exc))
        else:
            layers = layers_from_history(history, include_empty=self.include_empty_layers)

        log.info(
            "build_step_completed",
            tag=tag,
            image_size=inspection.total_size,
            build_time=round(build_time, 3),
            layer_count=inspection.layer_count,
        )
        return BuildResult.success(
            point,
            image_size=inspection.total_size,
            build_time=build_time,
            layer_count=inspection.layer_count,
            layers=layers,
        )

    def _release(self, tag: str, log: Any) -> None:
        if not self.remove_images:
            return
        try:
            self._docker.remove(tag)
        except DockerEngineError as exc:
            log.warning("build_step_image_remove_failed", tag=tag, error=str(exc))


__all__ = ["BuildStep", "snapshot_tag"]
