"""
Threshold bisection over an oldest-first point range.

Closed-range binary search with the build step as oracle:

- build failed: inconclusive, never a candidate; search moves to newer points
- threshold exceeded: ``mid`` becomes the best candidate; search moves older
- within threshold: search moves to newer points

The answer is only the first crossing when the measured value crosses the
threshold once across the range; the search does not verify that.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from docker_time_machine.analysis.errors import BisectRangeError
from docker_time_machine.analysis.models import (
    BisectOutcome,
    BisectProbe,
    BuildResult,
    ProbeVerdict,
    bytes_to_mb,
)
from docker_time_machine.utils.cancellation import raise_if_cancelled

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docker_time_machine.analysis.build_step import BuildStep
    from docker_time_machine.analysis.models import HistoricalPoint
    from docker_time_machine.utils.cancellation import CancellationToken


class Bisector:
    def __init__(
        self,
        build_step: BuildStep,
        *,
        size_threshold_mb: float = 0.0,
        time_threshold_seconds: float = 0.0,
        logger: Any | None = None,
    ) -> None:
        if size_threshold_mb <= 0 and time_threshold_seconds <= 0:
            raise ValueError("either size_threshold_mb or time_threshold_seconds must be > 0")
        self._build_step = build_step
        self.size_threshold_mb = size_threshold_mb
        self.time_threshold_seconds = time_threshold_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def exceeds(self, result: BuildResult) -> bool:
        if self.size_threshold_mb > 0 and bytes_to_mb(result.image_size) > self.size_threshold_mb:
            return True
        return self.time_threshold_seconds > 0 and result.build_time > self.time_threshold_seconds

    def find_regression(
        self,
        points: Sequence[HistoricalPoint],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> BisectOutcome:
        if len(points) < 2:
            raise BisectRangeError(f"need at least 2 points to bisect, got {len(points)}")

        low, high = 0, len(points) - 1
        best: BuildResult | None = None
        probes: list[BisectProbe] = []
        while low <= high:
            raise_if_cancelled(cancel_token)
            mid = (low + high) // 2
            result = self._build_step.build(points[mid], cancel_token=cancel_token)

            if not result.succeeded:
                verdict = ProbeVerdict.INCONCLUSIVE
                low = mid + 1
            elif self.exceeds(result):
                verdict = ProbeVerdict.BAD
                best = result
                high = mid - 1
            else:
                verdict = ProbeVerdict.GOOD
                low = mid + 1

            probes.append(BisectProbe(index=mid, result=result, verdict=verdict))
            self._logger.info(
                "bisect_probe",
                index=mid,
                point=result.point.short_id,
                verdict=verdict.value,
                image_size_mb=round(bytes_to_mb(result.image_size), 2),
                build_time=round(result.build_time, 3),
                low=low,
                high=high,
            )

        self._logger.info(
            "bisect_completed",
            range_size=len(points),
            probes=len(probes),
            regression=best.point.identity if best is not None else None,
        )
        return BisectOutcome(regression=best, probes=tuple(probes), range_size=len(points))


__all__ = ["Bisector"]
