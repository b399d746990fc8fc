"""Build two refs and report how the second differs from the first."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from docker_time_machine.analysis.controller import WorkingTreeGuard
from docker_time_machine.analysis.errors import ComparisonError
from docker_time_machine.analysis.models import bytes_to_mb

if TYPE_CHECKING:
    from docker_time_machine.analysis.build_step import BuildStep
    from docker_time_machine.analysis.models import BuildResult, JSONValue
    from docker_time_machine.utils.cancellation import CancellationToken
    from docker_time_machine.vcs.git_engine import GitEngine


@dataclass(frozen=True, slots=True)
class ComparisonSide:
    name: str
    commit: str
    size_mb: float
    layers: int
    build_time: float

    @classmethod
    def from_result(cls, name: str, result: BuildResult) -> ComparisonSide:
        return cls(
            name=name,
            commit=result.point.identity,
            size_mb=bytes_to_mb(result.image_size),
            layers=result.layer_count,
            build_time=result.build_time,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "commit": self.commit,
            "size_mb": round(self.size_mb, 2),
            "layers": self.layers,
            "build_time": round(self.build_time, 3),
        }


@dataclass(frozen=True, slots=True)
class ComparisonResult:
    """Differences are ``b - a``; percentages are relative to ``a`` (0 when ``a`` is 0)."""

    side_a: ComparisonSide
    side_b: ComparisonSide
    restore_error: str | None = None

    @property
    def size_diff_mb(self) -> float:
        return self.side_b.size_mb - self.side_a.size_mb

    @property
    def size_diff_percent(self) -> float:
        return _percent(self.size_diff_mb, self.side_a.size_mb)

    @property
    def layers_diff(self) -> int:
        return self.side_b.layers - self.side_a.layers

    @property
    def build_time_diff(self) -> float:
        return self.side_b.build_time - self.side_a.build_time

    @property
    def build_time_diff_percent(self) -> float:
        return _percent(self.build_time_diff, self.side_a.build_time)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "branch_a": self.side_a.to_dict(),
            "branch_b": self.side_b.to_dict(),
            "size_diff_mb": round(self.size_diff_mb, 2),
            "size_diff_percent": round(self.size_diff_percent, 1),
            "layers_diff": self.layers_diff,
            "build_time_diff": round(self.build_time_diff, 3),
            "build_time_diff_percent": round(self.build_time_diff_percent, 1),
        }


def _percent(delta: float, base: float) -> float:
    if base == 0:
        return 0.0
    return delta / base * 100


class Comparer:
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

    def compare(
        self,
        ref_a: str,
        ref_b: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ComparisonResult:
        """Build ``ref_a`` then ``ref_b``; either build failing raises ``ComparisonError``."""
        point_a = self._git.show_point(ref_a)
        point_b = self._git.show_point(ref_b)

        guard = WorkingTreeGuard(self._git, allow_dirty=self._allow_dirty, logger=self._logger)
        with guard:
            sides: list[ComparisonSide] = []
            for name, point in ((ref_a, point_a), (ref_b, point_b)):
                result = self._build_step.build(point, cancel_token=cancel_token)
                if not result.succeeded:
                    raise ComparisonError(name, result.error or "unknown error")
                sides.append(ComparisonSide.from_result(name, result))

        comparison = ComparisonResult(
            side_a=sides[0], side_b=sides[1], restore_error=guard.restore_error
        )
        self._logger.info(
            "comparison_completed",
            ref_a=ref_a,
            ref_b=ref_b,
            size_diff_mb=round(comparison.size_diff_mb, 2),
            layers_diff=comparison.layers_diff,
        )
        return comparison


__all__ = ["ComparisonResult", "ComparisonSide", "Comparer"]
