"""Dataclass models shared by the build loop, the post-run passes and the reports."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType

from docker_time_machine.constants import BYTES_PER_MB, MISSING_LAYER_SIZE, SHORT_HASH_LENGTH

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class BuildOutcome(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"


class ProbeVerdict(StrEnum):
    GOOD = "good"
    BAD = "bad"
    INCONCLUSIVE = "inconclusive"


def bytes_to_mb(size: int) -> float:
    return size / BYTES_PER_MB


@dataclass(frozen=True, slots=True)
class HistoricalPoint:
    """One addressable version of the source tree (a commit)."""

    identity: str
    subject: str
    author: str
    timestamp: datetime

    def __post_init__(self) -> None:
        if not self.identity:
            raise ValueError("HistoricalPoint.identity must be a non-empty string")

    @property
    def short_id(self) -> str:
        return self.identity[:SHORT_HASH_LENGTH]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "identity": self.identity,
            "subject": self.subject,
            "author": self.author,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class LayerRecord:
    """Normalized instruction text paired with the size of the layer it produced."""

    instruction: str
    size: int

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"LayerRecord.size must be >= 0, got {self.size}")


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Measurement of one historical point.

    Failed results carry ``error`` and zero numeric fields. ``size_diff`` is
    filled in by the diff pass; every other field is fixed once the build step
    returns.
    """

    point: HistoricalPoint
    outcome: BuildOutcome
    image_size: int = 0
    build_time: float = 0.0
    layer_count: int = 0
    layers: tuple[LayerRecord, ...] = ()
    error: str | None = None
    size_diff: int = 0

    def __post_init__(self) -> None:
        if self.outcome is BuildOutcome.FAILED:
            if not self.error:
                raise ValueError("failed BuildResult requires an error message")
            if self.image_size or self.build_time or self.layer_count or self.layers:
                raise ValueError("failed BuildResult must not carry measurements")
        elif self.error is not None:
            raise ValueError("successful BuildResult must not carry an error")

    @classmethod
    def success(
        cls,
        point: HistoricalPoint,
        *,
        image_size: int,
        build_time: float,
        layer_count: int,
        layers: tuple[LayerRecord, ...] = (),
    ) -> BuildResult:
        return cls(
            point=point,
            outcome=BuildOutcome.SUCCESS,
            image_size=image_size,
            build_time=build_time,
            layer_count=layer_count,
            layers=layers,
        )

    @classmethod
    def failure(cls, point: HistoricalPoint, error: str) -> BuildResult:
        return cls(point=point, outcome=BuildOutcome.FAILED, error=error or "unknown error")

    @property
    def succeeded(self) -> bool:
        return self.outcome is BuildOutcome.SUCCESS

    @property
    def identity(self) -> str:
        return self.point.identity

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "commit": self.point.identity,
            "subject": self.point.subject,
            "author": self.point.author,
            "date": self.point.timestamp.isoformat(),
            "outcome": self.outcome.value,
            "image_size": self.image_size,
            "image_size_mb": round(bytes_to_mb(self.image_size), 2),
            "build_time": round(self.build_time, 3),
            "layer_count": self.layer_count,
            "size_diff": self.size_diff,
            "error": self.error,
            "layers": [
                {"instruction": layer.instruction, "size": layer.size} for layer in self.layers
            ],
        }


@dataclass(frozen=True, slots=True)
class LayerComparisonRow:
    """Sizes of one instruction identity across every successful point.

    A point without the instruction maps to ``MISSING_LAYER_SIZE``.
    """

    instruction: str
    sizes: Mapping[str, int]

    def __post_init__(self) -> None:
        object.__setattr__(self, "sizes", MappingProxyType(dict(self.sizes)))

    def size_for(self, identity: str) -> int:
        return self.sizes.get(identity, MISSING_LAYER_SIZE)

    def is_present(self, identity: str) -> bool:
        return self.size_for(identity) != MISSING_LAYER_SIZE

    def to_dict(self) -> dict[str, JSONValue]:
        return {"instruction": self.instruction, "sizes": dict(self.sizes)}


@dataclass(frozen=True, slots=True)
class SizeExtremes:
    """Largest increase and largest decrease, when at least two builds succeeded."""

    bloat: BuildResult | None = None
    optimization: BuildResult | None = None

    @property
    def empty(self) -> bool:
        return self.bloat is None and self.optimization is None


@dataclass(frozen=True, slots=True)
class RunSummary:
    results: tuple[BuildResult, ...]
    extremes: SizeExtremes = field(default_factory=SizeExtremes)
    layer_table: tuple[LayerComparisonRow, ...] = ()
    restore_error: str | None = None

    @property
    def successful(self) -> tuple[BuildResult, ...]:
        return tuple(result for result in self.results if result.succeeded)

    @property
    def failed(self) -> tuple[BuildResult, ...]:
        return tuple(result for result in self.results if not result.succeeded)

    @property
    def has_failures(self) -> bool:
        return any(not result.succeeded for result in self.results)


@dataclass(frozen=True, slots=True)
class BisectProbe:
    """One oracle call made while bisecting."""

    index: int
    result: BuildResult
    verdict: ProbeVerdict


@dataclass(frozen=True, slots=True)
class BisectOutcome:
    """Bisection result; ``regression is None`` means no regression was found."""

    regression: BuildResult | None
    probes: tuple[BisectProbe, ...]
    range_size: int
    restore_error: str | None = None

    @property
    def found(self) -> bool:
        return self.regression is not None


__all__ = [
    "BisectOutcome",
    "BisectProbe",
    "BuildOutcome",
    "BuildResult",
    "HistoricalPoint",
    "JSONValue",
    "LayerComparisonRow",
    "LayerRecord",
    "ProbeVerdict",
    "RunSummary",
    "SizeExtremes",
    "bytes_to_mb",
]
