"""Size deltas and extremes over an ordered result sequence (newest first)."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from docker_time_machine.analysis.models import SizeExtremes

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docker_time_machine.analysis.models import BuildResult


def compute_size_deltas(results: Sequence[BuildResult]) -> tuple[BuildResult, ...]:
    """Return ``results`` with ``size_diff`` set on every successful entry.

    Each successful result is compared with the nearest later successful one,
    i.e. the nearest older build. Failed results are skipped rather than read
    as zero and keep ``size_diff == 0``, as does the oldest successful result.
    """
    updated: list[BuildResult] = list(results)
    older_size: int | None = None
    # Walk oldest to newest so each success sees the closest older success.
    for index in range(len(updated) - 1, -1, -1):
        result = updated[index]
        if not result.succeeded:
            if result.size_diff:
                updated[index] = replace(result, size_diff=0)
            continue
        delta = result.image_size - older_size if older_size is not None else 0
        if delta != result.size_diff:
            updated[index] = replace(result, size_diff=delta)
        older_size = result.image_size
    return tuple(updated)


def find_size_extremes(results: Sequence[BuildResult]) -> SizeExtremes:
    """Pick the largest increase (bloat) and largest decrease (optimization).

    Ties go to the first occurrence. Fewer than two successful results yield
    no extremes.
    """
    successful = [result for result in results if result.succeeded]
    if len(successful) < 2:
        return SizeExtremes()

    bloat: BuildResult | None = None
    optimization: BuildResult | None = None
    for result in successful:
        if result.size_diff > 0 and (bloat is None or result.size_diff > bloat.size_diff):
            bloat = result
        if result.size_diff < 0 and (
            optimization is None or result.size_diff < optimization.size_diff
        ):
            optimization = result
    return SizeExtremes(bloat=bloat, optimization=optimization)


__all__ = ["compute_size_deltas", "find_size_extremes"]
