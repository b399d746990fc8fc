"""
Point selection: which historical points a run or a bisection examines.

``select`` follows the ancestry order git reports (newest first for a linear
history) and never re-sorts by date. Date bounds are applied per point on its
authorship timestamp as ``since <= timestamp < until``; ``max_count`` caps the
points retained after that filter.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from docker_time_machine.analysis.errors import BisectRangeError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docker_time_machine.analysis.models import HistoricalPoint
    from docker_time_machine.utils.cancellation import CancellationToken
    from docker_time_machine.vcs.git_engine import GitEngine


class PointSelector:
    def __init__(self, git: GitEngine, *, logger: Any | None = None) -> None:
        self._git = git
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def select(
        self,
        ref: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        max_count: int | None = None,
        path_filter: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[HistoricalPoint, ...]:
        """Return de-duplicated points reachable from ``ref``.

        ``max_count`` of ``None`` or ``0`` means no cap. Raises
        ``RefNotFoundError`` when ``ref`` does not resolve.
        """
        if max_count is not None and max_count < 0:
            raise ValueError(f"max_count must be >= 0, got {max_count}")
        limit = max_count or None
        lower = _as_aware(since)
        upper = _as_aware(until)

        start = self._git.resolve_ref(ref)
        ancestry = self._git.iter_ancestry(
            start, path_filter=path_filter, cancel_token=cancel_token
        )
        try:
            selected = _take(_within(_unique(ancestry), lower, upper), limit)
        finally:
            _close(ancestry)

        self._logger.info(
            "point_selection_completed",
            ref=ref,
            start=start,
            selected=len(selected),
            max_count=limit,
            since=lower.isoformat() if lower else None,
            until=upper.isoformat() if upper else None,
        )
        return selected

    def oldest_touching(
        self,
        ref: str,
        path: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> HistoricalPoint:
        """Return the oldest point reachable from ``ref`` that touched ``path``."""
        start = self._git.resolve_ref(ref)
        oldest: HistoricalPoint | None = None
        for point in self._git.iter_ancestry(
            start, path_filter=path, cancel_token=cancel_token
        ):
            oldest = point
        if oldest is None:
            raise BisectRangeError(f"no commit reachable from {ref} touches {path}")
        return oldest

    def select_range(
        self,
        good: str,
        bad: str,
        *,
        path_filter: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[HistoricalPoint, ...]:
        """Materialize the closed range ``[good, bad]`` oldest-first.

        The range is the good point followed by every point reachable from
        ``bad`` but not from ``good``.
        """
        good_point = self._git.show_point(good)
        bad_id = self._git.resolve_ref(bad)
        if good_point.identity != bad_id and not self._git.is_ancestor(
            good_point.identity, bad_id
        ):
            raise BisectRangeError(f"good point {good} is not an ancestor of bad point {bad}")

        newer = _unique(
            self._git.iter_ancestry(
                bad_id,
                path_filter=path_filter,
                exclude=good_point.identity,
                cancel_token=cancel_token,
            )
        )
        points = (good_point, *reversed(tuple(newer)))
        if len(points) < 2:
            raise BisectRangeError(
                f"need at least 2 points between {good} and {bad}, found {len(points)}"
            )
        self._logger.info(
            "bisect_range_materialized",
            good=good_point.identity,
            bad=bad_id,
            points=len(points),
        )
        return points


def _unique(points: Iterable[HistoricalPoint]) -> Iterable[HistoricalPoint]:
    seen: set[str] = set()
    for point in points:
        if point.identity in seen:
            continue
        seen.add(point.identity)
        yield point


def _within(
    points: Iterable[HistoricalPoint],
    since: datetime | None,
    until: datetime | None,
) -> Iterable[HistoricalPoint]:
    for point in points:
        stamp = _as_aware(point.timestamp)
        if since is not None and stamp < since:
            continue
        if until is not None and stamp >= until:
            continue
        yield point


def _take(points: Iterable[HistoricalPoint], limit: int | None) -> tuple[HistoricalPoint, ...]:
    taken: list[HistoricalPoint] = []
    for point in points:
        taken.append(point)
        if limit is not None and len(taken) >= limit:
            break
    return tuple(taken)


def _close(iterator: object) -> None:
    # Stops a lazy `git log` once enough points were taken.
    close = getattr(iterator, "close", None)
    if callable(close):
        close()


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


__all__ = ["PointSelector"]
