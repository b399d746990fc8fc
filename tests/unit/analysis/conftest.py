"""
docker-time-machine — in-memory collaborators for analysis unit tests.

``FakeGit`` models a linear history (newest first) and records every checkout
and restore; ``FakeDocker`` serves per-commit image measurements keyed by the
snapshot tag and advances a fake clock on each build.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from docker_time_machine.analysis.models import HistoricalPoint
from docker_time_machine.constants import BYTES_PER_MB, TAG_IDENTITY_LENGTH
from docker_time_machine.runtime.docker_engine import (
    BuildError,
    DockerCommandError,
    HistoryEntry,
    HistoryUnavailableError,
    ImageInspection,
    InspectError,
)
from docker_time_machine.utils.cancellation import CancellationToken, raise_if_cancelled
from docker_time_machine.vcs.git_engine import (
    CheckoutError,
    RefNotFoundError,
    RestoreError,
    WorkingTreeState,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def point_identity(index: int) -> str:
    return hashlib.sha1(f"point-{index}".encode()).hexdigest()


def build_points(count: int) -> list[HistoricalPoint]:
    """``count`` points, newest first, one day apart, the oldest at ``BASE_TIME``."""
    return [
        HistoricalPoint(
            identity=point_identity(index),
            subject=f"commit {index}",
            author="Dev",
            timestamp=BASE_TIME + timedelta(days=index),
        )
        for index in range(count - 1, -1, -1)
    ]


class FakeGit:
    def __init__(self, repo_path: Path, points: list[HistoricalPoint]) -> None:
        self.repo_path = repo_path
        self.points = list(points)
        self.branch_state = WorkingTreeState(
            ref="main", commit=self.points[0].identity if self.points else "0" * 40, detached=False
        )
        self.head = self.branch_state.commit
        self.checkouts: list[str] = []
        self.restores: list[WorkingTreeState] = []
        self.fail_checkout: set[str] = set()
        self.fail_restore = False
        self.dirty = False
        self.touching: set[str] | None = None
        self.extra_ancestry: list[HistoricalPoint] = []
        self.closed_iterators = 0

    def resolve_ref(self, name: str) -> str:
        if name in {"HEAD", "main"}:
            return self.points[0].identity
        for point in self.points:
            if point.identity.startswith(name):
                return point.identity
        raise RefNotFoundError(name)

    def show_point(self, ref: str) -> HistoricalPoint:
        identity = self.resolve_ref(ref)
        return next(point for point in self.points if point.identity == identity)

    def iter_ancestry(
        self,
        start: str,
        *,
        path_filter: str | None = None,
        exclude: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[HistoricalPoint]:
        begin = self._index(start)
        stop = self._index(exclude) if exclude is not None else len(self.points)
        try:
            for point in [*self.points[begin:stop], *self.extra_ancestry]:
                raise_if_cancelled(cancel_token)
                if path_filter is not None and self.touching is not None:
                    if point.identity not in self.touching:
                        continue
                yield point
        finally:
            self.closed_iterators += 1

    def current_state(self) -> WorkingTreeState:
        return self.branch_state

    def is_dirty(self) -> bool:
        return self.dirty

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self._index(ancestor) >= self._index(descendant)

    def checkout(self, identity: str, *, cancel_token: CancellationToken | None = None) -> None:
        raise_if_cancelled(cancel_token)
        if identity in self.fail_checkout:
            raise CheckoutError(f"failed to checkout {identity}: simulated")
        self.head = identity
        self.checkouts.append(identity)

    def restore(self, state: WorkingTreeState) -> None:
        self.restores.append(state)
        if self.fail_restore:
            raise RestoreError(f"failed to restore working tree to {state.describe()}: simulated")
        self.head = state.commit

    def _index(self, identity: str) -> int:
        for index, point in enumerate(self.points):
            if point.identity == identity:
                return index
        raise RefNotFoundError(identity)


@dataclass
class ImageSpec:
    size_mb: float = 100.0
    build_seconds: float = 1.0
    layers: list[tuple[str, int]] = field(default_factory=list)
    fail_build: bool = False
    fail_inspect: bool = False
    fail_history: bool = False


class FakeDocker:
    def __init__(self) -> None:
        self.specs: dict[str, ImageSpec] = {}
        self.now = 0.0
        self.built: list[str] = []
        self.build_flags: list[bool] = []
        self.removed: list[str] = []
        self.fail_remove = False
        self.cancel_on_build: CancellationToken | None = None

    def clock(self) -> float:
        return self.now

    def set(self, identity: str, **values: Any) -> ImageSpec:
        spec = ImageSpec(**values)
        self.specs[identity[:TAG_IDENTITY_LENGTH]] = spec
        return spec

    def build(
        self,
        context_path: Path | str,
        dockerfile: str,
        tag: str,
        *,
        no_cache: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.built.append(tag)
        self.build_flags.append(no_cache)
        if self.cancel_on_build is not None:
            self.cancel_on_build.cancel()
        raise_if_cancelled(cancel_token)
        spec = self._spec(tag)
        self.now += spec.build_seconds
        if spec.fail_build:
            raise BuildError(
                command=("docker", "build", "-t", tag),
                returncode=1,
                stdout="",
                stderr="step 3/5: RUN make: exit code 2",
            )

    def inspect(
        self, tag: str, *, cancel_token: CancellationToken | None = None
    ) -> ImageInspection:
        spec = self._spec(tag)
        if spec.fail_inspect:
            raise InspectError(f"failed to inspect {tag}: simulated")
        layer_ids = tuple(f"sha256:{index:064x}" for index, _ in enumerate(spec.layers))
        return ImageInspection(total_size=int(spec.size_mb * BYTES_PER_MB), layer_ids=layer_ids)

    def history(
        self, tag: str, *, cancel_token: CancellationToken | None = None
    ) -> tuple[HistoryEntry, ...]:
        spec = self._spec(tag)
        if spec.fail_history:
            raise HistoryUnavailableError(f"failed to read history for {tag}: simulated")
        return tuple(
            HistoryEntry(layer_id=f"layer{index}", size=size, created_by=created_by)
            for index, (created_by, size) in enumerate(spec.layers)
        )

    def remove(self, tag: str) -> None:
        self.removed.append(tag)
        if self.fail_remove:
            raise DockerCommandError(
                command=("docker", "image", "rm", "--force", tag),
                returncode=1,
                stdout="",
                stderr="conflict: image is in use",
            )

    def _spec(self, tag: str) -> ImageSpec:
        identity = tag.split(":", 1)[1]
        return self.specs.setdefault(identity, ImageSpec())


class RecordingLogger:
    """Minimal structlog-compatible logger capturing ``(level, event, fields)``."""

    def __init__(
        self,
        records: list[tuple[str, str, dict[str, object]]] | None = None,
        bound: dict[str, object] | None = None,
    ) -> None:
        self.records = records if records is not None else []
        self._bound = dict(bound or {})

    def bind(self, **fields: object) -> RecordingLogger:
        return RecordingLogger(self.records, {**self._bound, **fields})

    def _log(self, level: str, event: str, **fields: object) -> None:
        self.records.append((level, event, {**self._bound, **fields}))

    def debug(self, event: str, **fields: object) -> None:
        self._log("debug", event, **fields)

    def info(self, event: str, **fields: object) -> None:
        self._log("info", event, **fields)

    def warning(self, event: str, **fields: object) -> None:
        self._log("warning", event, **fields)

    def events(self, level: str | None = None) -> list[str]:
        return [event for lvl, event, _ in self.records if level is None or lvl == level]


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    return repo


@pytest.fixture
def make_points() -> Callable[[int], list[HistoricalPoint]]:
    return build_points


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def make_git(repo_dir: Path) -> Callable[[list[HistoricalPoint]], FakeGit]:
    def factory(points: list[HistoricalPoint]) -> FakeGit:
        return FakeGit(repo_dir, points)

    return factory


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()
