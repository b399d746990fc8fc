"""
docker-time-machine — unit tests for two-ref comparison.
"""

from __future__ import annotations

import pytest

from docker_time_machine.analysis.build_step import BuildStep
from docker_time_machine.analysis.compare import ComparisonResult, ComparisonSide, Comparer
from docker_time_machine.analysis.errors import ComparisonError
from docker_time_machine.constants import BYTES_PER_MB

MB = BYTES_PER_MB


def _comparer(git, docker, repo_dir, **kwargs):
    step = BuildStep(git, docker, repo_path=repo_dir, clock=docker.clock)
    return Comparer(git, step, **kwargs)


def test_compare_reports_b_relative_to_a(make_points, make_git, fake_docker, repo_dir):
    points = make_points(2)
    old, new = points[1], points[0]
    git = make_git(points)
    fake_docker.set(old.identity, size_mb=100.0, build_seconds=10.0, layers=[("RUN a", 1)])
    fake_docker.set(
        new.identity, size_mb=150.0, build_seconds=5.0, layers=[("RUN a", 1), ("RUN b", 1)]
    )

    result = _comparer(git, fake_docker, repo_dir).compare(old.identity[:10], "main")

    assert result.side_a.commit == old.identity
    assert result.side_b.name == "main"
    assert result.size_diff_mb == pytest.approx(50.0)
    assert result.size_diff_percent == pytest.approx(50.0)
    assert result.layers_diff == 1
    assert result.build_time_diff == pytest.approx(-5.0)
    assert result.build_time_diff_percent == pytest.approx(-50.0)
    assert git.checkouts == [old.identity, new.identity]
    assert git.restores == [git.branch_state]


def test_failed_side_raises_and_restores(make_points, make_git, fake_docker, repo_dir):
    points = make_points(2)
    git = make_git(points)
    fake_docker.set(points[0].identity, fail_build=True)

    with pytest.raises(ComparisonError, match="failed to build HEAD: build failed") as excinfo:
        _comparer(git, fake_docker, repo_dir).compare(points[1].identity, "HEAD")

    assert excinfo.value.ref == "HEAD"
    assert git.restores == [git.branch_state]


def test_percentages_are_zero_for_zero_base() -> None:
    result = ComparisonResult(
        side_a=ComparisonSide(name="a", commit="1" * 40, size_mb=0.0, layers=0, build_time=0.0),
        side_b=ComparisonSide(name="b", commit="2" * 40, size_mb=12.0, layers=3, build_time=2.0),
    )

    assert result.size_diff_percent == 0.0
    assert result.build_time_diff_percent == 0.0


def test_to_dict_shape(make_points, make_git, fake_docker, repo_dir):
    points = make_points(2)
    fake_docker.set(points[1].identity, size_mb=64.0)
    fake_docker.set(points[0].identity, size_mb=32.0)

    payload = _comparer(make_git(points), fake_docker, repo_dir).compare(
        points[1].identity, points[0].identity
    ).to_dict()

    assert set(payload) == {
        "branch_a",
        "branch_b",
        "size_diff_mb",
        "size_diff_percent",
        "layers_diff",
        "build_time_diff",
        "build_time_diff_percent",
    }
    assert payload["size_diff_mb"] == -32.0
    assert payload["size_diff_percent"] == -50.0
    assert payload["branch_a"]["size_mb"] == 64.0
