"""
docker-time-machine — unit tests for the CLI router.

Purpose
- Parse flags into config overrides and route to the analysis facade.
- Map analysis outcomes onto exit codes and rendered output.

The facade is replaced with a scripted stand-in; no git or docker is run.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest
import structlog

from docker_time_machine.analysis.compare import ComparisonResult, ComparisonSide
from docker_time_machine.analysis.models import (
    BisectOutcome,
    BisectProbe,
    BuildResult,
    HistoricalPoint,
    ProbeVerdict,
    RunSummary,
)
from docker_time_machine.constants import BYTES_PER_MB
from docker_time_machine.observability import get_active_logging_handle
from docker_time_machine.ui import cli
from docker_time_machine.ui.cli import build_parser, run_cli

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def _point(char: str, subject: str) -> HistoricalPoint:
    return HistoricalPoint(
        identity=char * 40,
        subject=subject,
        author="Dev",
        timestamp=datetime(2024, 3, 1, tzinfo=UTC),
    )


def _ok(char: str, size_mb: int, build_time: float = 10.0) -> BuildResult:
    return BuildResult.success(
        _point(char, f"commit {char}"),
        image_size=size_mb * BYTES_PER_MB,
        build_time=build_time,
        layer_count=3,
    )


class _FakeTimeMachine:
    """Records how the CLI constructs and drives the facade."""

    instances: list[_FakeTimeMachine] = []
    summary = RunSummary(results=())
    outcome = BisectOutcome(regression=None, probes=(), range_size=0)
    comparison: ComparisonResult | None = None

    def __init__(self, config: dict[str, Any], *, repo_path: Path) -> None:
        self.config = config
        self.repo_path = repo_path
        self.calls: list[tuple[str, ...]] = []
        type(self).instances.append(self)

    def run(self, *, cancel_token: object = None) -> RunSummary:
        assert cancel_token is not None
        assert get_active_logging_handle() is not None
        self.calls.append(("run",))
        return self.summary

    def bisect(self, *, cancel_token: object = None) -> BisectOutcome:
        self.calls.append(("bisect",))
        return self.outcome

    def compare(self, ref_a: str, ref_b: str, *, cancel_token: object = None) -> ComparisonResult:
        self.calls.append(("compare", ref_a, ref_b))
        assert self.comparison is not None
        return self.comparison


@pytest.fixture(autouse=True)
def fake_machine(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[type[_FakeTimeMachine]]:
    for name in [key for key in os.environ if key.startswith("DTM_")]:
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    fake = type("FakeTimeMachine", (_FakeTimeMachine,), {"instances": []})
    monkeypatch.setattr(cli, "TimeMachine", fake)
    yield fake
    structlog.reset_defaults()


def _run(tmp_path: Path, *argv: str) -> int:
    return run_cli([argv[0], "--repo", str(tmp_path), *argv[1:]])


def test_parser_routes_every_command() -> None:
    parser = build_parser()

    analyze = parser.parse_args(["analyze", "-n", "5", "--since", "2024-01-01", "-f", "json"])
    bisect = parser.parse_args(["bisect", "--size-threshold", "500", "--good", "v1"])
    compare = parser.parse_args(["compare", "main", "feature", "--json"])

    assert (analyze.max_commits, analyze.since, analyze.format) == (5, "2024-01-01", "json")
    assert analyze.skip_failed is None
    assert (bisect.size_threshold, bisect.good, bisect.bad) == (500.0, "v1", None)
    assert (compare.ref_a, compare.ref_b, compare.json) == ("main", "feature", True)


@pytest.mark.parametrize(
    "argv",
    [[], ["compare", "main"], ["analyze", "--format", "yaml"], ["bisect", "--log-level", "TRACE"]],
)
def test_parser_rejects_bad_usage(argv: list[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(argv)

    assert excinfo.value.code == 2


def test_bisect_help_documents_exit_status_and_profiles(
    capsys: pytest.CaptureFixture[str],
) -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["bisect", "--help"])

    help_text = " ".join(capsys.readouterr().out.split())
    assert "Exit status is 1 when a regression is found and 0 when none is" in help_text
    assert "built-in: strict, fast" in help_text


def test_analyze_passes_overrides_and_renders_report(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_machine.summary = RunSummary(results=(_ok("a", 120), _ok("b", 100)))

    code = _run(
        tmp_path, "analyze", "-n", "5", "--branch", "release", "--no-cache", "-d", "ops/Dockerfile"
    )

    assert code == 0
    (machine,) = fake_machine.instances
    assert machine.repo_path == tmp_path.resolve()
    assert machine.calls == [("run",)]
    assert machine.config["analyze"]["max_commits"] == 5
    assert machine.config["analyze"]["branch"] == "release"
    assert machine.config["analyze"]["dockerfile"] == "ops/Dockerfile"
    assert machine.config["build"]["no_cache"] is True
    captured = capsys.readouterr()
    assert captured.out.startswith("Docker Image Evolution Report")
    assert "Dockerfile: ops/Dockerfile" in captured.err
    assert get_active_logging_handle() is None


def test_analyze_failures_set_exit_code_unless_skipped(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    broken = BuildResult.failure(_point("b", "broken"), "build failed: exit code 1")
    fake_machine.summary = RunSummary(results=(_ok("a", 120), broken))

    assert _run(tmp_path, "analyze") == 1
    assert "bbbbbbbb" in capsys.readouterr().out

    assert _run(tmp_path, "analyze", "--skip-failed") == 0
    assert "bbbbbbbb" not in capsys.readouterr().out


def test_analyze_restore_error_is_reported(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_machine.summary = RunSummary(
        results=(_ok("a", 100),), restore_error="failed to restore working tree to main"
    )

    assert _run(tmp_path, "analyze") == 1
    assert "warning: failed to restore working tree to main" in capsys.readouterr().err


def test_analyze_writes_report_file(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_machine.summary = RunSummary(results=(_ok("a", 100),))
    target = tmp_path / "out" / "report.json"
    target.parent.mkdir()

    assert _run(tmp_path, "analyze", "--format", "json", "--output", str(target)) == 0

    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["results"][0]["commit"] == "a" * 40
    captured = capsys.readouterr()
    assert captured.out == ""
    assert f"Report saved to: {target}" in captured.err


def test_chart_defaults_to_timestamped_file(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine]
) -> None:
    fake_machine.summary = RunSummary(results=(_ok("a", 100),))

    assert _run(tmp_path, "analyze", "--format", "chart") == 0

    (report,) = tmp_path.glob("report-*.html")
    assert report.read_text(encoding="utf-8").startswith("<!DOCTYPE html>")


def test_invalid_config_is_a_usage_error(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(tmp_path, "analyze", "--max-commits", "-1") == 2

    assert "analyze.max_commits" in capsys.readouterr().err
    assert fake_machine.instances == []


def test_missing_repository_is_a_usage_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "nowhere"

    assert run_cli(["analyze", "--repo", str(missing)]) == 2
    assert "repository path not found" in capsys.readouterr().err


def test_bisect_requires_a_threshold(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(tmp_path, "bisect") == 2
    assert "--size-threshold or --time-threshold" in capsys.readouterr().err


def test_bisect_regression_json(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    good = _ok("a", 100)
    bad = _ok("c", 150)
    fake_machine.outcome = BisectOutcome(
        regression=bad,
        probes=(
            BisectProbe(index=2, result=good, verdict=ProbeVerdict.GOOD),
            BisectProbe(index=3, result=bad, verdict=ProbeVerdict.BAD),
        ),
        range_size=5,
    )

    assert _run(tmp_path, "bisect", "--size-threshold", "120", "--json") == 1

    (machine,) = fake_machine.instances
    assert machine.config["bisect"]["size_threshold_mb"] == 120.0
    payload = json.loads(capsys.readouterr().out)
    assert payload["range_size"] == 5
    assert [probe["verdict"] for probe in payload["probes"]] == ["good", "bad"]
    assert payload["probes"][1]["image_size_mb"] == 150.0
    assert payload["regression"]["commit"] == "c" * 40


def test_bisect_without_regression_renders_text(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_machine.outcome = BisectOutcome(
        regression=None,
        probes=(BisectProbe(index=0, result=_ok("a", 90), verdict=ProbeVerdict.GOOD),),
        range_size=1,
    )

    assert _run(tmp_path, "bisect", "--time-threshold", "60") == 0

    output = capsys.readouterr().out
    assert "Commits in range: 1" in output
    assert "No regression found within the configured thresholds." in output


def test_compare_json_and_text(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_machine.comparison = ComparisonResult(
        side_a=ComparisonSide.from_result("main", _ok("a", 100, 10.0)),
        side_b=ComparisonSide.from_result("slim", _ok("b", 75, 12.0)),
    )

    assert _run(tmp_path, "compare", "main", "slim", "--json") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["command"] == "compare"
    assert payload["size_diff_mb"] == -25.0
    assert payload["size_diff_percent"] == -25.0
    assert payload["build_time_diff_percent"] == 20.0

    assert _run(tmp_path, "compare", "main", "slim") == 0
    output = capsys.readouterr().out
    assert "Branch A: main (aaaaaaaa)" in output
    assert "Difference (B - A):" in output
    assert fake_machine.instances[0].calls == [("compare", "main", "slim")]


def test_config_command_shows_effective_config(
    tmp_path: Path, fake_machine: type[_FakeTimeMachine], capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "dtm.toml").write_text("[analyze]\nmax_commits = 7\n", encoding="utf-8")

    assert _run(tmp_path, "config", "--json", "--profile", "strict") == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["active_profile"] == "strict"
    assert payload["config"]["analyze"]["max_commits"] == 7
    assert payload["config"]["build"]["no_cache"] is True
    assert fake_machine.instances == []
