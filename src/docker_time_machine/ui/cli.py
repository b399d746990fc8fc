"""Command-line interface router for docker-time-machine."""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Final

from docker_time_machine.analysis.models import bytes_to_mb
from docker_time_machine.analysis.timemachine import TimeMachine
from docker_time_machine.config import (
    BUILTIN_PROFILE_NAMES,
    ConfigLoadError,
    ConfigValidationError,
    load_config,
)
from docker_time_machine.constants import LOG_LEVEL_NAMES, REPORT_FORMATS
from docker_time_machine.observability import (
    LoggingConfig,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)
from docker_time_machine.reporting import create_renderer, render_report
from docker_time_machine.utils.cancellation import CancellationToken

CHART_FILENAME_FORMAT: Final[str] = "report-%Y-%m-%d-%H%M%S.html"


class CLIError(RuntimeError):
    """CLI failure carrying the process exit code to return."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="dtm",
        description=(
            "docker-time-machine: rebuild a Dockerfile across git history and compare.\n\n"
            "Common workflows:\n"
            "  dtm analyze                       Size/layer evolution of recent commits\n"
            "  dtm bisect --size-threshold 500   Find where the image crossed 500 MB\n"
            "  dtm compare main feature          Compare the images of two refs\n"
            "  dtm config                        Show effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo",
        "-r",
        default=".",
        help="Path to the git repository (default: current directory).",
    )
    common.add_argument(
        "--dockerfile",
        "-d",
        default=None,
        help="Dockerfile path relative to the repository root (default: Dockerfile).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to a TOML config (default: <repo>/dtm.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help=(
            "Config profile overlay name "
            f"(built-in: {', '.join(BUILTIN_PROFILE_NAMES)}; more may be defined in dtm.toml)."
        ),
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log progress to stderr.",
    )
    common.add_argument(
        "--log-level",
        choices=LOG_LEVEL_NAMES,
        default=None,
        help="Override observability.log_level.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # analyze -------------------------------------------------------------
    analyze_parser = subparsers.add_parser(
        "analyze",
        parents=[common],
        help="Build recent commits and report image evolution",
        description=(
            "Build the Dockerfile at each selected commit and report size, layer and\n"
            "build-time changes.\n\n"
            "Examples:\n"
            "  dtm analyze\n"
            "  dtm analyze --max-commits 50 --format chart\n"
            "  dtm analyze --since 2024-01-01 --until 2024-06-01 --format json\n"
            "  dtm analyze --skip-failed\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    analyze_parser.add_argument(
        "--branch", "-b", default=None, help="Branch, tag or commit to walk (default: HEAD)"
    )
    analyze_parser.add_argument(
        "--max-commits",
        "-n",
        type=int,
        default=None,
        help="Maximum commits to analyze, 0 for all (default: 20)",
    )
    analyze_parser.add_argument("--since", default=None, help="Only commits on/after YYYY-MM-DD")
    analyze_parser.add_argument("--until", default=None, help="Only commits before YYYY-MM-DD")
    analyze_parser.add_argument(
        "--skip-failed",
        action="store_true",
        default=None,
        help="Hide commits that fail to build from the report",
    )
    analyze_parser.add_argument(
        "--format", "-f", choices=REPORT_FORMATS, default=None, help="Report format"
    )
    analyze_parser.add_argument(
        "--output",
        "-o",
        default=None,
        help="Report path (default: stdout; chart writes a timestamped HTML file)",
    )
    analyze_parser.add_argument(
        "--no-cache",
        action="store_true",
        default=None,
        help="Build without the docker layer cache",
    )
    analyze_parser.set_defaults(handler=_cmd_analyze)

    # bisect --------------------------------------------------------------
    bisect_parser = subparsers.add_parser(
        "bisect",
        parents=[common],
        help="Binary-search the commit where size or build time crossed a threshold",
        description=(
            "Search the commits that touched the Dockerfile between GOOD and BAD.\n\n"
            "Examples:\n"
            "  dtm bisect --size-threshold 500\n"
            "  dtm bisect --time-threshold 120 --good v1.0 --bad main\n"
            "\nExit status is 1 when a regression is found and 0 when none is,\n"
            "so the command can gate a CI pipeline.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    bisect_parser.add_argument(
        "--size-threshold", type=float, default=None, help="Size threshold in MB"
    )
    bisect_parser.add_argument(
        "--time-threshold", type=float, default=None, help="Build time threshold in seconds"
    )
    bisect_parser.add_argument(
        "--good", default=None, help="Known-good ref (default: first commit touching Dockerfile)"
    )
    bisect_parser.add_argument("--bad", default=None, help="Known-bad ref (default: HEAD)")
    bisect_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    bisect_parser.set_defaults(handler=_cmd_bisect)

    # compare -------------------------------------------------------------
    compare_parser = subparsers.add_parser(
        "compare",
        parents=[common],
        help="Compare the images built from two refs",
        description=(
            "Build both refs and report how the second differs from the first.\n\n"
            "Examples:\n"
            "  dtm compare main feature/slim-image\n"
            "  dtm compare v1.0 v2.0 --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    compare_parser.add_argument("ref_a", help="Base branch, tag or commit")
    compare_parser.add_argument("ref_b", help="Branch, tag or commit to compare against the base")
    compare_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    compare_parser.set_defaults(handler=_cmd_compare)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration",
        description=(
            "Display the effective config after merging defaults, file, env, and profile.\n\n"
            "Examples:\n"
            "  dtm config\n"
            "  dtm config --json --profile strict\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_analyze(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        {
            "analyze.branch": args.branch,
            "analyze.max_commits": args.max_commits,
            "analyze.since": args.since,
            "analyze.until": args.until,
            "analyze.skip_failed": args.skip_failed,
            "analyze.format": args.format,
            "build.no_cache": args.no_cache,
        },
    )
    analyze = config["analyze"]
    fmt: str = analyze["format"]
    skip_failed: bool = analyze["skip_failed"]
    output_path = _report_path(args.output, fmt)

    with _command_session(args, config, "analyze") as token:
        print(f"Analyzing repository: {_repo_path(args)}", file=sys.stderr)
        print(f"Dockerfile: {analyze['dockerfile']}", file=sys.stderr)
        summary = _time_machine(args, config).run(cancel_token=token)

    if output_path is None:
        render_report(summary, fmt, sys.stdout, skip_failed=skip_failed)
    else:
        with output_path.open("w", encoding="utf-8") as handle:
            render_report(summary, fmt, handle, skip_failed=skip_failed)
        print(f"Report saved to: {output_path}", file=sys.stderr)

    if summary.restore_error:
        print(f"warning: {summary.restore_error}", file=sys.stderr)
        return 1
    if summary.has_failures and not skip_failed:
        return 1
    return 0


def _cmd_bisect(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        {
            "bisect.size_threshold_mb": args.size_threshold,
            "bisect.time_threshold_seconds": args.time_threshold,
            "bisect.good": args.good,
            "bisect.bad": args.bad,
        },
    )
    settings = config["bisect"]
    if settings["size_threshold_mb"] <= 0 and settings["time_threshold_seconds"] <= 0:
        raise CLIError("either --size-threshold or --time-threshold must be > 0", exit_code=2)

    with _command_session(args, config, "bisect") as token:
        outcome = _time_machine(args, config).bisect(cancel_token=token)

    regression = outcome.regression
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "bisect",
                "range_size": outcome.range_size,
                "probes": [
                    {
                        "index": probe.index,
                        "commit": probe.result.point.identity,
                        "verdict": probe.verdict.value,
                        "image_size_mb": round(bytes_to_mb(probe.result.image_size), 2),
                        "build_time": round(probe.result.build_time, 3),
                        "error": probe.result.error,
                    }
                    for probe in outcome.probes
                ],
                "regression": regression.to_dict() if regression is not None else None,
                "restore_error": outcome.restore_error,
            }
        )
    else:
        renderer = create_renderer()
        renderer.kv("Commits in range", outcome.range_size)
        renderer.kv("Builds performed", len(outcome.probes))
        renderer.table(
            ("Index", "Commit", "Size (MB)", "Build (s)", "Verdict"),
            [
                (
                    str(probe.index),
                    probe.result.point.short_id,
                    f"{bytes_to_mb(probe.result.image_size):.1f}",
                    f"{probe.result.build_time:.1f}",
                    probe.verdict.value,
                )
                for probe in outcome.probes
            ],
            title="Probes:",
        )
        renderer.blank()
        if regression is None:
            renderer.text("No regression found within the configured thresholds.")
        else:
            renderer.kv("Found regression at commit", regression.point.identity)
            renderer.kv("Message", regression.point.subject)
            renderer.kv("Author", regression.point.author)
            renderer.kv("Size", f"{bytes_to_mb(regression.image_size):.2f} MB")
            renderer.kv("Build time", f"{regression.build_time:.1f} s")
        if outcome.restore_error:
            renderer.warning(outcome.restore_error)

    if outcome.restore_error or regression is not None:
        return 1
    return 0


def _cmd_compare(args: argparse.Namespace) -> int:
    config = _load_effective_config(args, {})
    with _command_session(args, config, "compare") as token:
        result = _time_machine(args, config).compare(args.ref_a, args.ref_b, cancel_token=token)

    if _flag(args, "json"):
        _emit_json({"command": "compare", **result.to_dict()})
    else:
        renderer = create_renderer()
        for label, side in (("A", result.side_a), ("B", result.side_b)):
            renderer.section(f"Branch {label}: {side.name} ({side.commit[:8]})")
            renderer.kv("  Size", f"{side.size_mb:.2f} MB")
            renderer.kv("  Layers", side.layers)
            renderer.kv("  Build time", f"{side.build_time:.2f}s")
        renderer.section("Difference (B - A):")
        renderer.kv("  Size", f"{result.size_diff_mb:+.2f} MB ({result.size_diff_percent:+.1f}%)")
        renderer.kv("  Layers", f"{result.layers_diff:+d}")
        renderer.kv(
            "  Build time",
            f"{result.build_time_diff:+.2f}s ({result.build_time_diff_percent:+.1f}%)",
        )
        if result.restore_error:
            renderer.warning(result.restore_error)
    return 1 if result.restore_error else 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args, {})
    profile = _optional_str(getattr(args, "profile", None))
    payload: dict[str, object] = {
        "command": "config",
        "active_profile": profile,
        "config": config,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = create_renderer()
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object]
) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))
    cli_overrides = {
        "analyze.dockerfile": _optional_str(getattr(args, "dockerfile", None)),
        "observability.log_level": getattr(args, "log_level", None),
        **overrides,
    }
    try:
        return load_config(
            config_path,
            profile=profile,
            cli_overrides=cli_overrides,
            cwd=_repo_path(args),
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _time_machine(args: argparse.Namespace, config: Mapping[str, Any]) -> TimeMachine:
    repo = _repo_path(args)
    if not repo.is_dir():
        raise CLIError(f"repository path not found: {repo}", exit_code=2)
    return TimeMachine(config, repo_path=repo)


@contextmanager
def _command_session(
    args: argparse.Namespace, config: Mapping[str, Any], command: str
) -> Iterator[CancellationToken]:
    """Set up logging and SIGINT cancellation for one command invocation."""
    observability = config["observability"]
    level = getattr(args, "log_level", None) or (
        "INFO" if _flag(args, "verbose") else observability["log_level"]
    )
    run_id = _new_run_id()
    setup_logging(
        LoggingConfig(
            run_id=run_id,
            level=level,
            log_dir=observability["log_dir"] if observability["log_to_file"] else None,
        )
    )
    token = CancellationToken()
    try:
        with correlation_scope(command=command), _sigint_cancels(token):
            yield token
    finally:
        shutdown_logging()


@contextmanager
def _sigint_cancels(token: CancellationToken) -> Iterator[None]:
    # First Ctrl-C cancels cooperatively so the working tree is restored;
    # a second one interrupts immediately.
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        if token.is_cancelled:
            raise KeyboardInterrupt
        print("cancelling, restoring working tree...", file=sys.stderr)
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _report_path(raw: str | None, fmt: str) -> Path | None:
    if raw:
        return Path(raw).expanduser()
    if fmt == "chart":
        return Path(datetime.now().strftime(CHART_FILENAME_FORMAT))
    return None


def _new_run_id() -> str:
    return f"{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{uuid.uuid4().hex[:8]}"


def _repo_path(args: argparse.Namespace) -> Path:
    return Path(getattr(args, "repo", ".") or ".").expanduser().resolve()


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
