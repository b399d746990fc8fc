"""
Report formats for a completed history run.

Every format receives the same ``RunSummary``: results in run order (newest
first), the layer comparison table and the size extremes. Sizes are shown in
MB; ``skip_failed`` drops failed points from the per-point rows only.
"""

from __future__ import annotations

import csv
import json
from typing import TYPE_CHECKING

from jinja2 import Environment, StrictUndefined

from docker_time_machine.analysis.models import bytes_to_mb
from docker_time_machine.constants import MISSING_LAYER_SIZE, REPORT_FORMATS, REPORT_SCHEMA_VERSION
from docker_time_machine.reporting.render import CLIRenderer

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import TextIO

    from docker_time_machine.analysis.models import (
        BuildResult,
        JSONValue,
        LayerComparisonRow,
        RunSummary,
    )

REPORT_TITLE = "Docker Image Evolution Report"
_INSTRUCTION_WIDTH = 60
_CSV_HEADER = (
    "commit_hash",
    "commit_message",
    "author",
    "date",
    "image_size_mb",
    "size_diff_mb",
    "layer_count",
    "build_time_seconds",
    "status",
    "error",
)


def render_report(
    summary: RunSummary,
    fmt: str,
    stream: TextIO,
    *,
    skip_failed: bool = False,
) -> None:
    """Write ``summary`` to ``stream`` in one of ``REPORT_FORMATS``."""
    renderers: dict[str, Callable[[RunSummary, TextIO, bool], None]] = {
        "table": _render_table,
        "json": _render_json,
        "csv": _render_csv,
        "markdown": _render_markdown,
        "chart": _render_chart,
    }
    renderer = renderers.get(fmt)
    if renderer is None:
        raise ValueError(f"unknown report format {fmt!r}; expected one of {REPORT_FORMATS}")
    renderer(summary, stream, skip_failed)


def report_payload(summary: RunSummary, *, skip_failed: bool = False) -> dict[str, JSONValue]:
    return {
        "schema_version": REPORT_SCHEMA_VERSION,
        "results": [result.to_dict() for result in _visible(summary, skip_failed)],
        "layer_comparison": [row.to_dict() for row in summary.layer_table],
        "insights": {
            "bloat": _insight(summary.extremes.bloat),
            "optimization": _insight(summary.extremes.optimization),
        },
        "restore_error": summary.restore_error,
    }


def _render_json(summary: RunSummary, stream: TextIO, skip_failed: bool) -> None:
    json.dump(report_payload(summary, skip_failed=skip_failed), stream, indent=2, sort_keys=True)
    stream.write("\n")


def _render_csv(summary: RunSummary, stream: TextIO, skip_failed: bool) -> None:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(_CSV_HEADER)
    for result in _visible(summary, skip_failed):
        writer.writerow(
            (
                result.point.identity,
                result.point.subject,
                result.point.author,
                result.point.timestamp.isoformat(),
                f"{bytes_to_mb(result.image_size):.2f}",
                f"{bytes_to_mb(result.size_diff):.2f}",
                result.layer_count,
                f"{result.build_time:.2f}",
                result.outcome.value,
                result.error or "",
            )
        )


def _render_table(summary: RunSummary, stream: TextIO, skip_failed: bool) -> None:
    out = CLIRenderer(stream)
    out.heading(REPORT_TITLE)
    rows = [_result_cells(result) for result in _visible(summary, skip_failed)]
    if rows:
        out.table(
            ("Commit", "Date", "Size (MB)", "Diff (MB)", "Layers", "Build (s)", "Message"),
            rows,
        )
    else:
        out.text("No builds to report.")

    out.section("Insights:")
    out.items(_insight_lines(summary))

    if summary.layer_table:
        columns = [result.point.short_id for result in summary.successful]
        out.table(
            ("Instruction", *columns),
            [
                (_truncate(row.instruction), *_layer_cells(row, summary))
                for row in summary.layer_table
            ],
            title="Layer evolution (MB):",
        )
    if summary.restore_error:
        out.blank()
        out.warning(summary.restore_error)


def _render_markdown(summary: RunSummary, stream: TextIO, skip_failed: bool) -> None:
    lines = [f"# {REPORT_TITLE}", ""]
    visible = _visible(summary, skip_failed)
    if visible:
        lines.append("| Commit | Date | Size (MB) | Diff (MB) | Layers | Build (s) | Message |")
        lines.append("|---|---|---:|---:|---:|---:|---|")
        for result in visible:
            lines.append("| " + " | ".join(_md(cell) for cell in _result_cells(result)) + " |")
    else:
        lines.append("_No builds to report._")

    lines.extend(["", "## Insights", ""])
    lines.extend(f"- {line}" for line in _insight_lines(summary))

    if summary.layer_table:
        columns = [result.point.short_id for result in summary.successful]
        lines.extend(["", "## Layer Evolution (MB)", ""])
        lines.append("| Instruction | " + " | ".join(columns) + " |")
        lines.append("|---|" + "---:|" * len(columns))
        for row in summary.layer_table:
            cells = (f"`{_md(_truncate(row.instruction))}`", *_layer_cells(row, summary))
            lines.append("| " + " | ".join(cells) + " |")

    if summary.restore_error:
        lines.extend(["", f"> **Warning:** {_md(summary.restore_error)}"])
    stream.write("\n".join(lines) + "\n")


_CHART_ENVIRONMENT = Environment(
    undefined=StrictUndefined,
    autoescape=True,
    trim_blocks=True,
    newline_sequence="\n",
    keep_trailing_newline=True,
)
_CHART_TEMPLATE = _CHART_ENVIRONMENT.from_string(
    """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{{ title }}</title>
  <script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
  <style>
    body { font-family: -apple-system, "Segoe UI", Roboto, Arial, sans-serif; margin: 24px; }
    .stats { display: flex; gap: 16px; margin-bottom: 24px; }
    .stat { padding: 12px 16px; border: 1px solid #ddd; border-radius: 8px; }
    .stat b { display: block; font-size: 1.5em; }
    .chart { max-width: 1200px; margin-bottom: 32px; }
  </style>
</head>
<body>
  <h1>{{ title }}</h1>
  <div class="stats">
    <div class="stat"><b>{{ analyzed }}</b>commits analyzed</div>
    <div class="stat"><b>{{ initial }} MB</b>initial size</div>
    <div class="stat"><b>{{ final }} MB</b>final size</div>
  </div>
  <div class="chart"><canvas id="size"></canvas></div>
  <div class="chart"><canvas id="time"></canvas></div>
  <div class="chart"><canvas id="layers"></canvas></div>
  <ul>
{% for line in insights %}
    <li>{{ line }}</li>
{% endfor %}
  </ul>
  <script>
    const data = {{ data | safe }};
    function draw(id, label, values, type) {
      new Chart(document.getElementById(id), {
        type: type,
        data: { labels: data.labels, datasets: [{ label: label, data: values }] },
      });
    }
    draw("size", "Image size (MB)", data.sizes, "line");
    draw("time", "Build time (s)", data.times, "line");
    draw("layers", "Layer count", data.layers, "bar");
  </script>
</body>
</html>
"""
)


def _render_chart(summary: RunSummary, stream: TextIO, skip_failed: bool) -> None:
    # Oldest first so the x axis reads left to right in time.
    successful = list(reversed(summary.successful))
    sizes = [round(bytes_to_mb(result.image_size), 2) for result in successful]
    data = {
        "labels": [result.point.short_id for result in successful],
        "sizes": sizes,
        "times": [round(result.build_time, 2) for result in successful],
        "layers": [result.layer_count for result in successful],
    }
    stream.write(
        _CHART_TEMPLATE.render(
            title=REPORT_TITLE,
            analyzed=len(summary.results),
            initial=f"{sizes[0]:.1f}" if sizes else "n/a",
            final=f"{sizes[-1]:.1f}" if sizes else "n/a",
            insights=_insight_lines(summary),
            # "</" would end the script element early.
            data=json.dumps(data, sort_keys=True).replace("</", "<\\/"),
        )
    )


def _visible(summary: RunSummary, skip_failed: bool) -> tuple[BuildResult, ...]:
    if skip_failed:
        return summary.successful
    return summary.results


def _result_cells(result: BuildResult) -> tuple[str, ...]:
    date = result.point.timestamp.strftime("%Y-%m-%d")
    if not result.succeeded:
        return (result.point.short_id, date, "FAILED", "-", "-", "-", result.point.subject)
    return (
        result.point.short_id,
        date,
        f"{bytes_to_mb(result.image_size):.1f}",
        _signed_mb(result.size_diff),
        str(result.layer_count),
        f"{result.build_time:.1f}",
        result.point.subject,
    )


def _layer_cells(row: LayerComparisonRow, summary: RunSummary) -> list[str]:
    cells: list[str] = []
    for result in summary.successful:
        size = row.size_for(result.identity)
        cells.append("-" if size == MISSING_LAYER_SIZE else f"{bytes_to_mb(size):.1f}")
    return cells


def _insight_lines(summary: RunSummary) -> list[str]:
    if len(summary.successful) < 2:
        return ["Not enough successful builds to compare sizes."]
    lines: list[str] = []
    bloat = summary.extremes.bloat
    optimization = summary.extremes.optimization
    if bloat is not None:
        lines.append(
            f"Largest size increase: {_signed_mb(bloat.size_diff)} MB at "
            f"{bloat.point.short_id} ({bloat.point.subject})"
        )
    if optimization is not None:
        lines.append(
            f"Largest size decrease: {_signed_mb(optimization.size_diff)} MB at "
            f"{optimization.point.short_id} ({optimization.point.subject})"
        )
    if not lines:
        lines.append("Image size did not change across successful builds.")
    failures = len(summary.failed)
    if failures:
        lines.append(f"{failures} commit(s) failed to build.")
    return lines


def _insight(result: BuildResult | None) -> dict[str, JSONValue] | None:
    if result is None:
        return None
    return {
        "commit": result.point.identity,
        "subject": result.point.subject,
        "size_diff": result.size_diff,
        "size_diff_mb": round(bytes_to_mb(result.size_diff), 2),
    }


def _signed_mb(size: int) -> str:
    if size == 0:
        return "-"
    return f"{bytes_to_mb(size):+.1f}"


def _truncate(text: str, width: int = _INSTRUCTION_WIDTH) -> str:
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."


def _md(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


__all__ = ["REPORT_TITLE", "render_report", "report_payload"]
