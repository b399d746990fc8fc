"""
Layer correspondence across historical builds.

Layers are matched across points by their normalized instruction text, not by
content digest: two layers are "the same" when their instruction strings are
equal. A point lacking an instruction gets ``MISSING_LAYER_SIZE`` in that row,
and repeated instructions inside one build are summed into a single cell.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from docker_time_machine.analysis.models import LayerComparisonRow, LayerRecord
from docker_time_machine.constants import MISSING_LAYER_SIZE

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from docker_time_machine.analysis.models import BuildResult
    from docker_time_machine.runtime.docker_engine import HistoryEntry

_NOP_PREFIX = "/bin/sh -c #(nop)"
_SHELL_PREFIX = "/bin/sh -c "
_RUN_PREFIX = "RUN "
_BUILDKIT_SUFFIX = "# buildkit"
_ARG_COUNT_RE = re.compile(r"^\|(\d+)\s+")


def normalize_instruction(created_by: str) -> str:
    """Reduce a raw history ``CreatedBy`` string to a stable instruction identity."""
    text = created_by.strip()
    if text.endswith(_BUILDKIT_SUFFIX):
        text = text[: -len(_BUILDKIT_SUFFIX)].rstrip()

    if text.startswith(_NOP_PREFIX):
        return text[len(_NOP_PREFIX) :].strip()

    run_form = text.startswith(_RUN_PREFIX)
    if run_form:
        text = text[len(_RUN_PREFIX) :].lstrip()
    text = _strip_build_args(text)

    if text.startswith(_SHELL_PREFIX):
        return _RUN_PREFIX + text[len(_SHELL_PREFIX) :].strip()
    if run_form:
        return _RUN_PREFIX + text
    return text


def _strip_build_args(text: str) -> str:
    # "|2 A=1 B=2 /bin/sh -c ..." carries the build args in scope of a RUN.
    match = _ARG_COUNT_RE.match(text)
    if match is None:
        return text
    remainder = text[match.end() :]
    parts = remainder.split(None, int(match.group(1)))
    return parts[-1] if len(parts) > int(match.group(1)) else ""


def layers_from_history(
    entries: Iterable[HistoryEntry], *, include_empty: bool = False
) -> tuple[LayerRecord, ...]:
    """Convert oldest-first history rows to layer records, in build order."""
    records: list[LayerRecord] = []
    for entry in entries:
        if entry.size == 0 and not include_empty:
            continue
        records.append(
            LayerRecord(instruction=normalize_instruction(entry.created_by), size=entry.size)
        )
    return tuple(records)


def build_layer_table(results: Sequence[BuildResult]) -> tuple[LayerComparisonRow, ...]:
    """Build one row per instruction identity over the successful results.

    Row order: identities of the first successful result in layer order, then
    new identities from later results in order of first appearance.
    """
    successful = [result for result in results if result.succeeded]
    if not successful:
        return ()

    per_point: list[tuple[str, dict[str, int]]] = []
    ordered: dict[str, None] = {}
    for result in successful:
        totals: dict[str, int] = {}
        for layer in result.layers:
            totals[layer.instruction] = totals.get(layer.instruction, 0) + layer.size
            ordered.setdefault(layer.instruction, None)
        per_point.append((result.identity, totals))

    return tuple(
        LayerComparisonRow(
            instruction=instruction,
            sizes={
                identity: totals.get(instruction, MISSING_LAYER_SIZE)
                for identity, totals in per_point
            },
        )
        for instruction in ordered
    )


__all__ = ["build_layer_table", "layers_from_history", "normalize_instruction"]
