"""Historical build-and-compare engine: data model and run-aborting errors.

Pipeline stages live in their own modules (``selector``, ``build_step``,
``controller``, ``diff``, ``layers``, ``bisect``, ``compare``, ``timemachine``)
and are imported from there directly.
"""

from docker_time_machine.analysis.errors import (
    AnalysisError,
    BisectRangeError,
    ComparisonError,
    DirtyWorkingTreeError,
)
from docker_time_machine.analysis.models import (
    BisectOutcome,
    BisectProbe,
    BuildOutcome,
    BuildResult,
    HistoricalPoint,
    LayerComparisonRow,
    LayerRecord,
    ProbeVerdict,
    RunSummary,
    SizeExtremes,
)

__all__ = [
    "AnalysisError",
    "BisectOutcome",
    "BisectProbe",
    "BisectRangeError",
    "BuildOutcome",
    "BuildResult",
    "ComparisonError",
    "DirtyWorkingTreeError",
    "HistoricalPoint",
    "LayerComparisonRow",
    "LayerRecord",
    "ProbeVerdict",
    "RunSummary",
    "SizeExtremes",
]
