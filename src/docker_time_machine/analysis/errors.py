"""Errors raised by the analysis core (collaborator errors live with their collaborators)."""

from __future__ import annotations


class AnalysisError(RuntimeError):
    """Base error for run-aborting analysis failures."""


class DirtyWorkingTreeError(AnalysisError):
    """Raised before a run when tracked files carry uncommitted edits."""

    def __init__(self, repo_path: str) -> None:
        self.repo_path = repo_path
        super().__init__(
            f"working tree at {repo_path} has uncommitted changes; "
            "commit or stash them, or set git.allow_dirty"
        )


class BisectRangeError(AnalysisError):
    """Raised when the good/bad boundary does not describe a searchable range."""


class ComparisonError(AnalysisError):
    """Raised when either side of a comparison fails to build."""

    def __init__(self, ref: str, error: str) -> None:
        self.ref = ref
        self.error = error
        super().__init__(f"failed to build {ref}: {error}")


__all__ = [
    "AnalysisError",
    "BisectRangeError",
    "ComparisonError",
    "DirtyWorkingTreeError",
]
