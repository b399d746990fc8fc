"""Stable constants shared across the analysis, collaborator and CLI layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# Build collaborator defaults.
DEFAULT_DOCKERFILE: Final[str] = "Dockerfile"
DEFAULT_TAG_PREFIX: Final[str] = "dtm-snapshot"
# Long enough to avoid collisions within one run, short enough for docker tags.
TAG_IDENTITY_LENGTH: Final[int] = 12
SHORT_HASH_LENGTH: Final[int] = 8

# Selection defaults.
DEFAULT_MAX_COMMITS: Final[int] = 20

# Layer correspondence sentinel: "this point has no layer with this identity".
MISSING_LAYER_SIZE: Final[int] = -1

BYTES_PER_MB: Final[int] = 1024 * 1024

# Default runtime paths (relative to the config file unless overridden).
LOGS_DIR: Final[PurePosixPath] = PurePosixPath("logs")

REPORT_FORMATS: Final[tuple[str, ...]] = ("table", "json", "csv", "markdown", "chart")
LOG_LEVEL_NAMES: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

__all__ = [
    "BYTES_PER_MB",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_DOCKERFILE",
    "DEFAULT_MAX_COMMITS",
    "DEFAULT_TAG_PREFIX",
    "LOGS_DIR",
    "LOG_LEVEL_NAMES",
    "MISSING_LAYER_SIZE",
    "REPORT_FORMATS",
    "REPORT_SCHEMA_VERSION",
    "SHORT_HASH_LENGTH",
    "TAG_IDENTITY_LENGTH",
]
