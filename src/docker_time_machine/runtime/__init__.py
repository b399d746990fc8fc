"""Build collaborator backed by the docker CLI."""

from docker_time_machine.runtime.docker_engine import (
    BuildError,
    DockerCommandError,
    DockerEngine,
    DockerEngineError,
    HistoryEntry,
    HistoryUnavailableError,
    ImageInspection,
    InspectError,
)

__all__ = [
    "BuildError",
    "DockerCommandError",
    "DockerEngine",
    "DockerEngineError",
    "HistoryEntry",
    "HistoryUnavailableError",
    "ImageInspection",
    "InspectError",
]
