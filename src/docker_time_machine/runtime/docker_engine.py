"""Docker CLI wrapper: build, inspect, history and remove for snapshot images."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from docker_time_machine.utils.process import CommandResult, run_command

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from docker_time_machine.utils.cancellation import CancellationToken

_STDERR_TAIL_LINES = 20
_HISTORY_FORMAT = "{{.ID}}\t{{.Size}}\t{{json .CreatedBy}}"


class DockerEngineError(RuntimeError):
    """Base error for docker engine failures."""


class DockerCommandError(DockerEngineError):
    """Raised when a docker subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"docker command failed ({returncode}): {' '.join(command)}"
        tail = stderr_tail(stderr)
        if tail:
            message = f"{message}: {tail}"
        super().__init__(message)


class BuildError(DockerCommandError):
    """Raised when ``docker build`` fails."""


class InspectError(DockerEngineError):
    """Raised when an image cannot be inspected or its metadata is malformed."""


class HistoryUnavailableError(DockerEngineError):
    """Raised when per-layer history cannot be read for an image."""


@dataclass(frozen=True, slots=True)
class ImageInspection:
    total_size: int
    layer_ids: tuple[str, ...]

    @property
    def layer_count(self) -> int:
        return len(self.layer_ids)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One raw ``docker image history`` row, un-normalized."""

    layer_id: str
    size: int
    created_by: str


def stderr_tail(stderr: str, *, lines: int = _STDERR_TAIL_LINES) -> str:
    kept = [line for line in stderr.strip().splitlines() if line.strip()]
    return "\n".join(kept[-lines:])


class DockerEngine:
    """Thin synchronous wrapper around the docker CLI."""

    def __init__(
        self,
        *,
        docker_binary: str = "docker",
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.docker_binary = docker_binary
        self._env_overrides = dict(env_overrides or {})

    def build(
        self,
        context_path: Path | str,
        dockerfile: str,
        tag: str,
        *,
        no_cache: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        context = Path(context_path)
        args = ["build", "-f", str(context / dockerfile), "-t", tag]
        if no_cache:
            args.append("--no-cache")
        args.append(str(context))

        result = self._run_docker(args, cwd=context, cancel_token=cancel_token)
        if not result.ok:
            raise BuildError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

    def inspect(
        self, tag: str, *, cancel_token: CancellationToken | None = None
    ) -> ImageInspection:
        result = self._run_docker(["image", "inspect", tag], cancel_token=cancel_token)
        if not result.ok:
            raise InspectError(f"failed to inspect {tag}: {stderr_tail(result.stderr)}")

        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise InspectError(f"docker image inspect returned invalid JSON for {tag}") from exc
        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            raise InspectError(f"docker image inspect returned no image for {tag}")

        image = payload[0]
        size = image.get("Size")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise InspectError(f"image {tag} reports an invalid size: {size!r}")

        rootfs = image.get("RootFS")
        layers = rootfs.get("Layers") if isinstance(rootfs, dict) else None
        layer_ids = tuple(str(item) for item in layers) if isinstance(layers, list) else ()
        return ImageInspection(total_size=size, layer_ids=layer_ids)

    def history(
        self, tag: str, *, cancel_token: CancellationToken | None = None
    ) -> tuple[HistoryEntry, ...]:
        """Return per-layer history oldest-first, i.e. in build-instruction order."""
        result = self._run_docker(
            [
                "image",
                "history",
                "--no-trunc",
                "--human=false",
                "--format",
                _HISTORY_FORMAT,
                tag,
            ],
            cancel_token=cancel_token,
        )
        if not result.ok:
            raise HistoryUnavailableError(
                f"failed to read history for {tag}: {stderr_tail(result.stderr)}"
            )

        entries: list[HistoryEntry] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            entries.append(_parse_history_line(line, tag))
        # docker lists the newest layer first.
        entries.reverse()
        return tuple(entries)

    def remove(self, tag: str) -> None:
        result = self._run_docker(["image", "rm", "--force", tag])
        if not result.ok:
            raise DockerCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

    def _run_docker(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CommandResult:
        try:
            return run_command(
                (self.docker_binary, *args),
                cwd=cwd,
                env_overrides=self._env_overrides,
                cancel_token=cancel_token,
            )
        except FileNotFoundError as exc:
            raise DockerEngineError(f"docker executable not found: {self.docker_binary}") from exc


def _parse_history_line(line: str, tag: str) -> HistoryEntry:
    parts = line.split("\t", 2)
    if len(parts) != 3:
        raise HistoryUnavailableError(f"unexpected history row for {tag}: {line!r}")
    layer_id, raw_size, raw_created_by = parts
    try:
        size = int(raw_size.strip())
        created_by = json.loads(raw_created_by)
    except (ValueError, json.JSONDecodeError) as exc:
        raise HistoryUnavailableError(f"unparseable history row for {tag}: {line!r}") from exc
    if not isinstance(created_by, str) or size < 0:
        raise HistoryUnavailableError(f"unexpected history row for {tag}: {line!r}")
    return HistoryEntry(layer_id=layer_id.strip(), size=size, created_by=created_by)


__all__ = [
    "BuildError",
    "DockerCommandError",
    "DockerEngine",
    "DockerEngineError",
    "HistoryEntry",
    "HistoryUnavailableError",
    "ImageInspection",
    "InspectError",
    "stderr_tail",
]
