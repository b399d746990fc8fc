"""
docker-time-machine — test suite for the docker engine wrapper.

Purpose
- Exercise DockerEngine against a scripted stand-in ``docker`` executable.
- Argument shapes, output parsing and error mapping.

The stand-in records each invocation in ``calls.log`` and answers ``image
inspect`` / ``image history`` from ``inspect.json`` / ``history.txt`` next to
it; a missing answer file makes the command fail like an unknown image.
"""

from __future__ import annotations

import json
import stat
from typing import TYPE_CHECKING

import pytest

from docker_time_machine.runtime.docker_engine import (
    BuildError,
    DockerCommandError,
    DockerEngine,
    DockerEngineError,
    HistoryUnavailableError,
    InspectError,
    stderr_tail,
)
from docker_time_machine.utils.cancellation import CancellationToken, OperationCancelledError

if TYPE_CHECKING:
    from pathlib import Path

FAKE_DOCKER = """#!/bin/sh
dir=$(dirname "$0")
printf '%s\\n' "$*" >> "$dir/calls.log"
case "$1 $2" in
  "build "*)
    if [ -f "$dir/build_fail" ]; then
      echo "#5 [2/3] RUN make" >&2
      echo "ERROR: process did not complete: exit code 2" >&2
      exit 1
    fi
    echo "Successfully built"
    ;;
  "image inspect")
    if [ -f "$dir/inspect.json" ]; then cat "$dir/inspect.json"; exit 0; fi
    echo "Error: No such image: $3" >&2
    exit 1
    ;;
  "image history")
    if [ -f "$dir/history.txt" ]; then cat "$dir/history.txt"; exit 0; fi
    echo "Error response from daemon: No such image: $7" >&2
    exit 1
    ;;
  "image rm")
    if [ -f "$dir/rm_fail" ]; then echo "conflict: image is being used" >&2; exit 1; fi
    ;;
esac
exit 0
"""


@pytest.fixture
def docker_dir(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "docker"
    script.write_text(FAKE_DOCKER, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return bin_dir


@pytest.fixture
def engine(docker_dir: Path) -> DockerEngine:
    return DockerEngine(docker_binary=str(docker_dir / "docker"))


def calls(docker_dir: Path) -> list[str]:
    log = docker_dir / "calls.log"
    if not log.exists():
        return []
    return log.read_text(encoding="utf-8").splitlines()


def test_build_passes_dockerfile_tag_and_context(
    engine: DockerEngine, docker_dir: Path, tmp_path: Path
) -> None:
    context = tmp_path / "ctx"
    context.mkdir()

    engine.build(context, "docker/Dockerfile.prod", "dtm-snapshot:abc123", no_cache=True)

    assert calls(docker_dir) == [
        f"build -f {context}/docker/Dockerfile.prod -t dtm-snapshot:abc123 --no-cache {context}"
    ]


def test_build_failure_carries_stderr_tail(
    engine: DockerEngine, docker_dir: Path, tmp_path: Path
) -> None:
    (docker_dir / "build_fail").touch()

    with pytest.raises(BuildError) as excinfo:
        engine.build(tmp_path, "Dockerfile", "dtm-snapshot:abc123")

    assert excinfo.value.returncode == 1
    assert "exit code 2" in str(excinfo.value)
    assert isinstance(excinfo.value, DockerCommandError)


def test_build_honours_cancelled_token(
    engine: DockerEngine, docker_dir: Path, tmp_path: Path
) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        engine.build(tmp_path, "Dockerfile", "dtm-snapshot:abc123", cancel_token=token)

    assert calls(docker_dir) == []


def test_inspect_reads_size_and_layers(engine: DockerEngine, docker_dir: Path) -> None:
    (docker_dir / "inspect.json").write_text(
        json.dumps([{"Size": 73_400_320, "RootFS": {"Layers": ["sha256:a", "sha256:b"]}}]),
        encoding="utf-8",
    )

    inspection = engine.inspect("dtm-snapshot:abc123")

    assert inspection.total_size == 73_400_320
    assert inspection.layer_ids == ("sha256:a", "sha256:b")
    assert inspection.layer_count == 2


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        json.dumps([{"Size": "big"}]),
        json.dumps([{"Size": True}]),
        json.dumps([{"Size": -5}]),
    ],
)
def test_inspect_rejects_malformed_metadata(
    engine: DockerEngine, docker_dir: Path, payload: str
) -> None:
    (docker_dir / "inspect.json").write_text(payload, encoding="utf-8")

    with pytest.raises(InspectError):
        engine.inspect("dtm-snapshot:abc123")


def test_inspect_unknown_image_raises(engine: DockerEngine) -> None:
    with pytest.raises(InspectError, match="No such image"):
        engine.inspect("dtm-snapshot:missing")


def test_history_is_returned_oldest_first(engine: DockerEngine, docker_dir: Path) -> None:
    rows = [
        ("sha256:c", 0, '/bin/sh -c #(nop)  CMD ["app"]'),
        ("sha256:b", 2048, "/bin/sh -c apt-get install -y curl"),
        ("<missing>", 4096, "/bin/sh -c #(nop) ADD file:abc in / "),
    ]
    (docker_dir / "history.txt").write_text(
        "".join(f"{ident}\t{size}\t{json.dumps(text)}\n" for ident, size, text in rows),
        encoding="utf-8",
    )

    entries = engine.history("dtm-snapshot:abc123")

    assert [entry.layer_id for entry in entries] == ["<missing>", "sha256:b", "sha256:c"]
    assert [entry.size for entry in entries] == [4096, 2048, 0]
    assert entries[1].created_by == "/bin/sh -c apt-get install -y curl"
    assert "--no-trunc" in calls(docker_dir)[0]


def test_history_unavailable_when_command_fails(engine: DockerEngine) -> None:
    with pytest.raises(HistoryUnavailableError):
        engine.history("dtm-snapshot:missing")


def test_history_rejects_malformed_rows(engine: DockerEngine, docker_dir: Path) -> None:
    (docker_dir / "history.txt").write_text("sha256:a\tlots\t\"RUN x\"\n", encoding="utf-8")

    with pytest.raises(HistoryUnavailableError, match="unparseable"):
        engine.history("dtm-snapshot:abc123")


def test_remove_forces_image_removal(engine: DockerEngine, docker_dir: Path) -> None:
    engine.remove("dtm-snapshot:abc123")

    assert calls(docker_dir) == ["image rm --force dtm-snapshot:abc123"]


def test_remove_failure_raises_command_error(engine: DockerEngine, docker_dir: Path) -> None:
    (docker_dir / "rm_fail").touch()

    with pytest.raises(DockerCommandError, match="being used"):
        engine.remove("dtm-snapshot:abc123")


def test_missing_binary_is_an_engine_error(tmp_path: Path) -> None:
    engine = DockerEngine(docker_binary=str(tmp_path / "no-docker"))

    with pytest.raises(DockerEngineError, match="docker executable not found"):
        engine.inspect("dtm-snapshot:abc123")


def test_stderr_tail_keeps_last_non_empty_lines() -> None:
    text = "\n".join(f"line {index}" for index in range(30)) + "\n\n"

    tail = stderr_tail(text, lines=3)

    assert tail == "line 27\nline 28\nline 29"
