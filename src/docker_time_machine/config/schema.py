"""
docker-time-machine — configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.
- Provide profile overlays and deterministic deep-merge helpers.

Validation returns structured issues (field path + message) rather than failing
on the first problem, so a broken ``dtm.toml`` is reported in one pass.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from docker_time_machine.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DOCKERFILE,
    DEFAULT_MAX_COMMITS,
    DEFAULT_TAG_PREFIX,
    LOG_LEVEL_NAMES,
    LOGS_DIR,
    REPORT_FORMATS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "fast")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Docker repository names: lowercase components separated by . _ - or /.
_TAG_PREFIX_PATTERN = re.compile(r"^[a-z0-9]+(?:[._/-][a-z0-9]+)*$")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)


class MetaConfig(TypedDict):
    schema_version: int


class AnalyzeConfig(TypedDict):
    dockerfile: str
    branch: str
    max_commits: int
    since: str
    until: str
    skip_failed: bool
    format: Literal["table", "json", "csv", "markdown", "chart"]


class BuildConfig(TypedDict):
    docker_binary: str
    tag_prefix: str
    no_cache: bool
    remove_images: bool
    include_empty_layers: bool


class BisectConfig(TypedDict):
    size_threshold_mb: float
    time_threshold_seconds: float
    good: str
    bad: str


class GitConfig(TypedDict):
    git_binary: str
    allow_dirty: bool


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_file: bool


class ProfileOverlay(TypedDict, total=False):
    analyze: dict[str, object]
    build: dict[str, object]
    bisect: dict[str, object]
    git: dict[str, object]
    observability: dict[str, object]


class TimeMachineConfig(TypedDict):
    meta: MetaConfig
    analyze: AnalyzeConfig
    build: BuildConfig
    bisect: BisectConfig
    git: GitConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[TimeMachineConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "analyze": {
        "dockerfile": DEFAULT_DOCKERFILE,
        "branch": "",
        "max_commits": DEFAULT_MAX_COMMITS,
        "since": "",
        "until": "",
        "skip_failed": False,
        "format": "table",
    },
    "build": {
        "docker_binary": "docker",
        "tag_prefix": DEFAULT_TAG_PREFIX,
        "no_cache": False,
        "remove_images": True,
        "include_empty_layers": False,
    },
    "bisect": {
        "size_threshold_mb": 0.0,
        "time_threshold_seconds": 0.0,
        "good": "",
        "bad": "",
    },
    "git": {
        "git_binary": "git",
        "allow_dirty": False,
    },
    "observability": {
        "log_level": "WARNING",
        "log_dir": LOGS_DIR.as_posix(),
        "log_to_file": False,
    },
    "profiles": {
        "strict": {
            "build": {"no_cache": True},
        },
        "fast": {
            "build": {"no_cache": False, "remove_images": False},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> TimeMachineConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade dtm.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade docker-time-machine"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {*_SECTIONS, "meta", "profiles"}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, {*_SECTIONS, "meta"}, "", issues)

    out: dict[str, Any] = {}

    meta_raw = payload.get("meta")
    if meta_raw is not None:
        meta = _as_object(meta_raw, "meta", issues)
        if meta is not None:
            out["meta"] = _validate_meta(meta, "meta", issues)

    for section_name in sorted(_SECTIONS):
        raw = payload.get(section_name)
        if raw is None:
            continue
        section = _as_object(raw, section_name, issues)
        if section is None:
            continue
        out[section_name] = _validate_section(
            section_name, section, section_name, issues, partial=False
        )

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles = _as_object(profiles_raw, "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, "profiles", issues)

    _validate_cross_fields(out, issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        field_path = _join(path, "schema_version")
        parsed = _SCHEMA_VERSION.parse(payload["schema_version"], field_path, issues)
        if isinstance(parsed, int):
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(field_path, migration_guidance(parsed))
    return out


def _validate_section(
    section_name: str,
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SECTIONS[section_name]
    _reject_unknown_keys(payload, set(fields), path, issues)
    if not partial:
        _require_keys(payload, set(fields), path, issues)

    out: dict[str, Any] = {}
    for key in sorted(fields):
        if key not in payload:
            continue
        parsed = fields[key].parse(payload[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue

        _reject_unknown_keys(profile_obj, set(_SECTIONS), profile_path, issues)
        overlay: dict[str, Any] = {}
        for section_name in sorted(_SECTIONS):
            raw = profile_obj.get(section_name)
            if raw is None:
                continue
            section_path = _join(profile_path, section_name)
            section = _as_object(raw, section_path, issues)
            if section is None:
                continue
            overlay[section_name] = _validate_section(
                section_name, section, section_path, issues, partial=True
            )
        out[profile_name] = overlay
    return out


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    analyze = config.get("analyze")
    if not isinstance(analyze, Mapping):
        return
    since = analyze.get("since")
    until = analyze.get("until")
    if isinstance(since, str) and isinstance(until, str) and since and until and since >= until:
        issues.add("analyze.until", "must be later than analyze.since")


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


FieldKind = Literal["text", "bool", "int", "float", "choice"]


@dataclass(frozen=True, slots=True)
class _Field:
    """Type and constraints of one ``<section>.<field>`` setting.

    ``parse`` returns the normalized value, or ``None`` after recording an
    issue. Text is stripped; ``allow_empty=False`` rejects blank text.
    """

    kind: FieldKind
    allow_empty: bool = True
    minimum: float | None = None
    pattern: re.Pattern[str] | None = None
    pattern_hint: str = ""
    choices: tuple[str, ...] = ()

    def parse(self, value: object, path: str, issues: _IssueCollector) -> object | None:
        if self.kind == "bool":
            if isinstance(value, bool):
                return value
            issues.add(path, f"expected boolean, got {type(value).__name__}")
            return None
        if self.kind in {"int", "float"}:
            return self._parse_number(value, path, issues)
        return self._parse_text(value, path, issues)

    def _parse_number(self, value: object, path: str, issues: _IssueCollector) -> object | None:
        accepted = (int,) if self.kind == "int" else (int, float)
        if isinstance(value, bool) or not isinstance(value, accepted):
            expected = "integer" if self.kind == "int" else "number"
            issues.add(path, f"expected {expected}, got {type(value).__name__}")
            return None
        number: int | float = value if self.kind == "int" else float(value)
        if isinstance(number, float) and not math.isfinite(number):
            issues.add(path, "must be finite")
            return None
        if self.minimum is not None and number < self.minimum:
            bound = int(self.minimum) if self.kind == "int" else self.minimum
            issues.add(path, f"must be >= {bound}")
            return None
        return number

    def _parse_text(self, value: object, path: str, issues: _IssueCollector) -> str | None:
        if not isinstance(value, str):
            issues.add(path, f"expected string, got {type(value).__name__}")
            return None
        text = value.strip()
        if not text:
            if self.allow_empty:
                return text
            issues.add(path, "must not be empty")
            return None
        if "\x00" in text:
            issues.add(path, "must not contain NUL bytes")
            return None
        if self.choices and text not in self.choices:
            expected = ", ".join(sorted(self.choices))
            issues.add(path, f"invalid value {text!r}; expected one of: {expected}")
            return None
        if self.pattern is not None and not self.pattern.fullmatch(text):
            issues.add(path, self.pattern_hint)
            return None
        return text


_REQUIRED_TEXT = _Field("text", allow_empty=False)
_OPTIONAL_TEXT = _Field("text")
_FLAG = _Field("bool")
_COUNT = _Field("int", minimum=0)
_THRESHOLD = _Field("float", minimum=0.0)
_DATE = _Field(
    "text", pattern=_DATE_PATTERN, pattern_hint="expected date in YYYY-MM-DD form or empty string"
)
_SCHEMA_VERSION = _Field("int", minimum=1)

_SECTIONS: Final[dict[str, dict[str, _Field]]] = {
    "analyze": {
        "dockerfile": _REQUIRED_TEXT,
        "branch": _OPTIONAL_TEXT,
        "max_commits": _COUNT,
        "since": _DATE,
        "until": _DATE,
        "skip_failed": _FLAG,
        "format": _Field("choice", allow_empty=False, choices=REPORT_FORMATS),
    },
    "build": {
        "docker_binary": _REQUIRED_TEXT,
        "tag_prefix": _Field(
            "text",
            allow_empty=False,
            pattern=_TAG_PREFIX_PATTERN,
            pattern_hint="must be a lowercase docker repository name",
        ),
        "no_cache": _FLAG,
        "remove_images": _FLAG,
        "include_empty_layers": _FLAG,
    },
    "bisect": {
        "size_threshold_mb": _THRESHOLD,
        "time_threshold_seconds": _THRESHOLD,
        "good": _OPTIONAL_TEXT,
        "bad": _OPTIONAL_TEXT,
    },
    "git": {
        "git_binary": _REQUIRED_TEXT,
        "allow_dirty": _FLAG,
    },
    "observability": {
        "log_level": _Field("choice", allow_empty=False, choices=LOG_LEVEL_NAMES),
        "log_dir": _REQUIRED_TEXT,
        "log_to_file": _FLAG,
    },
}


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ProfileOverlay",
    "TimeMachineConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
