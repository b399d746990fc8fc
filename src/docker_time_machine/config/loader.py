"""
docker-time-machine — runtime config loader.

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

Precedence: CLI > env (``DTM_``) > profile overlay > file > defaults. Every
setting lives at ``<section>.<field>``; its env name is
``DTM_<SECTION>_<FIELD>`` and its env value is coerced to the type of the
built-in default. ``log_dir`` is resolved against the config file's directory.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from docker_time_machine.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "dtm.toml"
ENV_PREFIX: Final[str] = "DTM_"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_UNBOUND_SECTIONS: Final[frozenset[str]] = frozenset({"meta", "profiles"})
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _env_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(text)


# Keyed by the exact type of the built-in default.
_ENV_COERCERS: Final[dict[type, tuple[Callable[[str], object], str]]] = {
    bool: (_env_bool, "a boolean (true/false/1/0/yes/no/on/off)"),
    int: (int, "an integer"),
    float: (float, "a number"),
    str: (str, "a string"),
}


def env_bindings() -> dict[str, tuple[str, str]]:
    """Map each ``DTM_*`` variable name to the ``(section, field)`` it overrides."""
    bindings: dict[str, tuple[str, str]] = {}
    for section, fields in DEFAULT_CONFIG.items():
        if section in _UNBOUND_SECTIONS or not isinstance(fields, Mapping):
            continue
        for field in fields:
            bindings[f"{ENV_PREFIX}{section.upper()}_{field.upper()}"] = (section, field)
    return dict(sorted(bindings.items()))


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> dict[str, Any]:
    """Load the effective config.

    Without ``config_path`` the loader looks for ``dtm.toml`` in ``cwd`` and
    silently falls back to defaults; an explicit path must exist. The file is
    validated on its own before the profile is laid over it, so file errors are
    reported against file paths. The final merge is validated again.
    """
    environ = os.environ if environ is None else environ
    source = _config_file(config_path, cwd)

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )

    active_profile = _pick_profile(profile, environ)
    if active_profile is not None:
        config = apply_profile_overlay(config, active_profile)

    config = merge_config(config, _env_layer(environ))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    config = assert_valid_config(config, active_profile=active_profile)
    return normalize_paths(config, base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields against ``base_dir``."""
    result = merge_config({}, config)
    for section, field in PATH_FIELDS:
        values = result.get(section)
        if isinstance(values, dict) and isinstance(values.get(field), str):
            values[field] = _absolute_posix(values[field], base_dir)
    return result


def _config_file(config_path: str | Path | None, cwd: Path | None) -> Path:
    if config_path is not None:
        return Path(config_path).expanduser().resolve()
    return ((cwd or Path.cwd()) / DEFAULT_CONFIG_FILE).resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _pick_profile(explicit: str | None, environ: Mapping[str, str]) -> str | None:
    raw = explicit if explicit is not None else environ.get(PROFILE_ENV)
    return (raw or "").strip() or None


def _env_layer(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    layer: dict[str, dict[str, object]] = {}
    for name, (section, field) in env_bindings().items():
        raw = environ.get(name)
        if raw is None:
            continue
        default = DEFAULT_CONFIG[section][field]  # type: ignore[literal-required]
        coerce, expected = _ENV_COERCERS[type(default)]
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {section}.{field} must be {expected}") from exc
        layer.setdefault(section, {})[field] = value
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    layer: dict[str, dict[str, object]] = {}
    for key in sorted(overrides):
        value = overrides[key]
        if value is None:
            continue
        section, dot, field = key.partition(".")
        if not dot or not section or not field or "." in field:
            raise ConfigLoadError(f"CLI override key must be <section>.<field>, got {key!r}")
        layer.setdefault(section, {})[field] = value
    return layer


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV",
    "env_bindings",
    "load_config",
    "normalize_paths",
]
