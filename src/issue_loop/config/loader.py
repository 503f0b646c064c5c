"""
issue-loop — runtime config loader.

File: src/issue_loop/config/loader.py
Last updated: 2026-10-17

Purpose
- Resolve the effective loop config from ``issue-loop.toml``, ``ISSUE_LOOP_*`` env vars
  and the handful of CLI flags that override config.

Functional requirements
- Precedence: CLI > env > profile > file > defaults.
- Env vars map one-to-one onto schema leaves (``ISSUE_LOOP_<SECTION>_<KEY>``) and are
  coerced by the leaf's declared kind; list leaves are comma separated.
- Relative paths resolve against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from issue_loop.config.schema import (
    PATH_FIELDS,
    SCHEMA,
    FieldSpec,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "issue-loop.toml"
ENV_PREFIX: Final[str] = "ISSUE_LOOP_"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an env override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    search_dir: Path | None = None,
) -> dict[str, Any]:
    """Load the effective config.

    Without ``config_path`` the default file is looked up in ``search_dir`` (cwd if unset)
    and may be absent. ``cli_overrides`` keys are dotted leaf paths such as
    ``"paths.document"``.
    """

    env = os.environ if environ is None else environ
    if config_path is None:
        base = search_dir if search_dir is not None else Path.cwd()
        resolved_path = (base / DEFAULT_CONFIG_FILE).resolve()
    else:
        resolved_path = Path(config_path).expanduser().resolve()

    merged = merge_config(default_config(), _read_toml(resolved_path, config_path is not None))
    merged = assert_valid_config(merged)

    if profile is None:
        profile = env.get(PROFILE_ENV, "")
    selected = profile.strip() or None
    if selected is not None:
        merged = apply_profile_overlay(merged, selected)

    merged = merge_config(merged, _env_overrides(env))
    merged = merge_config(merged, _cli_overrides(cli_overrides or {}))
    merged = normalize_paths(merged, base_dir=resolved_path.parent)
    return assert_valid_config(merged, active_profile=selected)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve path leaves, including those inside profile overlays. Empty paths stay empty."""

    materialized = merge_config({}, config)
    targets: list[tuple[str, ...]] = list(PATH_FIELDS)
    profiles = materialized.get("profiles")
    if isinstance(profiles, Mapping):
        targets.extend(
            ("profiles", name, *leaf) for name in sorted(profiles) for leaf in PATH_FIELDS
        )
    for path in targets:
        *parents, key = path
        section: object = materialized
        for part in parents:
            section = section.get(part) if isinstance(section, dict) else None
        if not isinstance(section, dict):
            continue
        value = section.get(key)
        if isinstance(value, str) and value.strip():
            section[key] = _resolve_path(value, base_dir)
    return materialized


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Redacted view of ``config`` for logs and ``issue-loop config``."""

    return dump_redacted(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for section, fields in SCHEMA.items():
        for key, spec in fields.items():
            env_name = env_name_for_path((section, key))
            raw = environ.get(env_name)
            if raw is not None:
                overrides.setdefault(section, {})[key] = _coerce_env(raw, spec, env_name)
    return overrides


def _coerce_env(raw: str, spec: FieldSpec, env_name: str) -> object:
    value = raw.strip()
    if spec.kind in {"str_list", "enum_list"}:
        return [item.strip() for item in value.split(",") if item.strip()]
    if spec.kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be an integer, got {raw!r}") from exc
    if spec.kind == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be a number, got {raw!r}") from exc
    if spec.kind == "bool":
        lowered = value.lower()
        if lowered in _BOOLEAN_TRUE:
            return True
        if lowered in _BOOLEAN_FALSE:
            return False
        raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")
    return value


def _cli_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if not section or not key:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        payload.setdefault(section, {})[key] = value
    return payload


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV",
    "ConfigLoadError",
    "dump_effective_config",
    "effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
