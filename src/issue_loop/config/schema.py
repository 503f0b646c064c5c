"""
issue-loop — configuration schema and validation.

File: src/issue_loop/config/schema.py
Last updated: 2026-10-17

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Field table per section (type, bounds, enum values).
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Support the built-in ``fast``/``balanced``/``strict`` profiles plus user-defined ones.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal

from issue_loop.constants import CONFIG_SCHEMA_VERSION, REVIEW_SEVERITIES
from issue_loop.domain.policies import DEFAULT_UI_KEYWORDS
from issue_loop.verification_plane.placeholder_scan import (
    DEFAULT_EXCLUDE_GLOBS,
    DEFAULT_PLACEHOLDER_PATTERNS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("fast", "balanced", "strict")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "document"),
    ("paths", "lock_file"),
    ("paths", "template_dir"),
    ("paths", "workdir"),
    ("observability", "log_dir"),
)

FieldKind = Literal["int", "float", "bool", "str", "text", "path", "enum", "str_list", "enum_list"]


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Type and bounds of one config leaf. ``text`` and ``path`` may be empty."""

    kind: FieldKind
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple[str, ...] = ()


SCHEMA: Final[dict[str, dict[str, FieldSpec]]] = {
    "meta": {
        "schema_version": FieldSpec("int", minimum=1),
    },
    "loop": {
        "max_iterations": FieldSpec("int", minimum=1),
        "max_attempts": FieldSpec("int", minimum=1),
        "confirmation_window": FieldSpec("int", minimum=1),
        "context_max_task_logs": FieldSpec("int", minimum=0),
    },
    "verification": {
        "timeout_seconds": FieldSpec("float", minimum=1),
        "max_output_lines": FieldSpec("int", minimum=1),
        "full_global_commands": FieldSpec("str_list"),
        "fast_global_commands": FieldSpec("str_list"),
        "security_commands": FieldSpec("str_list"),
        "full_every_n_tasks": FieldSpec("int", minimum=1),
        "run_full_before_completion": FieldSpec("bool"),
    },
    "guards": {
        "gate_mode": FieldSpec("enum", choices=("enforce", "warn")),
        "event_required": FieldSpec("bool"),
        "min_search_queries": FieldSpec("int", minimum=0),
        "placeholder_scan": FieldSpec("bool"),
        "placeholder_patterns": FieldSpec("str_list"),
        "placeholder_exclude": FieldSpec("str_list"),
        "browser_required_for_ui": FieldSpec("bool"),
        "allowed_browser_tools": FieldSpec("str_list"),
        "ui_keywords": FieldSpec("str_list"),
        "context_manifest_required": FieldSpec("bool"),
    },
    "retry": {
        "same_task_threshold": FieldSpec("int", minimum=0),
        "global_threshold": FieldSpec("int", minimum=0),
    },
    "review": {
        "enabled": FieldSpec("bool"),
        "auto_enqueue_severities": FieldSpec("enum_list", choices=REVIEW_SEVERITIES),
        "blocking_severities": FieldSpec("enum_list", choices=REVIEW_SEVERITIES),
        "min_confidence": FieldSpec("float", minimum=0.0, maximum=1.0),
        "drain_timeout_seconds": FieldSpec("float", minimum=0.0),
        "backend": FieldSpec("enum", choices=("inherit", "claude", "codex")),
        "model": FieldSpec("text"),
    },
    "wisps": {
        "default_ttl_minutes": FieldSpec("int", minimum=1),
    },
    "agent": {
        "backend": FieldSpec("enum", choices=("claude", "codex")),
        "binary_path": FieldSpec("text"),
        "model": FieldSpec("text"),
        "extra_args": FieldSpec("str_list"),
        "timeout_seconds": FieldSpec("float", minimum=0.0),
    },
    "github": {
        "repo": FieldSpec("text"),
        "issue_number": FieldSpec("int", minimum=0),
        "gh_binary": FieldSpec("str"),
        "timeout_seconds": FieldSpec("float", minimum=1),
    },
    "task_sizing": {
        "mode": FieldSpec("enum", choices=("enforce", "warn", "off")),
        "max_acceptance_criteria": FieldSpec("int", minimum=1),
        "max_verify_commands": FieldSpec("int", minimum=1),
        "max_description_chars": FieldSpec("int", minimum=1),
    },
    "paths": {
        "document": FieldSpec("path"),
        "lock_file": FieldSpec("path"),
        "template_dir": FieldSpec("path"),
        "workdir": FieldSpec("path"),
    },
    "observability": {
        "log_level": FieldSpec("enum", choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_dir": FieldSpec("path"),
        "redact_secrets": FieldSpec("bool"),
        "console": FieldSpec("bool"),
    },
}

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "loop": {
        "max_iterations": 25,
        "max_attempts": 3,
        "confirmation_window": 5,
        "context_max_task_logs": 10,
    },
    "verification": {
        "timeout_seconds": 600.0,
        "max_output_lines": 200,
        "full_global_commands": [],
        "fast_global_commands": [],
        "security_commands": [],
        "full_every_n_tasks": 5,
        "run_full_before_completion": True,
    },
    "guards": {
        "gate_mode": "enforce",
        "event_required": True,
        "min_search_queries": 1,
        "placeholder_scan": True,
        "placeholder_patterns": list(DEFAULT_PLACEHOLDER_PATTERNS),
        "placeholder_exclude": list(DEFAULT_EXCLUDE_GLOBS),
        "browser_required_for_ui": True,
        "allowed_browser_tools": ["playwright", "chrome-devtools", "agent-browser"],
        "ui_keywords": list(DEFAULT_UI_KEYWORDS),
        "context_manifest_required": False,
    },
    "retry": {
        "same_task_threshold": 2,
        "global_threshold": 5,
    },
    "review": {
        "enabled": True,
        "auto_enqueue_severities": ["critical", "high"],
        "blocking_severities": ["critical", "high"],
        "min_confidence": 0.7,
        "drain_timeout_seconds": 300.0,
        "backend": "inherit",
        "model": "",
    },
    "wisps": {
        "default_ttl_minutes": 240,
    },
    "agent": {
        "backend": "claude",
        "binary_path": "",
        "model": "",
        "extra_args": [],
        "timeout_seconds": 0.0,
    },
    "github": {
        "repo": "",
        "issue_number": 0,
        "gh_binary": "gh",
        "timeout_seconds": 60.0,
    },
    "task_sizing": {
        "mode": "warn",
        "max_acceptance_criteria": 8,
        "max_verify_commands": 6,
        "max_description_chars": 1200,
    },
    "paths": {
        "document": "prd.json",
        "lock_file": ".issue-loop/loop.lock",
        "template_dir": "",
        "workdir": ".",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": ".issue-loop/logs",
        "redact_secrets": True,
        "console": True,
    },
    "profiles": {
        "fast": {
            "guards": {"gate_mode": "warn", "min_search_queries": 0},
            "review": {"enabled": False},
            "verification": {"full_every_n_tasks": 10},
        },
        "balanced": {},
        "strict": {
            "loop": {"max_attempts": 2},
            "guards": {"context_manifest_required": True},
            "task_sizing": {"mode": "enforce"},
            "verification": {"full_every_n_tasks": 1},
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


def default_config() -> dict[str, Any]:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade issue-loop.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the issue-loop runtime"
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
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

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

    _reject_unknown_keys(root, {*SCHEMA, "profiles"}, "", issues)
    normalized: dict[str, Any] = {}
    for section in SCHEMA:
        if section not in root:
            issues.add(section, "missing required field")
            continue
        normalized[section] = _validate_section(root[section], section, issues, partial=False)

    profiles_raw = root.get("profiles")
    if profiles_raw is not None:
        profiles_obj = _as_object(profiles_raw, "profiles", issues)
        if profiles_obj is not None:
            normalized["profiles"] = _validate_profiles(profiles_obj, "profiles", issues)

    meta = normalized.get("meta", {})
    version = meta.get("schema_version") if isinstance(meta, Mapping) else None
    if isinstance(version, int) and version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(version))

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile and not issues.has_issues:
        profiles = normalized.get("profiles", {})
        if selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


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


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def dump_redacted(config: Mapping[str, object] | object) -> dict[str, Any]:
    return redact_config(config)


def _validate_section(
    raw: object,
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    section = _as_object(raw, path, issues)
    if section is None:
        return {}
    specs = SCHEMA[path.rsplit(".", 1)[-1]]
    _reject_unknown_keys(section, set(specs), path, issues)
    out: dict[str, Any] = {}
    for key, spec in specs.items():
        key_path = _join(path, key)
        if key not in section:
            if not partial:
                issues.add(key_path, "missing required field")
            continue
        parsed = _coerce_field(section[key], spec, key_path, issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _coerce_field(value: object, spec: FieldSpec, path: str, issues: _IssueCollector) -> Any:
    if spec.kind == "int":
        return _as_int(value, path, issues, minimum=spec.minimum)
    if spec.kind == "float":
        return _as_float(value, path, issues, minimum=spec.minimum, maximum=spec.maximum)
    if spec.kind == "bool":
        return _as_bool(value, path, issues)
    if spec.kind == "str":
        return _as_str(value, path, issues)
    if spec.kind in {"text", "path"}:
        text = _as_text(value, path, issues)
        if text is not None and "\x00" in text:
            issues.add(path, "must not contain NUL bytes")
            return None
        return text
    if spec.kind == "enum":
        return _as_enum(value, path, issues, allowed_values=spec.choices)
    items = _as_str_list(value, path, issues)
    if items is None:
        return None
    if spec.kind == "enum_list":
        for index, item in enumerate(items):
            if item not in spec.choices:
                expected = ", ".join(spec.choices)
                issues.add(
                    f"{path}[{index}]", f"invalid value {item!r}; expected one of: {expected}"
                )
                return None
    return items


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
        allowed = set(SCHEMA) - {"meta"}
        _reject_unknown_keys(profile_obj, allowed, profile_path, issues)
        overlay: dict[str, Any] = {}
        for section in sorted(allowed):
            if section not in profile_obj:
                continue
            overlay[section] = _validate_section(
                profile_obj[section], _join(profile_path, section), issues, partial=True
            )
        out[profile_name] = overlay
    return out


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


def _as_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    return value.strip()


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_text(value, path, issues)
    if parsed is None:
        return None
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {int(minimum)}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            issues.add(f"{path}[{index}]", "expected non-empty string")
            return None
        out.append(item.strip())
    return out


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


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
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "SCHEMA",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "FieldSpec",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
