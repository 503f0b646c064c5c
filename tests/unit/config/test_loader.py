"""
issue-loop — unit tests for config loader

File: tests/unit/config/test_loader.py
Last updated: 2026-10-17

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > profile > file > defaults.
- Env var path mapping and type coercion, including comma-separated lists.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from issue_loop.config import ConfigValidationError
from issue_loop.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text.strip() + "\n", encoding="utf-8")
    return path


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "[loop]\nmax_iterations = 4\n")
    env = {"ISSUE_LOOP_LOOP_MAX_ITERATIONS": "6"}

    defaults = load_config(_write_config(tmp_path / "empty.toml", ""))
    from_file = load_config(config_path)
    from_env = load_config(config_path, environ=env)
    from_cli = load_config(
        config_path, environ=env, cli_overrides={"loop.max_iterations": 7}
    )

    assert defaults["loop"]["max_iterations"] == 25
    assert from_file["loop"]["max_iterations"] == 4
    assert from_env["loop"]["max_iterations"] == 6
    assert from_cli["loop"]["max_iterations"] == 7


def test_env_overrides_beat_profile_overlay(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    strict = load_config(config_path, profile="strict", environ={})
    overridden = load_config(
        config_path, profile="strict", environ={"ISSUE_LOOP_LOOP_MAX_ATTEMPTS": "5"}
    )

    assert strict["loop"]["max_attempts"] == 2
    assert strict["guards"]["context_manifest_required"] is True
    assert overridden["loop"]["max_attempts"] == 5


def test_profile_can_be_selected_by_env(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    loaded = load_config(config_path, environ={"ISSUE_LOOP_PROFILE": "fast"})

    assert loaded["review"]["enabled"] is False
    assert loaded["guards"]["gate_mode"] == "warn"


def test_unknown_profile_is_rejected(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    with pytest.raises(ConfigValidationError, match="not defined"):
        load_config(config_path, profile="nightly", environ={})


def test_user_defined_profile_from_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "issue-loop.toml",
        """
[profiles.nightly.verification]
full_every_n_tasks = 2

[profiles.nightly.review]
min_confidence = 0.9
""",
    )

    loaded = load_config(config_path, profile="nightly", environ={})

    assert loaded["verification"]["full_every_n_tasks"] == 2
    assert loaded["review"]["min_confidence"] == 0.9


def test_env_lists_are_comma_separated_and_typed(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    loaded = load_config(
        config_path,
        environ={
            "ISSUE_LOOP_VERIFICATION_FULL_GLOBAL_COMMANDS": "pytest -q, ruff check .",
            "ISSUE_LOOP_REVIEW_MIN_CONFIDENCE": "1",
            "ISSUE_LOOP_GUARDS_PLACEHOLDER_SCAN": "off",
        },
    )

    assert loaded["verification"]["full_global_commands"] == ["pytest -q", "ruff check ."]
    assert loaded["review"]["min_confidence"] == 1.0
    assert loaded["guards"]["placeholder_scan"] is False


def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    with pytest.raises(ConfigLoadError, match="ISSUE_LOOP_LOOP_MAX_ITERATIONS"):
        load_config(config_path, environ={"ISSUE_LOOP_LOOP_MAX_ITERATIONS": "many"})
    with pytest.raises(ConfigLoadError, match="must be a boolean"):
        load_config(config_path, environ={"ISSUE_LOOP_REVIEW_ENABLED": "maybe"})


def test_missing_explicit_file_and_bad_toml(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml")

    broken = _write_config(tmp_path / "broken.toml", "[loop\nmax_iterations = 1")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken)


def test_default_file_is_optional_and_found_in_search_dir(tmp_path: Path) -> None:
    assert load_config(search_dir=tmp_path, environ={})["loop"]["max_iterations"] == 25

    _write_config(tmp_path / DEFAULT_CONFIG_FILE, "[loop]\nmax_iterations = 3\n")

    assert load_config(search_dir=tmp_path, environ={})["loop"]["max_iterations"] == 3


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "conf" / "issue-loop.toml",
        """
[paths]
document = "../work/prd.json"
template_dir = ""
""",
    )

    loaded = load_config(config_path, environ={})

    root = tmp_path.resolve()
    assert loaded["paths"]["document"] == (root / "work" / "prd.json").as_posix()
    assert loaded["paths"]["template_dir"] == ""
    assert loaded["observability"]["log_dir"] == (
        root / "conf" / ".issue-loop" / "logs"
    ).as_posix()


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "[retry]\nglobal_threshold = 9\n")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert json.loads(first)["retry"]["global_threshold"] == 9


def test_embedded_secret_is_rejected(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", '[github]\napi_token = "abc"\n')

    with pytest.raises(ConfigValidationError, match="embedded secret values are forbidden"):
        load_config(config_path, environ={})


def test_env_name_mapping() -> None:
    assert env_name_for_path(("review", "min_confidence")) == "ISSUE_LOOP_REVIEW_MIN_CONFIDENCE"


def test_env_enum_lists_and_text_fields_follow_schema_kinds(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    loaded = load_config(
        config_path,
        environ={
            "ISSUE_LOOP_REVIEW_BLOCKING_SEVERITIES": "critical,high",
            "ISSUE_LOOP_AGENT_MODEL": "  sonnet ",
            "ISSUE_LOOP_GITHUB_ISSUE_NUMBER": "42",
            "ISSUE_LOOP_UNRELATED_SETTING": "ignored",
        },
    )

    assert loaded["review"]["blocking_severities"] == ["critical", "high"]
    assert loaded["agent"]["model"] == "sonnet"
    assert loaded["github"]["issue_number"] == 42


def test_malformed_cli_override_key_is_rejected(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "issue-loop.toml", "")

    with pytest.raises(ConfigLoadError, match="invalid CLI override key"):
        load_config(config_path, environ={}, cli_overrides={"max_iterations": 3})
