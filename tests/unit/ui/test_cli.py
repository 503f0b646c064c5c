"""
issue-loop — unit tests for the CLI router and exit-code contract

File: tests/unit/ui/test_cli.py
Last updated: 2026-10-17

Purpose
- Parser wiring, JSON output of read-only commands, and exit-code routing.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from issue_loop.control_plane.lock import LoopLock
from issue_loop.errors import AgentInvocationFailure, LockContentionError, StalePlanDetected
from issue_loop.main import ExitCode, _route_exception, cli_entrypoint
from issue_loop.ui.cli import build_parser, run_cli

DOCUMENT: dict[str, object] = {
    "issueNumber": 12,
    "userStories": [
        {"id": "US-001", "title": "Add config parser", "priority": 1},
        {"id": "US-002", "title": "Add config writer", "priority": 2, "dependsOn": ["US-001"]},
    ],
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("ISSUE_LOOP_"):
            monkeypatch.delenv(key)


def _write_document(root: Path) -> Path:
    path = root / "prd.json"
    path.write_text(json.dumps(DOCUMENT, indent=2), encoding="utf-8")
    return path


def test_parser_routes_subcommands() -> None:
    parser = build_parser()

    run_args = parser.parse_args(["run", "--max-iterations", "3", "--json"])
    wisp_args = parser.parse_args(["wisp", "add", "--note", "use the v2 endpoint"])

    assert run_args.command == "run"
    assert run_args.max_iterations == 3
    assert run_args.json is True
    assert callable(run_args.handler)
    assert wisp_args.note == "use the v2 endpoint"


def test_missing_command_prints_help_and_returns_config_error(
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert run_cli([]) == 2
    assert "usage" in capsys.readouterr().err


def test_config_json_reports_effective_defaults(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["config", "--json", "--repo-root", str(tmp_path)])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["command"] == "config"
    assert payload["active_profile"] is None
    assert payload["config"]["loop"]["max_iterations"] == 25
    assert payload["config"]["paths"]["document"] == str((tmp_path / "prd.json").resolve())


def test_unknown_profile_is_a_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["config", "--repo-root", str(tmp_path), "--profile", "nonexistent"])

    assert code == 2
    assert "error:" in capsys.readouterr().err


def test_status_json_reports_progress_and_next_task(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write_document(tmp_path)

    code = run_cli(["status", "--json", "--repo-root", str(tmp_path)])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["status"] == "active"
    assert payload["work_unit"] == 12
    assert payload["progress"] == {"passed": 0, "total": 2}
    assert payload["next"]["outcome"] == "selected"
    assert payload["next"]["task_id"] == "US-001"
    assert payload["open_findings"] == []


def test_status_text_lists_tasks(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write_document(tmp_path)

    assert run_cli(["status", "--no-color", "--repo-root", str(tmp_path)]) == 0

    out = capsys.readouterr().out
    assert "Status: active" in out
    assert "Progress: 0/2 passed" in out
    assert "US-002" in out


def test_status_without_document_is_a_config_error(tmp_path: Path) -> None:
    assert run_cli(["status", "--repo-root", str(tmp_path)]) == 2


def test_corrupt_document_is_a_config_error(tmp_path: Path) -> None:
    (tmp_path / "prd.json").write_text("{not json", encoding="utf-8")

    assert run_cli(["status", "--repo-root", str(tmp_path)]) == 2


def test_backfill_fills_uids_in_place(tmp_path: Path) -> None:
    path = _write_document(tmp_path)

    assert run_cli(["backfill", "--repo-root", str(tmp_path)]) == 0

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert all(story["uid"] for story in saved["userStories"])
    assert saved["status"] == "active"


def test_mutating_command_reports_lock_contention(tmp_path: Path) -> None:
    _write_document(tmp_path)
    holder = LoopLock(tmp_path / ".issue-loop" / "loop.lock")
    holder.acquire()
    try:
        code = run_cli(["backfill", "--repo-root", str(tmp_path)])
    finally:
        holder.release()

    assert code == 5


def test_review_approve_unknown_finding_is_a_config_error(tmp_path: Path) -> None:
    _write_document(tmp_path)

    assert run_cli(["review", "approve", "rev_x", "f1", "--repo-root", str(tmp_path)]) == 2


def test_entrypoint_maps_help_to_success() -> None:
    assert cli_entrypoint(["--help"]) == 0


def test_route_exception_follows_cause_chain() -> None:
    wrapped = RuntimeError("loop crashed")
    wrapped.__cause__ = AgentInvocationFailure("agent exited with code 1 and no output")

    assert _route_exception(LockContentionError("/tmp/x.lock")) is ExitCode.LOCK_CONTENTION
    assert _route_exception(StalePlanDetected("stale")) is ExitCode.REPLAN_REQUIRED
    assert _route_exception(wrapped) is ExitCode.AGENT_FAILURE
    assert _route_exception(RuntimeError("boom")) is ExitCode.INTERNAL_ERROR
