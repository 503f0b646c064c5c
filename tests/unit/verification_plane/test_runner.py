"""
issue-loop — unit tests for the verification runner

File: tests/unit/verification_plane/test_runner.py
Last updated: 2026-10-17

Purpose
- Validate suite ordering, dedup, pass/fail aggregation and the full-verify cadence.
"""

from __future__ import annotations

import shutil
from datetime import UTC, datetime
from pathlib import Path

import pytest

from issue_loop.domain.models import VerificationCadence
from issue_loop.utils.process import CommandResult, CommandSpec, LocalSubprocessExecutor
from issue_loop.verification_plane.runner import (
    increment_tasks_since_full_verify,
    record_full_verify_success,
    run_verify_suite,
    select_global_commands,
)


class FakeExecutor:
    """Records every command; exit codes come from ``results`` keyed by shell text."""

    def __init__(
        self, results: dict[str, int] | None = None, timeouts: set[str] | None = None
    ) -> None:
        self.results = dict(results or {})
        self.timeouts = set(timeouts or set())
        self.calls: list[CommandSpec] = []

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        command = spec.argv[-1]
        if command in self.timeouts:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=5,
                timed_out=True,
                error="timed out",
            )
        code = self.results.get(command, 0)
        return CommandResult(
            argv=spec.argv,
            exit_code=code,
            stdout="\n".join(f"{command} line {index}" for index in range(5)),
            stderr="",
            duration_ms=1,
        )


@pytest.mark.asyncio
async def test_suite_runs_in_scope_order_and_dedups() -> None:
    executor = FakeExecutor()

    result = await run_verify_suite(
        ["pytest -q", "ruff check ."],
        ["ruff check .", "mypy src"],
        ["bandit -r src"],
        timeout_per_command=30,
        max_output_lines=50,
        executor=executor,
    )

    assert [call.argv[-1] for call in executor.calls] == [
        "pytest -q",
        "ruff check .",
        "mypy src",
        "bandit -r src",
    ]
    assert [item.scope for item in result.commands] == ["task", "task", "global", "security"]
    assert all(call.argv[:2] == ("bash", "-lc") for call in executor.calls)
    assert all(call.timeout_seconds == 30 for call in executor.calls)
    assert result.all_passed


@pytest.mark.asyncio
async def test_any_failure_fails_the_suite() -> None:
    executor = FakeExecutor(results={"mypy src": 1})

    result = await run_verify_suite(
        ["pytest -q"],
        ["mypy src"],
        timeout_per_command=10,
        max_output_lines=2,
        executor=executor,
    )

    assert not result.all_passed
    assert result.failed == ("mypy src",)
    assert result.passed == ("pytest -q",)
    assert result.commands[1].output_tail == "mypy src line 3\nmypy src line 4"


@pytest.mark.asyncio
async def test_timeout_counts_as_failure() -> None:
    executor = FakeExecutor(timeouts={"sleep 100"})

    result = await run_verify_suite(
        ["sleep 100"], [], timeout_per_command=1, max_output_lines=10, executor=executor
    )

    assert result.failed == ("sleep 100",)
    assert result.commands[0].timed_out


@pytest.mark.asyncio
async def test_empty_suite_passes() -> None:
    result = await run_verify_suite(
        [], ["  "], timeout_per_command=1, max_output_lines=10, executor=FakeExecutor()
    )

    assert result.commands == ()
    assert result.all_passed


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
async def test_local_executor_runs_real_commands(tmp_path: Path) -> None:
    result = await run_verify_suite(
        ["echo ok", "exit 3"],
        [],
        timeout_per_command=20,
        max_output_lines=10,
        cwd=str(tmp_path),
        executor=LocalSubprocessExecutor(),
    )

    assert result.passed == ("echo ok",)
    assert "ok" in result.commands[0].output_tail.splitlines()
    assert result.commands[1].exit_code == 3


def test_full_commands_due_on_cadence() -> None:
    cadence = VerificationCadence(tasks_since_full_verify=2)

    commands, is_full = select_global_commands(
        cadence, full_commands=["make all"], fast_commands=["make fast"], full_every_n_tasks=3
    )

    assert commands == ("make all",)
    assert is_full


def test_fast_commands_between_full_runs() -> None:
    cadence = VerificationCadence(tasks_since_full_verify=0)

    commands, is_full = select_global_commands(
        cadence, full_commands=["make all"], fast_commands=["make fast"], full_every_n_tasks=3
    )

    assert commands == ("make fast",)
    assert not is_full


def test_full_before_completion_overrides_cadence() -> None:
    commands, is_full = select_global_commands(
        VerificationCadence(),
        full_commands=["make all"],
        fast_commands=[],
        full_every_n_tasks=100,
        before_completion=True,
    )

    assert commands == ("make all",)
    assert is_full


def test_no_full_commands_falls_back_to_fast() -> None:
    commands, is_full = select_global_commands(
        VerificationCadence(tasks_since_full_verify=9),
        full_commands=[],
        fast_commands=["make fast"],
        full_every_n_tasks=1,
    )

    assert commands == ("make fast",)
    assert not is_full


def test_cadence_bookkeeping() -> None:
    cadence = VerificationCadence()
    increment_tasks_since_full_verify(cadence)
    increment_tasks_since_full_verify(cadence)
    assert cadence.tasks_since_full_verify == 2

    record_full_verify_success(cadence, datetime(2026, 10, 17, 1, 2, 3, tzinfo=UTC))

    assert cadence.tasks_since_full_verify == 0
    assert cadence.last_full_verify_at == "2026-10-17T01:02:03Z"
