"""
issue-loop — verification runner

File: src/issue_loop/verification_plane/runner.py
Last updated: 2026-10-17

Purpose
- Run shell commands asynchronously with per-command timeouts and bounded output.
- Run the authoritative verify suite for one attempt.
- Track the full-verify cadence stored in the task-graph document.

What should be included in this file
- ``CommandSpec``/``CommandResult`` and ``LocalSubprocessExecutor``.
- ``run_verify_suite`` returning ``VerifySuiteResult``.
- Cadence helpers: ``select_global_commands``, ``record_full_verify_success``,
  ``increment_tasks_since_full_verify``.

Functional requirements
- ``all_passed`` is true only when every command in the combined suite succeeded.
- An empty suite passes.
- A timed-out command is killed and counts as failed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from issue_loop.domain.models import VerificationCadence
from issue_loop.utils.clock import format_utc
from issue_loop.utils.process import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)


@dataclass(frozen=True, slots=True)
class VerifyCommandOutcome:
    command: str
    scope: str
    passed: bool
    exit_code: int | None
    timed_out: bool
    duration_ms: int
    output_tail: str

    def to_dict(self) -> dict[str, object]:
        return {
            "command": self.command,
            "scope": self.scope,
            "passed": self.passed,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
            "durationMs": self.duration_ms,
            "outputTail": self.output_tail,
        }


@dataclass(frozen=True, slots=True)
class VerifySuiteResult:
    commands: tuple[VerifyCommandOutcome, ...]

    @property
    def passed(self) -> tuple[str, ...]:
        return tuple(item.command for item in self.commands if item.passed)

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(item.command for item in self.commands if not item.passed)

    @property
    def all_passed(self) -> bool:
        return all(item.passed for item in self.commands)


async def run_verify_suite(
    task_commands: Sequence[str],
    global_commands: Sequence[str],
    security_commands: Sequence[str] | None = None,
    *,
    timeout_per_command: float,
    max_output_lines: int,
    cwd: str | None = None,
    executor: CommandExecutor | None = None,
    logger: Any | None = None,
) -> VerifySuiteResult:
    """Run task, global and security commands in order through ``bash -lc``.

    A command listed in more than one group runs once, under its first scope.
    """

    runner = executor if executor is not None else LocalSubprocessExecutor()
    log = logger if logger is not None else structlog.get_logger(__name__)

    planned: list[tuple[str, str]] = []
    seen: set[str] = set()
    for scope, commands in (
        ("task", task_commands),
        ("global", global_commands),
        ("security", security_commands or ()),
    ):
        for command in commands:
            stripped = command.strip()
            if not stripped or stripped in seen:
                continue
            seen.add(stripped)
            planned.append((scope, stripped))

    outcomes: list[VerifyCommandOutcome] = []
    for scope, command in planned:
        result = await runner.run(
            CommandSpec(
                argv=("bash", "-lc", command),
                cwd=cwd,
                timeout_seconds=timeout_per_command,
            )
        )
        combined = "\n".join(
            part for part in (result.stdout, result.stderr, result.error or "") if part
        )
        outcome = VerifyCommandOutcome(
            command=command,
            scope=scope,
            passed=result.is_success(),
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            duration_ms=result.duration_ms,
            output_tail=_tail_lines(combined, max_output_lines),
        )
        outcomes.append(outcome)
        log.info(
            "verify_command_finished",
            command=command,
            scope=scope,
            passed=outcome.passed,
            exit_code=outcome.exit_code,
            timed_out=outcome.timed_out,
            duration_ms=outcome.duration_ms,
        )

    return VerifySuiteResult(commands=tuple(outcomes))


def select_global_commands(
    cadence: VerificationCadence,
    *,
    full_commands: Sequence[str],
    fast_commands: Sequence[str],
    full_every_n_tasks: int,
    before_completion: bool = False,
    run_full_before_completion: bool = True,
) -> tuple[tuple[str, ...], bool]:
    """Return ``(commands, is_full)`` for the next verify run."""

    due = cadence.tasks_since_full_verify + 1 >= max(1, full_every_n_tasks)
    if before_completion and run_full_before_completion:
        due = True
    if due and full_commands:
        return tuple(full_commands), True
    return tuple(fast_commands), False


def record_full_verify_success(cadence: VerificationCadence, now: datetime) -> None:
    cadence.tasks_since_full_verify = 0
    cadence.last_full_verify_at = format_utc(now)


def increment_tasks_since_full_verify(cadence: VerificationCadence) -> None:
    cadence.tasks_since_full_verify += 1


def _tail_lines(text: str, max_lines: int) -> str:
    lines = text.rstrip("\n").split("\n") if text else []
    if max_lines <= 0 or len(lines) <= max_lines:
        return "\n".join(lines)
    return "\n".join(lines[-max_lines:])


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "VerifyCommandOutcome",
    "VerifySuiteResult",
    "increment_tasks_since_full_verify",
    "record_full_verify_success",
    "run_verify_suite",
    "select_global_commands",
]
