"""
issue-loop — unit tests for task scheduling

File: tests/unit/control_plane/test_scheduler.py
Last updated: 2026-10-17

Purpose
- Lowest priority first, ties by document order, and two distinct blocked diagnostics.
"""

from __future__ import annotations

import pytest

from issue_loop.control_plane.scheduler import ScheduleOutcome, Scheduler, find_dependency_cycle
from issue_loop.domain.models import Task, TaskGraphDocument


def _task(
    task_id: str,
    priority: int,
    *,
    depends_on: tuple[str, ...] = (),
    passes: bool = False,
    attempts: int = 0,
) -> Task:
    return Task(
        id=task_id,
        title=f"Task {task_id}",
        priority=priority,
        depends_on=list(depends_on),
        passes=passes,
        attempts=attempts,
    )


def test_priority_tie_scenario_is_reproducible() -> None:
    document = TaskGraphDocument(
        work_unit=1,
        tasks=[
            _task("A", 1, passes=True),
            _task("B", 2, depends_on=("A",)),
            _task("C", 1, depends_on=("A",)),
        ],
    )
    scheduler = Scheduler(max_attempts=3)

    order: list[str] = []
    for _ in range(2):
        decision = scheduler.schedule(document)
        assert decision.outcome is ScheduleOutcome.SELECTED
        assert decision.task_id is not None
        order.append(decision.task_id)
        selected = document.task_by_id(decision.task_id)
        assert selected is not None
        selected.passes = True

    assert order == ["C", "B"]
    assert scheduler.schedule(document).outcome is ScheduleOutcome.COMPLETE


def test_equal_priority_ties_break_by_document_order() -> None:
    document = TaskGraphDocument(
        work_unit=1,
        tasks=[_task("US-002", 3), _task("US-001", 3), _task("US-003", 3)],
    )

    decision = Scheduler(max_attempts=3).schedule(document)

    assert decision.task_id == "US-002"


def test_exhausted_tasks_are_skipped() -> None:
    document = TaskGraphDocument(
        work_unit=1,
        tasks=[_task("A", 1, attempts=3), _task("B", 5)],
    )

    decision = Scheduler(max_attempts=3).schedule(document)

    assert decision.task_id == "B"
    assert decision.exhausted == ("A",)


def test_all_exhausted_blocks_with_attempt_diagnostic() -> None:
    document = TaskGraphDocument(
        work_unit=1,
        tasks=[_task("A", 1, attempts=2), _task("B", 2, attempts=2)],
    )

    decision = Scheduler(max_attempts=2).schedule(document)

    assert decision.outcome is ScheduleOutcome.BLOCKED_EXHAUSTED
    assert decision.is_blocked
    assert "A" in decision.diagnostic and "B" in decision.diagnostic


def test_cycle_blocks_with_dependency_diagnostic() -> None:
    document = TaskGraphDocument(
        work_unit=1,
        tasks=[_task("A", 1, depends_on=("B",)), _task("B", 1, depends_on=("A",))],
    )

    decision = Scheduler(max_attempts=3).schedule(document)

    assert decision.outcome is ScheduleOutcome.BLOCKED_DEPENDENCIES
    assert decision.cycle == ("A", "B")
    assert decision.diagnostic


def test_unknown_dependency_blocks() -> None:
    document = TaskGraphDocument(work_unit=1, tasks=[_task("A", 1, depends_on=("ZZ",))])

    decision = Scheduler(max_attempts=3).schedule(document)

    assert decision.outcome is ScheduleOutcome.BLOCKED_DEPENDENCIES
    assert decision.blocked_by_dependencies == ("A",)
    assert "ZZ" in decision.diagnostic


def test_dependency_on_exhausted_task_blocks() -> None:
    document = TaskGraphDocument(
        work_unit=1,
        tasks=[_task("A", 1, attempts=3), _task("B", 2, depends_on=("A",))],
    )

    decision = Scheduler(max_attempts=3).schedule(document)

    assert decision.outcome is ScheduleOutcome.BLOCKED_DEPENDENCIES


def test_find_dependency_cycle_reports_downstream_tasks() -> None:
    tasks = [
        _task("A", 1, depends_on=("B",)),
        _task("B", 1, depends_on=("A",)),
        _task("C", 1, depends_on=("A",)),
        _task("D", 1),
    ]

    assert find_dependency_cycle(tasks) == ("A", "B", "C")


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Scheduler(max_attempts=0)
