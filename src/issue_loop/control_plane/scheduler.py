"""Deterministic scheduler selecting the next task to execute."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from heapq import heapify, heappop, heappush
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.domain.policies import is_task_exhausted

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from issue_loop.domain.models import Task, TaskGraphDocument


class ScheduleOutcome(StrEnum):
    SELECTED = "selected"
    COMPLETE = "complete"
    BLOCKED_EXHAUSTED = "blocked_exhausted"
    BLOCKED_DEPENDENCIES = "blocked_dependencies"


@dataclass(frozen=True, slots=True)
class ScheduleDecision:
    """Result of one scheduler tick."""

    outcome: ScheduleOutcome
    task_id: str | None = None
    remaining: tuple[str, ...] = ()
    exhausted: tuple[str, ...] = ()
    blocked_by_dependencies: tuple[str, ...] = ()
    cycle: tuple[str, ...] = ()
    diagnostic: str = ""

    def __post_init__(self) -> None:
        if self.outcome is ScheduleOutcome.SELECTED and not self.task_id:
            raise ValueError("selected decision requires task_id")
        if self.outcome is not ScheduleOutcome.SELECTED and self.task_id is not None:
            raise ValueError("only a selected decision may carry task_id")

    @property
    def is_blocked(self) -> bool:
        return self.outcome in {
            ScheduleOutcome.BLOCKED_EXHAUSTED,
            ScheduleOutcome.BLOCKED_DEPENDENCIES,
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "task_id": self.task_id,
            "remaining": list(self.remaining),
            "exhausted": list(self.exhausted),
            "blocked_by_dependencies": list(self.blocked_by_dependencies),
            "cycle": list(self.cycle),
            "diagnostic": self.diagnostic,
        }


@dataclass(frozen=True, slots=True)
class _Candidate:
    task_id: str
    priority: int
    position: int


class Scheduler:
    """Lowest-priority-first selection with stable document-order tie-breaking."""

    __slots__ = ("_logger", "_max_attempts")

    def __init__(self, *, max_attempts: int, logger: Any | None = None) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def schedule(self, document: TaskGraphDocument) -> ScheduleDecision:
        tasks_by_id = _index_tasks(document.tasks)
        remaining = [task for task in document.tasks if not task.passes]
        if not remaining:
            self._logger.info("schedule_complete", total=len(document.tasks))
            return ScheduleDecision(outcome=ScheduleOutcome.COMPLETE)

        remaining_ids = tuple(task.id for task in remaining)
        exhausted = tuple(
            task.id for task in remaining if is_task_exhausted(task, self._max_attempts)
        )

        candidates: list[_Candidate] = []
        waiting: list[str] = []
        for position, task in enumerate(document.tasks):
            if task.passes or is_task_exhausted(task, self._max_attempts):
                continue
            if _dependencies_satisfied(task, tasks_by_id):
                candidates.append(_Candidate(task.id, task.priority, position))
            else:
                waiting.append(task.id)

        if candidates:
            winner = min(candidates, key=lambda item: (item.priority, item.position))
            self._logger.info(
                "schedule_selected",
                task_id=winner.task_id,
                priority=winner.priority,
                candidates=len(candidates),
                remaining=len(remaining_ids),
            )
            return ScheduleDecision(
                outcome=ScheduleOutcome.SELECTED,
                task_id=winner.task_id,
                remaining=remaining_ids,
                exhausted=exhausted,
                blocked_by_dependencies=tuple(waiting),
            )

        if len(exhausted) == len(remaining_ids):
            diagnostic = (
                f"all {len(exhausted)} remaining task(s) used {self._max_attempts} attempts: "
                + ", ".join(exhausted)
            )
            self._logger.warning("schedule_blocked_exhausted", exhausted=list(exhausted))
            return ScheduleDecision(
                outcome=ScheduleOutcome.BLOCKED_EXHAUSTED,
                remaining=remaining_ids,
                exhausted=exhausted,
                diagnostic=diagnostic,
            )

        cycle = find_dependency_cycle(document.tasks)
        diagnostic = _dependency_diagnostic(
            waiting, tasks_by_id, exhausted=set(exhausted), cycle=cycle
        )
        self._logger.warning(
            "schedule_blocked_dependencies",
            waiting=waiting,
            cycle=list(cycle),
            diagnostic=diagnostic,
        )
        return ScheduleDecision(
            outcome=ScheduleOutcome.BLOCKED_DEPENDENCIES,
            remaining=remaining_ids,
            exhausted=exhausted,
            blocked_by_dependencies=tuple(waiting),
            cycle=cycle,
            diagnostic=diagnostic,
        )


def find_dependency_cycle(tasks: Sequence[Task]) -> tuple[str, ...]:
    """Return the ids of tasks on or behind a dependency cycle, in sorted order.

    Kahn's algorithm over the known-id subgraph: whatever never reaches indegree zero
    is either on a cycle or depends on one.
    """

    known = {task.id for task in tasks}
    children: dict[str, set[str]] = {task_id: set() for task_id in known}
    indegree: dict[str, int] = dict.fromkeys(known, 0)
    for task in tasks:
        for dependency_id in set(task.depends_on):
            if dependency_id not in known:
                continue
            if task.id not in children[dependency_id]:
                children[dependency_id].add(task.id)
                indegree[task.id] += 1

    ready = [task_id for task_id, degree in indegree.items() if degree == 0]
    heapify(ready)
    visited: set[str] = set()
    while ready:
        task_id = heappop(ready)
        visited.add(task_id)
        for child_id in sorted(children[task_id]):
            indegree[child_id] -= 1
            if indegree[child_id] == 0:
                heappush(ready, child_id)

    return tuple(sorted(known - visited))


def _index_tasks(tasks: Sequence[Task]) -> dict[str, Task]:
    indexed: dict[str, Task] = {}
    for task in tasks:
        indexed.setdefault(task.id, task)
    return indexed


def _dependencies_satisfied(task: Task, tasks_by_id: Mapping[str, Task]) -> bool:
    for dependency_id in task.depends_on:
        dependency = tasks_by_id.get(dependency_id)
        if dependency is None or not dependency.passes:
            return False
    return True


def _dependency_diagnostic(
    waiting: Sequence[str],
    tasks_by_id: Mapping[str, Task],
    *,
    exhausted: set[str],
    cycle: tuple[str, ...],
) -> str:
    reasons: list[str] = []
    if cycle:
        reasons.append("dependency cycle among " + ", ".join(cycle))
    for task_id in waiting:
        task = tasks_by_id[task_id]
        unknown = [dep for dep in task.depends_on if dep not in tasks_by_id]
        if unknown:
            reasons.append(f"{task_id} depends on unknown task(s) {', '.join(unknown)}")
        stuck = [dep for dep in task.depends_on if dep in exhausted]
        if stuck:
            reasons.append(f"{task_id} waits on exhausted task(s) {', '.join(stuck)}")
    if not reasons:
        reasons.append("no runnable task: " + ", ".join(waiting))
    return "; ".join(reasons)


__all__ = [
    "ScheduleDecision",
    "ScheduleOutcome",
    "Scheduler",
    "find_dependency_cycle",
]
