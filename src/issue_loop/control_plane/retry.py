"""
issue-loop — retry counters and stale-plan detection

File: src/issue_loop/control_plane/retry.py
Last updated: 2026-10-17

Purpose
- Track repeated failures across attempts and escalate to a re-planning checkpoint.

What should be included in this file
- Counter update after every attempt.
- Threshold evaluation returning a ``StaleSignal`` with a readable reason.
- The ``replan_required`` transition plus its audit trail entry.

Functional requirements
- A pass resets both counters; a failure of the same task extends the streak, a
  failure of a different task restarts it at 1.
- Stale-plan detection is an escalation, not a task failure: the document is marked
  and the loop halts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.domain.models import DocumentStatus
from issue_loop.errors import StalePlanDetected
from issue_loop.utils.clock import format_utc

if TYPE_CHECKING:
    from datetime import datetime

    from issue_loop.domain.models import ExecutionRetryState, TaskGraphDocument


@dataclass(frozen=True, slots=True)
class StaleSignal:
    reason: str
    task_id: str | None = None
    streak: int = 0
    consecutive_retries: int = 0

    def to_error(self) -> StalePlanDetected:
        return StalePlanDetected(self.reason)


def update_execution_retry_counters(
    state: ExecutionRetryState,
    task_id: str,
    passed: bool,
    *,
    logger: Any | None = None,
) -> None:
    log = logger if logger is not None else structlog.get_logger(__name__)
    if passed:
        state.consecutive_retries = 0
        state.current_task_retry_streak = 0
        state.current_task_id = task_id
        log.debug("retry_counters_reset", task_id=task_id)
        return

    if state.current_task_id == task_id:
        state.current_task_retry_streak += 1
    else:
        state.current_task_id = task_id
        state.current_task_retry_streak = 1
    state.consecutive_retries += 1
    log.info(
        "retry_counters_incremented",
        task_id=task_id,
        streak=state.current_task_retry_streak,
        consecutive_retries=state.consecutive_retries,
    )


def should_trigger_stale_plan(
    state: ExecutionRetryState,
    same_task_threshold: int,
    global_threshold: int,
    *,
    logger: Any | None = None,
) -> StaleSignal | None:
    """Return a signal once either failure counter reaches its threshold.

    A threshold of 0 disables that check.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    reason: str | None = None
    if same_task_threshold > 0 and state.current_task_retry_streak >= same_task_threshold:
        reason = (
            f"task {state.current_task_id} failed {state.current_task_retry_streak} "
            f"consecutive attempts (threshold {same_task_threshold})"
        )
    elif global_threshold > 0 and state.consecutive_retries >= global_threshold:
        reason = (
            f"{state.consecutive_retries} consecutive failed attempts across tasks "
            f"(threshold {global_threshold})"
        )
    if reason is None:
        return None

    log.warning(
        "stale_plan_detected",
        task_id=state.current_task_id,
        streak=state.current_task_retry_streak,
        consecutive_retries=state.consecutive_retries,
        reason=reason,
    )
    return StaleSignal(
        reason=reason,
        task_id=state.current_task_id,
        streak=state.current_task_retry_streak,
        consecutive_retries=state.consecutive_retries,
    )


def mark_replan_required(
    document: TaskGraphDocument,
    reason: str,
    now: datetime,
    *,
    source: str = "stale_plan",
    logger: Any | None = None,
) -> None:
    log = logger if logger is not None else structlog.get_logger(__name__)
    stamp = format_utc(now)
    retry = document.execution_retry
    document.status = DocumentStatus.REPLAN_REQUIRED
    retry.last_replan_at = stamp
    retry.last_replan_reason = reason
    document.replan_audit.append(
        {
            "at": stamp,
            "source": source,
            "reason": reason,
            "taskId": retry.current_task_id,
            "retryStreak": retry.current_task_retry_streak,
            "consecutiveRetries": retry.consecutive_retries,
        }
    )
    log.warning("replan_required", source=source, reason=reason, task_id=retry.current_task_id)


__all__ = [
    "StaleSignal",
    "mark_replan_required",
    "should_trigger_stale_plan",
    "update_execution_retry_counters",
]
