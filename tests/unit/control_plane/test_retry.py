"""
issue-loop — unit tests for retry counters and stale-plan detection

File: tests/unit/control_plane/test_retry.py
Last updated: 2026-10-17
"""

from __future__ import annotations

from datetime import UTC, datetime

from issue_loop.control_plane.retry import (
    mark_replan_required,
    should_trigger_stale_plan,
    update_execution_retry_counters,
)
from issue_loop.domain.models import DocumentStatus, ExecutionRetryState, TaskGraphDocument
from issue_loop.errors import StalePlanDetected


def test_signal_fires_on_second_consecutive_failure_with_threshold_two() -> None:
    state = ExecutionRetryState()
    signals = []
    for _ in range(3):
        update_execution_retry_counters(state, "US-001", passed=False)
        signal = should_trigger_stale_plan(state, same_task_threshold=2, global_threshold=0)
        signals.append(signal)
        if signal is not None:
            break

    assert signals[0] is None
    assert signals[1] is not None
    assert len(signals) == 2
    assert signals[1].task_id == "US-001"
    assert signals[1].streak == 2


def test_pass_resets_both_counters() -> None:
    state = ExecutionRetryState()
    update_execution_retry_counters(state, "US-001", passed=False)
    update_execution_retry_counters(state, "US-001", passed=True)

    assert state.consecutive_retries == 0
    assert state.current_task_retry_streak == 0


def test_failure_of_another_task_restarts_streak_but_not_global_count() -> None:
    state = ExecutionRetryState()
    update_execution_retry_counters(state, "US-001", passed=False)
    update_execution_retry_counters(state, "US-002", passed=False)

    assert state.current_task_id == "US-002"
    assert state.current_task_retry_streak == 1
    assert state.consecutive_retries == 2


def test_global_threshold_fires_across_tasks() -> None:
    state = ExecutionRetryState()
    for task_id in ("US-001", "US-002", "US-003"):
        update_execution_retry_counters(state, task_id, passed=False)

    signal = should_trigger_stale_plan(state, same_task_threshold=5, global_threshold=3)

    assert signal is not None
    assert "3 consecutive failed attempts" in signal.reason
    assert isinstance(signal.to_error(), StalePlanDetected)


def test_zero_thresholds_disable_detection() -> None:
    state = ExecutionRetryState(consecutive_retries=50, current_task_retry_streak=50)

    assert should_trigger_stale_plan(state, same_task_threshold=0, global_threshold=0) is None


def test_mark_replan_required_records_audit_entry() -> None:
    document = TaskGraphDocument(work_unit=9)
    document.execution_retry.current_task_id = "US-004"
    document.execution_retry.current_task_retry_streak = 2
    now = datetime(2026, 10, 17, 8, 30, tzinfo=UTC)

    mark_replan_required(document, "task US-004 failed twice", now)

    assert document.status is DocumentStatus.REPLAN_REQUIRED
    assert document.execution_retry.last_replan_at == "2026-10-17T08:30:00Z"
    assert document.execution_retry.last_replan_reason == "task US-004 failed twice"
    assert document.replan_audit == [
        {
            "at": "2026-10-17T08:30:00Z",
            "source": "stale_plan",
            "reason": "task US-004 failed twice",
            "taskId": "US-004",
            "retryStreak": 2,
            "consecutiveRetries": 0,
        }
    ]
