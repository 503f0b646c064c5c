"""
issue-loop — unit tests for the task-graph model and task policies

File: tests/unit/domain/test_models.py
Last updated: 2026-10-17

Purpose
- Parsing strictness, unknown-key preservation and the pure task policies.
"""

from __future__ import annotations

import re

import pytest

from issue_loop.domain.models import DocumentStatus, Task, TaskGraphDocument
from issue_loop.domain.policies import (
    TaskSizingLimits,
    is_task_exhausted,
    task_requires_browser_verification,
    update_task_state_authoritative,
    validate_task_sizing,
)


def test_document_keeps_tasks_key_and_unknown_fields() -> None:
    payload = {
        "issueNumber": "ENG-7",
        "owner": "platform",
        "tasks": [{"id": "US-004", "title": "Cache lookups", "labels": ["perf"]}],
    }

    document = TaskGraphDocument.from_dict(payload)
    out = document.to_dict()

    assert document.work_unit == "ENG-7"
    assert document.status is DocumentStatus.ACTIVE
    assert out["owner"] == "platform"
    assert out["tasks"][0]["labels"] == ["perf"]
    assert "userStories" not in out
    assert "status" not in out
    assert document.max_task_number() == 4


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"issueNumber": True, "userStories": []}, "issueNumber"),
        ({"issueNumber": 1, "status": "paused", "userStories": []}, "status"),
        ({"issueNumber": 1, "userStories": {"id": "US-001"}}, "userStories"),
        ({"issueNumber": 1, "userStories": [{"title": "no id"}]}, "userStories[0].id"),
        ({"issueNumber": 1, "userStories": [{"id": "US-001", "attempts": -1}]}, "attempts"),
    ],
)
def test_invalid_documents_are_rejected(payload: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=re.escape(message)):
        TaskGraphDocument.from_dict(payload)


def test_task_number_only_for_sequence_ids() -> None:
    assert Task(id="US-012", title="Item").number == 12
    assert Task(id="BUG-3", title="Item").number is None
    assert Task(id="US-x", title="Item").number is None


def test_authoritative_update_overrides_previous_verdict() -> None:
    task = Task(id="US-001", title="Parse", passes=True, attempts=2)

    update_task_state_authoritative(task, passed=False, attempted_at="2026-10-17T12:00:00Z")

    assert task.passes is False
    assert task.attempts == 3
    assert task.last_attempt == "2026-10-17T12:00:00Z"


def test_exhaustion_ignores_passing_tasks() -> None:
    assert is_task_exhausted(Task(id="US-001", title="Parse", attempts=3), 3)
    assert not is_task_exhausted(Task(id="US-001", title="Parse", attempts=2), 3)
    assert not is_task_exhausted(Task(id="US-001", title="Parse", attempts=5, passes=True), 3)


def test_browser_requirement_matches_whole_words() -> None:
    assert task_requires_browser_verification(Task(id="US-001", title="Fix login form layout"))
    assert not task_requires_browser_verification(Task(id="US-002", title="Add config formatter"))
    assert task_requires_browser_verification(
        Task(id="US-003", title="Tune cache", extra={"requiresBrowser": True})
    )
    assert not task_requires_browser_verification(Task(id="US-004", title="Fix UI"), ())


def test_sizing_reports_each_exceeded_limit() -> None:
    task = Task(
        id="US-001",
        title="Parse",
        description="x" * 20,
        acceptance_criteria=["a", "b", "c"],
        verify_commands=["pytest"],
    )
    limits = TaskSizingLimits(
        max_acceptance_criteria=2, max_verify_commands=1, max_description_chars=10
    )

    violations = validate_task_sizing(task, limits)

    assert len(violations) == 2
    assert "3 acceptance criteria exceeds limit 2" in violations[0]
    assert "description length 20 exceeds limit 10" in violations[1]
