"""
issue-loop — task policies

File: src/issue_loop/domain/policies.py
Last updated: 2026-10-17

Purpose
- Pure predicates and the single authoritative mutation of task pass state.

Functional requirements
- ``update_task_state_authoritative`` is the only place ``passes`` changes.
- Sizing checks report every violation instead of stopping at the first.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from issue_loop.domain.models import Task

DEFAULT_UI_KEYWORDS: tuple[str, ...] = (
    "ui",
    "frontend",
    "browser",
    "page",
    "button",
    "form",
    "layout",
    "css",
)


@dataclass(frozen=True, slots=True)
class TaskSizingLimits:
    max_acceptance_criteria: int = 8
    max_verify_commands: int = 6
    max_description_chars: int = 1200


def is_task_exhausted(task: Task, max_attempts: int) -> bool:
    return not task.passes and task.attempts >= max_attempts


def task_requires_browser_verification(
    task: Task, keywords: Iterable[str] = DEFAULT_UI_KEYWORDS
) -> bool:
    """Return whether ``task`` touches UI surface and needs browser evidence."""

    if task.extra.get("requiresBrowser") is True:
        return True
    words = [word.strip().lower() for word in keywords if word.strip()]
    if not words:
        return False
    pattern = re.compile(r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b")
    haystack = " ".join([task.title, task.description, *task.acceptance_criteria]).lower()
    return pattern.search(haystack) is not None


def validate_task_sizing(task: Task, limits: TaskSizingLimits) -> list[str]:
    violations: list[str] = []
    if len(task.acceptance_criteria) > limits.max_acceptance_criteria:
        violations.append(
            f"{task.id}: {len(task.acceptance_criteria)} acceptance criteria exceeds "
            f"limit {limits.max_acceptance_criteria}"
        )
    if len(task.verify_commands) > limits.max_verify_commands:
        violations.append(
            f"{task.id}: {len(task.verify_commands)} verify commands exceeds "
            f"limit {limits.max_verify_commands}"
        )
    if len(task.description) > limits.max_description_chars:
        violations.append(
            f"{task.id}: description length {len(task.description)} exceeds "
            f"limit {limits.max_description_chars}"
        )
    return violations


def update_task_state_authoritative(task: Task, *, passed: bool, attempted_at: str) -> None:
    """Record one finished attempt using the orchestrator's own verdict."""

    task.attempts += 1
    task.last_attempt = attempted_at
    task.passes = passed


__all__ = [
    "DEFAULT_UI_KEYWORDS",
    "TaskSizingLimits",
    "is_task_exhausted",
    "task_requires_browser_verification",
    "update_task_state_authoritative",
    "validate_task_sizing",
]
