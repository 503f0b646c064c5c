"""
issue-loop — attempt guards

File: src/issue_loop/verification_plane/guards.py
Last updated: 2026-10-17

Purpose
- Evidence checks layered on top of command verification for every attempt.

What should be included in this file
- One check per guard, each returning ``GuardResult``.
- ``GuardPolicy`` built from configuration and ``run_guards`` to evaluate them all.

Functional requirements
- event-presence: a confirmed task log exists for the attempt.
- search-evidence: the task log records at least ``min_search_queries`` queries.
- placeholder-scan: added diff lines carry no placeholder markers.
- capability: UI tasks carry a passing browser-verification event from an allowed tool.
- context-manifest (opt-in): the task log echoes the prompt context hash.
- ``gate_mode=enforce`` turns any failure into a failed attempt; ``warn`` only logs.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from issue_loop.domain.models import Task
from issue_loop.domain.policies import (
    DEFAULT_UI_KEYWORDS,
    task_requires_browser_verification,
)
from issue_loop.errors import GuardViolation
from issue_loop.event_log.envelopes import (
    BrowserVerificationEnvelope,
    EventType,
    TaskLogEnvelope,
)
from issue_loop.event_log.extractor import iter_events
from issue_loop.event_log.thread import Comment
from issue_loop.verification_plane.placeholder_scan import (
    DEFAULT_EXCLUDE_GLOBS,
    DEFAULT_PLACEHOLDER_PATTERNS,
    scan_placeholder_patterns,
)


class GateMode(StrEnum):
    ENFORCE = "enforce"
    WARN = "warn"


@dataclass(frozen=True, slots=True)
class GuardResult:
    name: str
    passed: bool
    reason: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "passed": self.passed, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class GuardPolicy:
    gate_mode: GateMode = GateMode.ENFORCE
    event_required: bool = True
    min_search_queries: int = 1
    placeholder_scan: bool = True
    placeholder_patterns: tuple[str, ...] = DEFAULT_PLACEHOLDER_PATTERNS
    placeholder_exclude: tuple[str, ...] = DEFAULT_EXCLUDE_GLOBS
    browser_required_for_ui: bool = True
    allowed_browser_tools: tuple[str, ...] = ("playwright", "chrome-devtools", "agent-browser")
    ui_keywords: tuple[str, ...] = DEFAULT_UI_KEYWORDS
    context_manifest_required: bool = False


@dataclass(frozen=True, slots=True)
class GuardReport:
    results: tuple[GuardResult, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> tuple[GuardResult, ...]:
        return tuple(result for result in self.results if not result.passed)

    def violation(self, task_id: str) -> GuardViolation:
        return GuardViolation(
            task_id,
            tuple(f"{result.name}: {result.reason}" for result in self.failures),
        )


def check_event_presence(event: TaskLogEnvelope | None) -> GuardResult:
    if event is None:
        return GuardResult("event-presence", False, "no confirmed task log for this attempt")
    return GuardResult("event-presence", True)


def check_search_evidence(event: TaskLogEnvelope | None, min_queries: int) -> GuardResult:
    if min_queries <= 0:
        return GuardResult("search-evidence", True, "not required")
    count = len(event.search_queries) if event is not None else 0
    if count < min_queries:
        return GuardResult(
            "search-evidence",
            False,
            f"{count} search queries recorded, {min_queries} required",
        )
    return GuardResult("search-evidence", True)


def check_placeholders(
    diff_text: str,
    *,
    patterns: Sequence[str],
    exclude_globs: Sequence[str],
) -> GuardResult:
    result = scan_placeholder_patterns(diff_text, patterns=patterns, exclude_globs=exclude_globs)
    if result.passed:
        return GuardResult("placeholder-scan", True)
    first = result.findings[0]
    return GuardResult(
        "placeholder-scan",
        False,
        f"{len(result.findings)} placeholder marker(s), first at {first.path}:{first.line}",
    )


def check_browser_capability(
    task: Task,
    comments: Sequence[Comment],
    *,
    allowed_tools: Sequence[str],
    ui_keywords: Sequence[str],
) -> GuardResult:
    if not task_requires_browser_verification(task, ui_keywords):
        return GuardResult("capability", True, "no UI surface")

    allowed = {tool.lower() for tool in allowed_tools}
    latest: BrowserVerificationEnvelope | None = None
    for _, envelope in iter_events(comments, EventType.BROWSER_VERIFICATION):
        if not isinstance(envelope, BrowserVerificationEnvelope):
            continue
        if envelope.task_id != task.id:
            continue
        if task.uid and envelope.task_uid and envelope.task_uid != task.uid:
            continue
        latest = envelope

    if latest is None:
        return GuardResult("capability", False, "UI task without browser verification event")
    if allowed and latest.tool.lower() not in allowed:
        return GuardResult("capability", False, f"browser tool {latest.tool!r} is not allowed")
    if latest.status != "pass":
        return GuardResult("capability", False, f"browser verification status {latest.status!r}")
    return GuardResult("capability", True)


def check_context_manifest(event: TaskLogEnvelope | None, expected_hash: str) -> GuardResult:
    reported = event.context_manifest_hash if event is not None else None
    if reported is None:
        return GuardResult("context-manifest", False, "task log has no contextManifestHash")
    if reported != expected_hash:
        return GuardResult(
            "context-manifest",
            False,
            f"contextManifestHash {reported[:12]} does not match {expected_hash[:12]}",
        )
    return GuardResult("context-manifest", True)


def run_guards(
    policy: GuardPolicy,
    *,
    task: Task,
    event: TaskLogEnvelope | None,
    diff_text: str,
    comments: Sequence[Comment],
    context_manifest_hash: str | None = None,
    logger: Any | None = None,
) -> GuardReport:
    log = logger if logger is not None else structlog.get_logger(__name__)
    results: list[GuardResult] = []
    if policy.event_required:
        results.append(check_event_presence(event))
    results.append(check_search_evidence(event, policy.min_search_queries))
    if policy.placeholder_scan:
        results.append(
            check_placeholders(
                diff_text,
                patterns=policy.placeholder_patterns,
                exclude_globs=policy.placeholder_exclude,
            )
        )
    if policy.browser_required_for_ui:
        results.append(
            check_browser_capability(
                task,
                comments,
                allowed_tools=policy.allowed_browser_tools,
                ui_keywords=policy.ui_keywords,
            )
        )
    if policy.context_manifest_required and context_manifest_hash is not None:
        results.append(check_context_manifest(event, context_manifest_hash))

    report = GuardReport(results=tuple(results))
    for failure in report.failures:
        log.warning(
            "guard_failed",
            task_id=task.id,
            guard=failure.name,
            reason=failure.reason,
            gate_mode=policy.gate_mode.value,
        )
    return report


__all__ = [
    "GateMode",
    "GuardPolicy",
    "GuardReport",
    "GuardResult",
    "check_browser_capability",
    "check_context_manifest",
    "check_event_presence",
    "check_placeholders",
    "check_search_evidence",
    "run_guards",
]
