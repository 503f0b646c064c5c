"""
issue-loop — task-graph domain models

File: src/issue_loop/domain/models.py
Last updated: 2026-10-17

Purpose
- In-memory state for the persisted task-graph document (``prd.json``).

What should be included in this file
- ``Task``, ``TaskGraphDocument`` and the embedded policy/counter sections.
- Strict ``from_dict`` parsing with field paths in error messages.
- Canonical ``to_dict`` export that preserves unknown keys.

Functional requirements
- Keys missing from a legacy document are remembered so backfill can report changes
  and export stays faithful until backfill runs.
- ``passes`` is only mutated through the policy helpers, never from agent output.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, NoReturn

from issue_loop.constants import (
    DEFAULT_FORMULA,
    DEFAULT_SUMMARY_EVERY_N_TASK_LOGS,
    REVIEW_SEVERITIES,
    TASK_ID_PREFIX,
)

_TASK_KEYS: tuple[str, ...] = (
    "id",
    "uid",
    "title",
    "description",
    "priority",
    "dependsOn",
    "discoveredFrom",
    "discoverySource",
    "acceptanceCriteria",
    "verifyCommands",
    "passes",
    "attempts",
    "lastAttempt",
)
_DOCUMENT_KEYS: tuple[str, ...] = (
    "issueNumber",
    "branchName",
    "formula",
    "status",
    "compaction",
    "review",
    "executionRetry",
    "verification",
    "patterns",
    "replanAudit",
)
_TASK_ARRAY_KEYS: tuple[str, ...] = ("userStories", "tasks")


class DocumentStatus(StrEnum):
    """Lifecycle of the whole work unit."""

    ACTIVE = "active"
    BLOCKED = "blocked"
    REPLAN_REQUIRED = "replan_required"
    COMPLETE = "complete"


class DiscoverySource(StrEnum):
    DISCOVERED = "discovered"
    TASK_LOG = "task_log"
    REVIEW = "review"
    WISP = "wisp"


class FindingStatus(StrEnum):
    OPEN = "open"
    ENQUEUED = "enqueued"
    APPROVED = "approved"


@dataclass(slots=True)
class Task:
    """One unit of work in the graph."""

    id: str
    title: str
    description: str = ""
    priority: int = 1
    depends_on: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    verify_commands: list[str] = field(default_factory=list)
    passes: bool = False
    attempts: int = 0
    last_attempt: str | None = None
    uid: str | None = None
    discovered_from: str | None = None
    discovery_source: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    absent_keys: set[str] = field(default_factory=set, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "task") -> Task:
        payload = _expect_mapping(data, path)
        absent = {key for key in _TASK_KEYS if key not in payload}
        return cls(
            id=_as_str(payload.get("id"), f"{path}.id"),
            title=_as_text(payload.get("title", ""), f"{path}.title"),
            description=_as_text(payload.get("description", ""), f"{path}.description"),
            priority=_as_int(payload.get("priority", 1), f"{path}.priority"),
            depends_on=_as_str_list(payload.get("dependsOn", []), f"{path}.dependsOn"),
            acceptance_criteria=_as_str_list(
                payload.get("acceptanceCriteria", []), f"{path}.acceptanceCriteria"
            ),
            verify_commands=_as_str_list(
                payload.get("verifyCommands", []), f"{path}.verifyCommands"
            ),
            passes=_as_bool(payload.get("passes", False), f"{path}.passes"),
            attempts=_as_int(payload.get("attempts", 0), f"{path}.attempts", minimum=0),
            last_attempt=_as_optional_str(payload.get("lastAttempt"), f"{path}.lastAttempt"),
            uid=_as_optional_str(payload.get("uid"), f"{path}.uid"),
            discovered_from=_as_optional_str(
                payload.get("discoveredFrom"), f"{path}.discoveredFrom"
            ),
            discovery_source=_as_optional_str(
                payload.get("discoverySource"), f"{path}.discoverySource"
            ),
            extra={key: value for key, value in payload.items() if key not in _TASK_KEYS},
            absent_keys=absent,
        )

    def to_dict(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "id": self.id,
            "uid": self.uid,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "dependsOn": list(self.depends_on),
            "discoveredFrom": self.discovered_from,
            "discoverySource": self.discovery_source,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "verifyCommands": list(self.verify_commands),
            "passes": self.passes,
            "attempts": self.attempts,
            "lastAttempt": self.last_attempt,
        }
        out = {key: value for key, value in values.items() if key not in self.absent_keys}
        out.update(self.extra)
        return out

    @property
    def number(self) -> int | None:
        """Numeric suffix of ``US-###`` ids, when the id follows that scheme."""

        if not self.id.startswith(TASK_ID_PREFIX):
            return None
        suffix = self.id[len(TASK_ID_PREFIX) :]
        return int(suffix) if suffix.isdigit() else None


@dataclass(slots=True)
class DiscoveredTask:
    """Candidate task reported by an agent, a review finding or a promoted wisp."""

    title: str
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    verify_commands: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "discovered") -> DiscoveredTask:
        payload = _expect_mapping(data, path)
        return cls(
            title=_as_str(payload.get("title"), f"{path}.title"),
            description=_as_text(payload.get("description", ""), f"{path}.description"),
            acceptance_criteria=_as_str_list(
                payload.get("acceptanceCriteria", []), f"{path}.acceptanceCriteria"
            ),
            verify_commands=_as_str_list(
                payload.get("verifyCommands", []), f"{path}.verifyCommands"
            ),
            depends_on=_as_str_list(payload.get("dependsOn", []), f"{path}.dependsOn"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "verifyCommands": list(self.verify_commands),
            "dependsOn": list(self.depends_on),
        }


@dataclass(slots=True)
class CompactionState:
    count: int = 0
    threshold: int = DEFAULT_SUMMARY_EVERY_N_TASK_LOGS

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "compaction") -> CompactionState:
        payload = _expect_mapping(data, path)
        return cls(
            count=_as_int(
                payload.get("taskLogCountSinceLastSummary", 0),
                f"{path}.taskLogCountSinceLastSummary",
                minimum=0,
            ),
            threshold=_as_int(
                payload.get("summaryEveryNTaskLogs", DEFAULT_SUMMARY_EVERY_N_TASK_LOGS),
                f"{path}.summaryEveryNTaskLogs",
                minimum=1,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskLogCountSinceLastSummary": self.count,
            "summaryEveryNTaskLogs": self.threshold,
        }


@dataclass(slots=True)
class ExecutionRetryState:
    consecutive_retries: int = 0
    current_task_id: str | None = None
    current_task_retry_streak: int = 0
    last_replan_at: str | None = None
    last_replan_reason: str | None = None

    @classmethod
    def from_dict(
        cls, data: Mapping[str, object], *, path: str = "executionRetry"
    ) -> ExecutionRetryState:
        payload = _expect_mapping(data, path)
        return cls(
            consecutive_retries=_as_int(
                payload.get("consecutiveRetries", 0), f"{path}.consecutiveRetries", minimum=0
            ),
            current_task_id=_as_optional_str(
                payload.get("currentTaskId"), f"{path}.currentTaskId"
            ),
            current_task_retry_streak=_as_int(
                payload.get("currentTaskRetryStreak", 0),
                f"{path}.currentTaskRetryStreak",
                minimum=0,
            ),
            last_replan_at=_as_optional_str(payload.get("lastReplanAt"), f"{path}.lastReplanAt"),
            last_replan_reason=_as_optional_str(
                payload.get("lastReplanReason"), f"{path}.lastReplanReason"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "consecutiveRetries": self.consecutive_retries,
            "currentTaskId": self.current_task_id,
            "currentTaskRetryStreak": self.current_task_retry_streak,
            "lastReplanAt": self.last_replan_at,
            "lastReplanReason": self.last_replan_reason,
        }


@dataclass(slots=True)
class VerificationCadence:
    tasks_since_full_verify: int = 0
    last_full_verify_at: str | None = None

    @classmethod
    def from_dict(
        cls, data: Mapping[str, object], *, path: str = "verification"
    ) -> VerificationCadence:
        payload = _expect_mapping(data, path)
        return cls(
            tasks_since_full_verify=_as_int(
                payload.get("tasksSinceFullVerify", 0), f"{path}.tasksSinceFullVerify", minimum=0
            ),
            last_full_verify_at=_as_optional_str(
                payload.get("lastFullVerifyAt"), f"{path}.lastFullVerifyAt"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasksSinceFullVerify": self.tasks_since_full_verify,
            "lastFullVerifyAt": self.last_full_verify_at,
        }


@dataclass(slots=True)
class StoredFinding:
    """A review finding after ingestion into the document."""

    review_id: str
    finding_id: str
    task_id: str
    severity: str
    confidence: float
    category: str = ""
    evidence: str = ""
    status: FindingStatus = FindingStatus.OPEN
    enqueued_task_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.review_id, self.finding_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "finding") -> StoredFinding:
        payload = _expect_mapping(data, path)
        severity = _as_str(payload.get("severity"), f"{path}.severity")
        if severity not in REVIEW_SEVERITIES:
            _fail(f"{path}.severity", f"must be one of {', '.join(REVIEW_SEVERITIES)}")
        status_raw = _as_str(payload.get("status", FindingStatus.OPEN.value), f"{path}.status")
        try:
            status = FindingStatus(status_raw)
        except ValueError:
            _fail(f"{path}.status", f"unknown finding status {status_raw!r}")
        return cls(
            review_id=_as_str(payload.get("reviewId"), f"{path}.reviewId"),
            finding_id=_as_str(payload.get("findingId"), f"{path}.findingId"),
            task_id=_as_str(payload.get("taskId"), f"{path}.taskId"),
            severity=severity,
            confidence=_as_confidence(payload.get("confidence", 0.0), f"{path}.confidence"),
            category=_as_text(payload.get("category", ""), f"{path}.category"),
            evidence=_as_text(payload.get("evidence", ""), f"{path}.evidence"),
            status=status,
            enqueued_task_id=_as_optional_str(
                payload.get("enqueuedTaskId"), f"{path}.enqueuedTaskId"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "reviewId": self.review_id,
            "findingId": self.finding_id,
            "taskId": self.task_id,
            "severity": self.severity,
            "confidence": self.confidence,
            "category": self.category,
            "evidence": self.evidence,
            "status": self.status.value,
            "enqueuedTaskId": self.enqueued_task_id,
        }


@dataclass(slots=True)
class ReviewState:
    """Review policy flags plus ingested findings.

    ``enabled`` is ``None`` when the document does not say; the loop then falls back
    to configuration. An explicit ``false`` always wins.
    """

    enabled: bool | None = None
    findings: list[StoredFinding] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "review") -> ReviewState:
        payload = _expect_mapping(data, path)
        enabled_raw = payload.get("enabled")
        findings_raw = payload.get("findings", [])
        if not isinstance(findings_raw, list):
            _fail(f"{path}.findings", "must be a list")
        return cls(
            enabled=None if enabled_raw is None else _as_bool(enabled_raw, f"{path}.enabled"),
            findings=[
                StoredFinding.from_dict(item, path=f"{path}.findings[{index}]")
                for index, item in enumerate(findings_raw)
            ],
            extra={
                key: value
                for key, value in payload.items()
                if key not in {"enabled", "findings"}
            },
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.enabled is not None:
            out["enabled"] = self.enabled
        out["findings"] = [finding.to_dict() for finding in self.findings]
        out.update(self.extra)
        return out

    def finding_keys(self) -> set[tuple[str, str]]:
        return {finding.key for finding in self.findings}


@dataclass(slots=True)
class TaskGraphDocument:
    """The whole persisted work-unit state."""

    work_unit: int | str
    tasks: list[Task] = field(default_factory=list)
    branch_name: str = ""
    formula: str = DEFAULT_FORMULA
    status: DocumentStatus = DocumentStatus.ACTIVE
    compaction: CompactionState = field(default_factory=CompactionState)
    review: ReviewState = field(default_factory=ReviewState)
    execution_retry: ExecutionRetryState = field(default_factory=ExecutionRetryState)
    verification: VerificationCadence = field(default_factory=VerificationCadence)
    patterns: list[dict[str, Any]] = field(default_factory=list)
    replan_audit: list[dict[str, Any]] = field(default_factory=list)
    tasks_key: str = "userStories"
    extra: dict[str, Any] = field(default_factory=dict)
    absent_keys: set[str] = field(default_factory=set, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TaskGraphDocument:
        payload = _expect_mapping(data, "<root>")
        tasks_key = next((key for key in _TASK_ARRAY_KEYS if key in payload), "userStories")
        raw_tasks = payload.get(tasks_key, [])
        if not isinstance(raw_tasks, list):
            _fail(tasks_key, "must be a list")

        work_unit_raw = payload.get("issueNumber", 0)
        if isinstance(work_unit_raw, bool) or not isinstance(work_unit_raw, (int, str)):
            _fail("issueNumber", "must be an integer or string")

        status_raw = _as_str(payload.get("status", DocumentStatus.ACTIVE.value), "status")
        try:
            status = DocumentStatus(status_raw)
        except ValueError:
            _fail("status", f"unknown document status {status_raw!r}")

        patterns = payload.get("patterns", [])
        if not isinstance(patterns, list) or not all(isinstance(p, dict) for p in patterns):
            _fail("patterns", "must be a list of objects")
        audit = payload.get("replanAudit", [])
        if not isinstance(audit, list) or not all(isinstance(a, dict) for a in audit):
            _fail("replanAudit", "must be a list of objects")

        return cls(
            work_unit=work_unit_raw,
            tasks=[
                Task.from_dict(item, path=f"{tasks_key}[{index}]")
                for index, item in enumerate(raw_tasks)
            ],
            branch_name=_as_text(payload.get("branchName", ""), "branchName"),
            formula=_as_str(payload.get("formula", DEFAULT_FORMULA), "formula"),
            status=status,
            compaction=CompactionState.from_dict(payload.get("compaction", {})),
            review=ReviewState.from_dict(payload.get("review", {})),
            execution_retry=ExecutionRetryState.from_dict(payload.get("executionRetry", {})),
            verification=VerificationCadence.from_dict(payload.get("verification", {})),
            patterns=[dict(item) for item in patterns],
            replan_audit=[dict(item) for item in audit],
            tasks_key=tasks_key,
            extra={
                key: value
                for key, value in payload.items()
                if key not in _DOCUMENT_KEYS and key not in _TASK_ARRAY_KEYS
            },
            absent_keys={key for key in _DOCUMENT_KEYS if key not in payload},
        )

    def to_dict(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "issueNumber": self.work_unit,
            "branchName": self.branch_name,
            "formula": self.formula,
            "status": self.status.value,
            "compaction": self.compaction.to_dict(),
            "review": self.review.to_dict(),
            "executionRetry": self.execution_retry.to_dict(),
            "verification": self.verification.to_dict(),
            "patterns": [dict(item) for item in self.patterns],
            "replanAudit": [dict(item) for item in self.replan_audit],
        }
        out = {key: value for key, value in values.items() if key not in self.absent_keys}
        out.update(self.extra)
        out[self.tasks_key] = [task.to_dict() for task in self.tasks]
        return out

    def task_by_id(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def task_by_uid(self, uid: str) -> Task | None:
        for task in self.tasks:
            if task.uid == uid:
                return task
        return None

    def children_of(self, parent_uid: str | None) -> list[Task]:
        return [task for task in self.tasks if task.discovered_from == parent_uid]

    def max_task_number(self) -> int:
        numbers = [number for task in self.tasks if (number := task.number) is not None]
        return max(numbers, default=0)

    def progress(self) -> tuple[int, int]:
        """Return ``(passing, total)`` task counts."""

        return sum(1 for task in self.tasks if task.passes), len(self.tasks)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return value


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        _fail(path, "must be a non-empty string")
    return value


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_text(value, path)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_bool(value: object, path: str) -> bool:
    if not isinstance(value, bool):
        _fail(path, f"expected boolean, got {type(value).__name__}")
    return value


def _as_confidence(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not 0.0 <= parsed <= 1.0:
        _fail(path, "must be within [0, 1]")
    return parsed


def _as_str_list(value: object, path: str) -> list[str]:
    if not isinstance(value, list):
        _fail(path, f"expected list, got {type(value).__name__}")
    out: list[str] = []
    for index, item in enumerate(value):
        out.append(_as_text(item, f"{path}[{index}]"))
    return out


__all__ = [
    "CompactionState",
    "DiscoveredTask",
    "DiscoverySource",
    "DocumentStatus",
    "ExecutionRetryState",
    "FindingStatus",
    "ReviewState",
    "StoredFinding",
    "Task",
    "TaskGraphDocument",
    "VerificationCadence",
]
