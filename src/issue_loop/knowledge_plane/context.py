"""
issue-loop — per-attempt context bundle

File: src/issue_loop/knowledge_plane/context.py
Last updated: 2026-10-17

Purpose
- Assemble what the agent should know before an attempt from the remote log and the
  document, and fingerprint it so a task log can echo which context it saw.
- Fold reusable patterns reported by task logs back into the document.

What should be included in this file
- ``ContextBundle`` and ``build_issue_context_bundle``.
- ``build_context_manifest`` (per-section hashes) and ``compute_context_manifest_hash``.
- ``ingest_task_patterns_into_document``.

Functional requirements
- Only task logs after the latest compaction summary are included, bounded to the most
  recent ``max_task_logs``.
- Manifest hashing is canonical: identical inputs give identical hashes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.control_plane.compaction import latest_summary_index
from issue_loop.domain.identity import normalize_text
from issue_loop.domain.models import FindingStatus
from issue_loop.event_log.envelopes import EventType, TaskLogEnvelope
from issue_loop.event_log.extractor import issue_matches, iter_events
from issue_loop.knowledge_plane.wisps import collect_active_wisps
from issue_loop.utils.clock import format_utc
from issue_loop.utils.hashing import sha256_json

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from issue_loop.domain.models import Task, TaskGraphDocument
    from issue_loop.event_log.thread import Comment

DEFAULT_MAX_TASK_LOGS = 10

MANIFEST_SECTIONS: tuple[str, ...] = (
    "task",
    "summary",
    "task_logs",
    "wisps",
    "patterns",
    "open_findings",
    "dependencies",
)


@dataclass(frozen=True, slots=True)
class ContextBundle:
    work_unit: int | str
    task: dict[str, Any]
    summary: str | None = None
    task_logs: tuple[dict[str, Any], ...] = ()
    wisps: tuple[dict[str, Any], ...] = ()
    patterns: tuple[str, ...] = ()
    open_findings: tuple[dict[str, Any], ...] = ()
    dependencies: tuple[dict[str, Any], ...] = ()
    generated_at: str = field(default="", compare=False)

    def section(self, name: str) -> object:
        if name == "task":
            return self.task
        if name == "summary":
            return self.summary
        if name == "task_logs":
            return list(self.task_logs)
        if name == "wisps":
            return list(self.wisps)
        if name == "patterns":
            return list(self.patterns)
        if name == "open_findings":
            return list(self.open_findings)
        if name == "dependencies":
            return list(self.dependencies)
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"work_unit": self.work_unit}
        for name in MANIFEST_SECTIONS:
            out[name] = self.section(name)
        out["generated_at"] = self.generated_at
        return out


def build_issue_context_bundle(
    document: TaskGraphDocument,
    comments: Sequence[Comment],
    task: Task,
    now: datetime,
    *,
    max_task_logs: int = DEFAULT_MAX_TASK_LOGS,
) -> ContextBundle:
    summary_index = latest_summary_index(comments)
    summary = comments[summary_index].body if summary_index is not None else None
    window = comments[summary_index + 1 :] if summary_index is not None else comments

    task_logs = [
        _task_log_digest(envelope)
        for _, envelope in iter_events(window, EventType.TASK_LOG)
        if isinstance(envelope, TaskLogEnvelope)
        and issue_matches(envelope.issue, document.work_unit)
    ]
    if max_task_logs >= 0:
        task_logs = task_logs[-max_task_logs:] if max_task_logs else []

    wisps = [
        {"id": wisp.id, "taskUid": wisp.task_uid, "note": wisp.note, "expiresAt": wisp.expires_at}
        for wisp in collect_active_wisps(comments, now)
    ]
    open_findings = [
        {
            "reviewId": finding.review_id,
            "findingId": finding.finding_id,
            "taskId": finding.task_id,
            "severity": finding.severity,
            "category": finding.category,
            "evidence": finding.evidence,
        }
        for finding in document.review.findings
        if finding.status is FindingStatus.OPEN
    ]
    dependencies: list[dict[str, Any]] = []
    for dependency_id in task.depends_on:
        dependency = document.task_by_id(dependency_id)
        if dependency is None:
            continue
        dependencies.append(
            {
                "id": dependency.id,
                "uid": dependency.uid,
                "title": dependency.title,
                "passes": dependency.passes,
            }
        )

    return ContextBundle(
        work_unit=document.work_unit,
        task=task.to_dict(),
        summary=summary,
        task_logs=tuple(task_logs),
        wisps=tuple(wisps),
        patterns=tuple(
            str(item.get("pattern", "")) for item in document.patterns if item.get("pattern")
        ),
        open_findings=tuple(open_findings),
        dependencies=tuple(dependencies),
        generated_at=format_utc(now),
    )


def build_context_manifest(bundle: ContextBundle) -> dict[str, str]:
    """Return ``{section: sha256}`` for every context section, in a fixed order."""

    return {name: sha256_json(bundle.section(name)) for name in MANIFEST_SECTIONS}


def compute_context_manifest_hash(manifest: Mapping[str, str]) -> str:
    return sha256_json(dict(manifest))


def ingest_task_patterns_into_document(
    document: TaskGraphDocument,
    event: TaskLogEnvelope,
    *,
    now: datetime,
    logger: Any | None = None,
) -> list[str]:
    """Append patterns from ``event`` not already recorded. Returns the new ones."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    known = {
        normalize_text(str(item.get("pattern", "")))
        for item in document.patterns
        if item.get("pattern")
    }
    added: list[str] = []
    for pattern in event.patterns:
        key = normalize_text(pattern)
        if not key or key in known:
            continue
        known.add(key)
        document.patterns.append(
            {
                "pattern": pattern.strip(),
                "sourceTaskId": event.task_id,
                "sourceTaskUid": event.task_uid,
                "addedAt": format_utc(now),
            }
        )
        added.append(pattern.strip())
    if added:
        log.info("patterns_ingested", task_id=event.task_id, count=len(added))
    return added


def _task_log_digest(envelope: TaskLogEnvelope) -> dict[str, Any]:
    return {
        "taskId": envelope.task_id,
        "taskUid": envelope.task_uid,
        "status": envelope.status,
        "attempt": envelope.attempt,
        "verifyFailed": list(envelope.verify_failed),
        "filesInspected": list(envelope.files_inspected),
    }


__all__ = [
    "DEFAULT_MAX_TASK_LOGS",
    "MANIFEST_SECTIONS",
    "ContextBundle",
    "build_context_manifest",
    "build_issue_context_bundle",
    "compute_context_manifest_hash",
    "ingest_task_patterns_into_document",
]
