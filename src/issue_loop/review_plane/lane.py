"""
issue-loop — asynchronous review lane

File: src/issue_loop/review_plane/lane.py
Last updated: 2026-10-17

Purpose
- Run read-only review passes beside the main loop and route their findings.

What should be included in this file
- ``ReviewLane``: spawn per-task reviews as asyncio tasks, run the final review
  synchronously, drain leftovers at exit.
- ``ingest_review_findings``: dedup and classify posted findings into the document.
- ``run_final_review`` completion gate and ``approve_finding``.

Functional requirements
- A review pass never touches the document; it only posts a ``review_log`` event.
- Findings are deduplicated by ``(reviewId, findingId)``.
- Severity in ``auto_enqueue_severities`` with confidence >= ``min_confidence`` becomes
  a discovered task; everything else stays ``open`` until approved.
- Completion is deferred while the final review enqueued tasks or an unapproved
  blocking-severity finding is open.
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.constants import REVIEW_EVENT_HEADING, REVIEW_LOG_TITLE
from issue_loop.control_plane.discovery import enqueue_discovered_tasks
from issue_loop.domain.identity import new_review_id
from issue_loop.domain.models import (
    DiscoveredTask,
    DiscoverySource,
    FindingStatus,
    StoredFinding,
)
from issue_loop.errors import AgentInvocationFailure, LogWriteFailure
from issue_loop.event_log.envelopes import (
    EventType,
    ReviewFinding,
    ReviewLogEnvelope,
    render_review_log_comment,
)
from issue_loop.event_log.extractor import (
    extract_fenced_json_blocks,
    extract_json_blocks,
    issue_matches,
    iter_events,
)
from issue_loop.utils.clock import format_utc, utc_now

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from issue_loop.domain.models import Task, TaskGraphDocument
    from issue_loop.event_log.extractor import EventCursor
    from issue_loop.event_log.thread import Comment, CommentThread
    from issue_loop.integration_plane.git import GitWorkspace
    from issue_loop.synthesis_plane.agent import ExecutionAgent
    from issue_loop.synthesis_plane.prompts import PromptTemplateEngine

FINAL_SCOPE = "final"
TASK_SCOPE = "task"


@dataclass(frozen=True, slots=True)
class ReviewPolicy:
    enabled: bool = True
    auto_enqueue_severities: tuple[str, ...] = ("critical", "high")
    min_confidence: float = 0.7
    blocking_severities: tuple[str, ...] = ("critical", "high")
    drain_timeout_seconds: float = 300.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        if self.drain_timeout_seconds < 0:
            raise ValueError("drain_timeout_seconds must be >= 0")

    def should_auto_enqueue(self, finding: ReviewFinding) -> bool:
        return (
            finding.severity in self.auto_enqueue_severities
            and finding.confidence >= self.min_confidence
        )


@dataclass(frozen=True, slots=True)
class ReviewIngestResult:
    new_findings: tuple[StoredFinding, ...] = ()
    enqueued_task_ids: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.new_findings)


@dataclass(frozen=True, slots=True)
class FinalReviewOutcome:
    clean: bool
    new_task_ids: tuple[str, ...] = ()
    blocking_findings: tuple[StoredFinding, ...] = ()
    review_failed: bool = False


def review_enabled(document: TaskGraphDocument, default: bool) -> bool:
    """An explicit ``review.enabled`` in the document overrides configuration."""

    if document.review.enabled is not None:
        return document.review.enabled
    return default


class ReviewLane:
    """Fire-and-forget review passes that converge only through the remote log."""

    def __init__(
        self,
        *,
        reviewer: ExecutionAgent,
        thread: CommentThread,
        prompts: PromptTemplateEngine,
        work_unit: int | str,
        cwd: Path | str | None = None,
        git: GitWorkspace | None = None,
        logger: Any | None = None,
    ) -> None:
        self._reviewer = reviewer
        self._thread = thread
        self._prompts = prompts
        self._work_unit = work_unit
        self._cwd = cwd
        self._git = git
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._in_flight: set[asyncio.Task[ReviewLogEnvelope | None]] = set()

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._in_flight if not task.done())

    def spawn(
        self,
        task: Task,
        commit_range: tuple[str | None, str | None],
    ) -> asyncio.Task[ReviewLogEnvelope | None]:
        base_ref, head_ref = commit_range
        review = asyncio.create_task(
            self.review(
                _task_view(task),
                scope=TASK_SCOPE,
                base_ref=base_ref,
                head_ref=head_ref,
            ),
            name=f"review-{task.id}",
        )
        self._in_flight.add(review)
        review.add_done_callback(self._in_flight.discard)
        self._logger.info("review_spawned", task_id=task.id, in_flight=self.in_flight)
        return review

    async def review(
        self,
        task_view: dict[str, Any],
        *,
        scope: str,
        base_ref: str | None,
        head_ref: str | None,
    ) -> ReviewLogEnvelope | None:
        """Run one review pass and post its event. Failures are logged, not raised."""

        review_id = new_review_id()
        task_id = str(task_view.get("id", FINAL_SCOPE))
        try:
            changed_files = (
                list(await self._git.changed_files_async(base_ref))
                if self._git is not None
                else []
            )
            rendered = self._prompts.render_review_prompt(
                {
                    "work_unit": self._work_unit,
                    "scope": scope,
                    "review_id": review_id,
                    "task": task_view,
                    "base_ref": base_ref or "",
                    "head_ref": head_ref or "HEAD",
                    "changed_files": changed_files,
                    "review_heading": REVIEW_EVENT_HEADING,
                    "review_title": REVIEW_LOG_TITLE,
                }
            )
            output = await self._reviewer.execute(rendered.prompt, cwd=self._cwd)
            envelope = extract_review_envelope(output.text)
            if envelope is None:
                self._logger.warning(
                    "review_output_unparseable", review_id=review_id, task_id=task_id
                )
                return None
            envelope = dataclasses.replace(
                envelope,
                review_id=review_id,
                task_id=task_id,
                task_uid=task_view.get("uid") or envelope.task_uid,
                scope=scope,
                issue=self._work_unit,
                ts=format_utc(utc_now()),
            )
            await self._thread.post(render_review_log_comment(envelope))
        except (AgentInvocationFailure, LogWriteFailure) as exc:
            self._logger.warning(
                "review_failed",
                review_id=review_id,
                task_id=task_id,
                scope=scope,
                error_type=type(exc).__name__,
                detail=str(exc),
            )
            return None
        except Exception as exc:  # noqa: BLE001
            self._logger.exception(
                "review_crashed",
                review_id=review_id,
                task_id=task_id,
                scope=scope,
                error_type=type(exc).__name__,
            )
            return None

        self._logger.info(
            "review_posted",
            review_id=review_id,
            task_id=task_id,
            scope=scope,
            findings=len(envelope.findings),
        )
        return envelope

    async def drain(self, timeout: float) -> None:
        """Wait for in-flight reviews up to ``timeout`` seconds, then cancel leftovers."""

        pending = [task for task in self._in_flight if not task.done()]
        if not pending:
            return
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            self._logger.warning("reviews_cancelled", count=len(still_pending))


def extract_review_envelope(text: str) -> ReviewLogEnvelope | None:
    """Find the last valid review event in reviewer output.

    Blocks under the review heading are preferred; a bare fenced block with
    ``type: review_log`` is accepted when the reviewer dropped the heading.
    """

    candidates = extract_json_blocks(text, REVIEW_EVENT_HEADING)
    if not candidates:
        candidates = [
            block
            for block in extract_fenced_json_blocks(text)
            if block.get("type") == EventType.REVIEW_LOG.value
        ]
    for payload in reversed(candidates):
        try:
            return ReviewLogEnvelope.from_dict(payload)
        except ValueError:
            continue
    return None


def ingest_review_findings(
    document: TaskGraphDocument,
    comments: Sequence[Comment],
    policy: ReviewPolicy,
    *,
    cursor: EventCursor | None = None,
    logger: Any | None = None,
) -> ReviewIngestResult:
    """Fold newly posted review findings into ``document``. The caller saves it."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    window = cursor.advance(comments) if cursor is not None else comments
    known = document.review.finding_keys()
    new_findings: list[StoredFinding] = []
    enqueued: list[str] = []

    for _, envelope in iter_events(window, EventType.REVIEW_LOG):
        if not isinstance(envelope, ReviewLogEnvelope):
            continue
        if not issue_matches(envelope.issue, document.work_unit):
            continue
        for finding in envelope.findings:
            key = (envelope.review_id, finding.id)
            if key in known:
                continue
            known.add(key)
            stored = StoredFinding(
                review_id=envelope.review_id,
                finding_id=finding.id,
                task_id=envelope.task_id,
                severity=finding.severity,
                confidence=finding.confidence,
                category=finding.category,
                evidence=finding.evidence,
            )
            if policy.should_auto_enqueue(finding):
                tasks = _enqueue_finding(document, envelope, finding, logger=log)
                stored.status = FindingStatus.ENQUEUED
                if tasks:
                    stored.enqueued_task_id = tasks[0].id
                    enqueued.extend(task.id for task in tasks)
            document.review.findings.append(stored)
            new_findings.append(stored)
            log.info(
                "review_finding_routed",
                review_id=stored.review_id,
                finding_id=stored.finding_id,
                severity=stored.severity,
                confidence=stored.confidence,
                status=stored.status.value,
                enqueued_task_id=stored.enqueued_task_id,
            )

    return ReviewIngestResult(new_findings=tuple(new_findings), enqueued_task_ids=tuple(enqueued))


def blocking_open_findings(
    document: TaskGraphDocument, policy: ReviewPolicy
) -> tuple[StoredFinding, ...]:
    return tuple(
        finding
        for finding in document.review.findings
        if finding.status is FindingStatus.OPEN
        and finding.severity in policy.blocking_severities
    )


async def run_final_review(
    lane: ReviewLane,
    document: TaskGraphDocument,
    thread: CommentThread,
    policy: ReviewPolicy,
    *,
    base_ref: str | None,
    head_ref: str | None,
    cursor: EventCursor | None = None,
    logger: Any | None = None,
) -> FinalReviewOutcome:
    """Review the whole change set before completion and ingest the result."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    envelope = await lane.review(
        {"id": FINAL_SCOPE, "uid": "", "title": "Final review", "acceptanceCriteria": []},
        scope=FINAL_SCOPE,
        base_ref=base_ref,
        head_ref=head_ref,
    )
    try:
        comments = await thread.list_comments()
    except LogWriteFailure as exc:
        log.warning("final_review_unreadable", detail=str(exc))
        return FinalReviewOutcome(clean=False, review_failed=True)

    ingested = ingest_review_findings(document, comments, policy, cursor=cursor, logger=log)
    blocking = blocking_open_findings(document, policy)
    failed = envelope is None
    outcome = FinalReviewOutcome(
        clean=not failed and not ingested.enqueued_task_ids and not blocking,
        new_task_ids=ingested.enqueued_task_ids,
        blocking_findings=blocking,
        review_failed=failed,
    )
    log.info(
        "final_review_finished",
        clean=outcome.clean,
        review_failed=failed,
        new_task_ids=list(outcome.new_task_ids),
        blocking=[f"{item.review_id}/{item.finding_id}" for item in blocking],
    )
    return outcome


def approve_finding(
    document: TaskGraphDocument, review_id: str, finding_id: str
) -> StoredFinding:
    for finding in document.review.findings:
        if finding.key == (review_id, finding_id):
            finding.status = FindingStatus.APPROVED
            return finding
    raise KeyError(f"unknown review finding {review_id}/{finding_id}")


def _enqueue_finding(
    document: TaskGraphDocument,
    envelope: ReviewLogEnvelope,
    finding: ReviewFinding,
    *,
    logger: Any,
) -> list[Task]:
    parent = document.task_by_id(envelope.task_id)
    if parent is None and envelope.task_uid:
        parent = document.task_by_uid(envelope.task_uid)
    if parent is None and document.tasks:
        parent = document.tasks[-1]

    candidate = finding.suggested_task or DiscoveredTask(
        title=f"Address review finding {finding.id}: {finding.category or finding.severity}",
        description=finding.evidence,
        acceptance_criteria=[f"Review finding {envelope.review_id}/{finding.id} resolved"],
    )
    return enqueue_discovered_tasks(
        document,
        parent_id=parent.id if parent is not None else "US-001",
        parent_uid=parent.uid if parent is not None else None,
        parent_priority=parent.priority if parent is not None else 1,
        candidates=[candidate],
        work_unit=document.work_unit,
        discovery_source=DiscoverySource.REVIEW,
        logger=logger,
    )


def _task_view(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "uid": task.uid or "",
        "title": task.title,
        "acceptanceCriteria": list(task.acceptance_criteria),
    }


__all__ = [
    "FINAL_SCOPE",
    "TASK_SCOPE",
    "FinalReviewOutcome",
    "ReviewIngestResult",
    "ReviewLane",
    "ReviewPolicy",
    "approve_finding",
    "blocking_open_findings",
    "extract_review_envelope",
    "ingest_review_findings",
    "review_enabled",
    "run_final_review",
]
