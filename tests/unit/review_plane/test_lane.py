"""
issue-loop — unit tests for the review lane

File: tests/unit/review_plane/test_lane.py
Last updated: 2026-10-17

Purpose
- Finding routing, dedup, the final-review completion gate and operator approval.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from issue_loop.constants import REVIEW_EVENT_HEADING
from issue_loop.domain.models import (
    DiscoverySource,
    FindingStatus,
    ReviewState,
    Task,
    TaskGraphDocument,
)
from issue_loop.errors import AgentInvocationFailure
from issue_loop.event_log.envelopes import (
    ReviewFinding,
    ReviewLogEnvelope,
    render_review_log_comment,
)
from issue_loop.event_log.extractor import EventCursor
from issue_loop.event_log.thread import InMemoryThread
from issue_loop.review_plane.lane import (
    ReviewLane,
    ReviewPolicy,
    approve_finding,
    extract_review_envelope,
    ingest_review_findings,
    review_enabled,
    run_final_review,
)
from issue_loop.synthesis_plane.agent import AgentOutput
from issue_loop.synthesis_plane.prompts import PromptTemplateEngine


class FakeReviewer:
    def __init__(
        self, findings: list[dict[str, object]] | None = None, *, fail: bool = False
    ) -> None:
        self.findings = findings or []
        self.fail = fail
        self.prompts: list[str] = []

    async def execute(self, prompt: str, *, cwd: Path | str | None = None) -> AgentOutput:
        self.prompts.append(prompt)
        if self.fail:
            raise AgentInvocationFailure("reviewer exited with code 1 and no output")
        payload: dict[str, object] = {"type": "review_log", "reviewId": "ignored", "taskId": "x"}
        payload["findings"] = self.findings
        text = f"Looks mostly fine.\n\n{REVIEW_EVENT_HEADING}\n```json\n{json.dumps(payload)}\n```"
        return AgentOutput(text=text, exit_code=0)


def _document() -> TaskGraphDocument:
    return TaskGraphDocument(
        work_unit=12,
        tasks=[
            Task(id="US-001", uid="tsk_000000000001", title="Login", passes=True),
            Task(id="US-002", uid="tsk_000000000002", title="Logout", passes=True),
        ],
    )


def _review_comment(*findings: ReviewFinding, review_id: str = "rev_a", issue: int = 12) -> str:
    return render_review_log_comment(
        ReviewLogEnvelope(
            review_id=review_id,
            task_id="US-001",
            task_uid="tsk_000000000001",
            issue=issue,
            findings=findings,
        )
    )


def _lane(reviewer: FakeReviewer, thread: InMemoryThread) -> ReviewLane:
    return ReviewLane(
        reviewer=reviewer,
        thread=thread,
        prompts=PromptTemplateEngine(),
        work_unit=12,
    )


def test_high_confidence_severe_findings_become_tasks() -> None:
    document = _document()
    thread = InMemoryThread()
    thread.add(
        _review_comment(
            ReviewFinding(id="F1", severity="critical", confidence=0.9, category="security"),
            ReviewFinding(id="F2", severity="high", confidence=0.4, category="style"),
            ReviewFinding(id="F3", severity="low", confidence=1.0, category="naming"),
        )
    )

    result = ingest_review_findings(document, thread.comments, ReviewPolicy())

    statuses = {item.finding_id: item.status for item in result.new_findings}
    assert statuses == {
        "F1": FindingStatus.ENQUEUED,
        "F2": FindingStatus.OPEN,
        "F3": FindingStatus.OPEN,
    }
    assert result.enqueued_task_ids == ("US-003",)
    new_task = document.task_by_id("US-003")
    assert new_task is not None
    assert new_task.discovery_source == DiscoverySource.REVIEW.value
    assert new_task.depends_on == ["US-001"]


def test_findings_are_ingested_once() -> None:
    document = _document()
    thread = InMemoryThread()
    finding = ReviewFinding(id="F1", severity="medium", confidence=0.5)
    thread.add(_review_comment(finding))
    thread.add(_review_comment(finding))
    thread.add(_review_comment(finding, review_id="rev_other", issue=77))

    first = ingest_review_findings(document, thread.comments, ReviewPolicy())
    second = ingest_review_findings(document, thread.comments, ReviewPolicy())

    assert len(first.new_findings) == 1
    assert not second.changed
    assert len(document.review.findings) == 1


def test_cursor_limits_ingestion_to_new_comments() -> None:
    document = _document()
    thread = InMemoryThread()
    cursor = EventCursor()
    thread.add(_review_comment(ReviewFinding(id="F1", severity="low", confidence=0.5)))
    ingest_review_findings(document, thread.comments, ReviewPolicy(), cursor=cursor)
    document.review.findings.clear()

    result = ingest_review_findings(document, thread.comments, ReviewPolicy(), cursor=cursor)

    assert not result.changed


def test_approve_finding_marks_it_and_rejects_unknown_keys() -> None:
    document = _document()
    thread = InMemoryThread()
    thread.add(_review_comment(ReviewFinding(id="F9", severity="high", confidence=0.1)))
    ingest_review_findings(document, thread.comments, ReviewPolicy())

    approved = approve_finding(document, "rev_a", "F9")

    assert approved.status is FindingStatus.APPROVED
    with pytest.raises(KeyError):
        approve_finding(document, "rev_a", "missing")


def test_document_flag_overrides_configuration() -> None:
    document = _document()
    assert review_enabled(document, True)
    document.review = ReviewState(enabled=False)
    assert not review_enabled(document, True)


def test_policy_rejects_out_of_range_confidence() -> None:
    with pytest.raises(ValueError):
        ReviewPolicy(min_confidence=1.5)


def test_extract_accepts_bare_review_block() -> None:
    text = '```json\n{"type":"review_log","reviewId":"r","taskId":"t","findings":[]}\n```'

    envelope = extract_review_envelope(text)

    assert envelope is not None
    assert envelope.review_id == "r"
    assert extract_review_envelope("no events here") is None


@pytest.mark.asyncio
async def test_spawned_review_posts_event_with_stamped_identity() -> None:
    thread = InMemoryThread()
    reviewer = FakeReviewer([{"id": "F1", "severity": "low", "confidence": 0.3}])
    lane = _lane(reviewer, thread)
    task = _document().tasks[0]

    spawned = lane.spawn(task, ("abc123", "def456"))
    envelope = await spawned

    assert envelope is not None
    assert envelope.task_id == "US-001"
    assert envelope.task_uid == "tsk_000000000001"
    assert envelope.review_id != "ignored"
    assert envelope.issue == 12
    assert len(thread.comments) == 1
    assert "abc123..def456" in reviewer.prompts[0]
    assert lane.in_flight == 0


@pytest.mark.asyncio
async def test_review_failure_is_logged_not_raised() -> None:
    thread = InMemoryThread()
    lane = _lane(FakeReviewer(fail=True), thread)

    envelope = await lane.review(
        {"id": "US-001", "uid": "", "title": "Login", "acceptanceCriteria": []},
        scope="task",
        base_ref=None,
        head_ref=None,
    )

    assert envelope is None
    assert thread.comments == []


@pytest.mark.asyncio
async def test_drain_cancels_reviews_that_outlive_the_timeout() -> None:
    class SlowReviewer(FakeReviewer):
        async def execute(self, prompt: str, *, cwd: Path | str | None = None) -> AgentOutput:
            await asyncio.sleep(30)
            return await super().execute(prompt, cwd=cwd)

    thread = InMemoryThread()
    lane = _lane(SlowReviewer(), thread)
    spawned = lane.spawn(_document().tasks[0], (None, None))

    await lane.drain(0.01)

    assert spawned.cancelled()
    assert thread.comments == []


@pytest.mark.asyncio
async def test_clean_final_review_allows_completion() -> None:
    document = _document()
    thread = InMemoryThread()

    outcome = await run_final_review(
        _lane(FakeReviewer(), thread),
        document,
        thread,
        ReviewPolicy(),
        base_ref="abc",
        head_ref="HEAD",
    )

    assert outcome.clean
    assert not outcome.review_failed


@pytest.mark.asyncio
async def test_final_review_with_new_tasks_defers_completion() -> None:
    document = _document()
    thread = InMemoryThread()
    reviewer = FakeReviewer(
        [
            {
                "id": "F1",
                "severity": "high",
                "confidence": 0.95,
                "suggestedTask": {"title": "Close the session on logout"},
            }
        ]
    )

    outcome = await run_final_review(
        _lane(reviewer, thread), document, thread, ReviewPolicy(), base_ref=None, head_ref=None
    )

    assert not outcome.clean
    assert outcome.new_task_ids == ("US-003",)
    assert document.tasks[-1].title == "Close the session on logout"


@pytest.mark.asyncio
async def test_open_blocking_finding_defers_completion_until_approved() -> None:
    document = _document()
    thread = InMemoryThread()
    reviewer = FakeReviewer([{"id": "F1", "severity": "critical", "confidence": 0.2}])

    outcome = await run_final_review(
        _lane(reviewer, thread), document, thread, ReviewPolicy(), base_ref=None, head_ref=None
    )

    assert not outcome.clean
    assert [item.finding_id for item in outcome.blocking_findings] == ["F1"]

    stored = outcome.blocking_findings[0]
    approve_finding(document, stored.review_id, stored.finding_id)
    again = await run_final_review(
        _lane(FakeReviewer(), thread),
        document,
        thread,
        ReviewPolicy(),
        base_ref=None,
        head_ref=None,
    )

    assert again.clean


@pytest.mark.asyncio
async def test_failed_final_review_is_not_clean() -> None:
    document = _document()
    thread = InMemoryThread()

    outcome = await run_final_review(
        _lane(FakeReviewer(fail=True), thread),
        document,
        thread,
        ReviewPolicy(),
        base_ref=None,
        head_ref=None,
    )

    assert outcome.review_failed
    assert not outcome.clean
