"""
issue-loop — log compaction

File: src/issue_loop/control_plane/compaction.py
Last updated: 2026-10-17

Purpose
- Periodically condense the remote log into a ``Compacted Summary`` comment so later
  prompts can start from the summary instead of the whole thread.

Functional requirements
- Every confirmed task log increments the counter; at the threshold a summary is posted.
- The counter resets only after a successful post. A failed post keeps the counter so
  the next confirmed task log retries the same window.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.constants import COMPACTION_TITLE, DISCOVERY_NOTE_TITLE
from issue_loop.errors import LogWriteFailure
from issue_loop.event_log.envelopes import EventType, TaskLogEnvelope
from issue_loop.event_log.extractor import iter_events
from issue_loop.utils.clock import format_utc

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from issue_loop.domain.models import TaskGraphDocument
    from issue_loop.event_log.thread import Comment, CommentThread


class CompactionOutcome(StrEnum):
    NOT_DUE = "not_due"
    POSTED = "posted"
    POST_FAILED = "post_failed"


@dataclass(frozen=True, slots=True)
class CompactionResult:
    outcome: CompactionOutcome
    count: int
    threshold: int
    comment_url: str | None = None


def latest_summary_index(comments: Sequence[Comment]) -> int | None:
    """Index of the most recent compaction summary comment, if any."""

    for index in range(len(comments) - 1, -1, -1):
        if comments[index].body.startswith(COMPACTION_TITLE):
            return index
    return None


def build_compaction_summary(
    document: TaskGraphDocument,
    comments: Sequence[Comment],
    *,
    covers: int,
    now: datetime,
) -> str:
    previous_index = latest_summary_index(comments)
    if previous_index is None:
        supersedes = "none"
        window = list(comments)
    else:
        previous = comments[previous_index]
        supersedes = previous.url or f"comment {previous.id}"
        window = list(comments[previous_index + 1 :])

    covered: list[str] = []
    for _, envelope in iter_events(window, EventType.TASK_LOG):
        if not isinstance(envelope, TaskLogEnvelope):
            continue
        covered.append(
            f"- **{envelope.task_id}** (uid: `{envelope.task_uid or ''}`) "
            f"— attempt {envelope.attempt}, status: {envelope.status}"
        )
    if not covered:
        for task in document.tasks:
            if task.attempts <= 0:
                continue
            covered.append(
                f"- **{task.id}** (uid: `{task.uid or 'unknown'}`) "
                f"— attempt {task.attempts}, status: {'pass' if task.passes else 'fail'}"
            )

    discoveries = [
        comment.body for comment in comments if comment.body.startswith(DISCOVERY_NOTE_TITLE)
    ]
    risks = [
        f"- {task.id}: {task.title} (attempt {task.attempts})"
        for task in document.tasks
        if not task.passes
    ]
    passing, total = document.progress()
    percent = passing * 100 // max(total, 1)

    return "\n".join(
        [
            COMPACTION_TITLE,
            "",
            f"**Issue:** #{document.work_unit}",
            f"**Timestamp:** {format_utc(now)}",
            f"**Covers:** {covers} task logs since last summary",
            f"**Supersedes:** {supersedes}",
            "",
            "### Covered Tasks (UIDs and Attempts)",
            "\n".join(covered) if covered else "No task data available",
            "",
            "### Canonical Decisions and Patterns",
            "\n---\n".join(discoveries) if discoveries else "No discovery notes found",
            "",
            "### Open Risks",
            "\n".join(risks) if risks else "None — all tasks passing",
            "",
            "### Current Progress",
            f"{passing}/{total} tasks passing ({percent}%)",
        ]
    )


async def maybe_post_compaction_summary(
    document: TaskGraphDocument,
    thread: CommentThread,
    *,
    now: datetime,
    logger: Any | None = None,
) -> CompactionResult:
    """Count one confirmed task log and post a summary when the threshold is reached.

    Mutates ``document.compaction``; the caller saves the document.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    state = document.compaction
    state.count += 1
    if state.count < state.threshold:
        log.debug("compaction_not_due", count=state.count, threshold=state.threshold)
        return CompactionResult(CompactionOutcome.NOT_DUE, state.count, state.threshold)

    try:
        comments = await thread.list_comments()
        body = build_compaction_summary(document, comments, covers=state.count, now=now)
        posted = await thread.post(body)
    except LogWriteFailure as exc:
        log.warning(
            "compaction_post_failed",
            count=state.count,
            threshold=state.threshold,
            detail=str(exc),
        )
        return CompactionResult(CompactionOutcome.POST_FAILED, state.count, state.threshold)

    covered = state.count
    state.count = 0
    log.info("compaction_posted", covers=covered, comment_id=posted.id, url=posted.url)
    return CompactionResult(
        CompactionOutcome.POSTED,
        covered,
        state.threshold,
        comment_url=posted.url or None,
    )


__all__ = [
    "CompactionOutcome",
    "CompactionResult",
    "build_compaction_summary",
    "latest_summary_index",
    "maybe_post_compaction_summary",
]
