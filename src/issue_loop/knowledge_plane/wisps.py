"""
issue-loop — wisps (time-boxed ephemeral notes)

File: src/issue_loop/knowledge_plane/wisps.py
Last updated: 2026-10-17

Purpose
- Let a task leave short-lived notes on the remote log that later prompts can see.
- Promote a wisp into a durable discovery note or a follow-up task before it expires.

What should be included in this file
- ``create_wisp`` / ``collect_active_wisps`` / ``promote_wisp``.

Functional requirements
- Only unpromoted wisps with a parseable ``expiresAt`` strictly after ``now`` are
  active. Everything else is dropped silently.
- Only active wisps can be promoted.
- After promotion the wisp comment is re-posted with ``promoted: true``; a failed patch
  is logged and does not undo the promotion.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.constants import DISCOVERY_NOTE_TITLE
from issue_loop.control_plane.discovery import enqueue_discovered_tasks
from issue_loop.domain.identity import new_wisp_id
from issue_loop.domain.models import DiscoveredTask, DiscoverySource
from issue_loop.errors import LogWriteFailure
from issue_loop.event_log.envelopes import EventType, WispEnvelope, render_wisp_comment
from issue_loop.event_log.extractor import iter_events
from issue_loop.utils.clock import format_utc, parse_utc

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime, timedelta

    from issue_loop.domain.models import Task, TaskGraphDocument
    from issue_loop.event_log.thread import Comment, CommentThread

PROMOTED_TASK_TITLE_PREFIX = "Promoted wisp: "
PROMOTED_TASK_CRITERION = "Wisp requirement addressed"
_UNKNOWN_PARENT_ID = "US-001"
_UNKNOWN_PARENT_PRIORITY = 1


class PromotionTarget(StrEnum):
    NOTE = "note"
    TASK = "task"


@dataclass(frozen=True, slots=True)
class WispPromotion:
    wisp_id: str
    target: PromotionTarget
    note_comment: Comment | None = None
    tasks: tuple[Task, ...] = field(default_factory=tuple)
    marked_promoted: bool = False


def is_wisp_active(wisp: WispEnvelope, now: datetime) -> bool:
    if wisp.promoted or not wisp.expires_at:
        return False
    try:
        expires_at = parse_utc(wisp.expires_at)
    except ValueError:
        return False
    return expires_at > now


def collect_active_wisps(comments: Iterable[Comment], now: datetime) -> list[WispEnvelope]:
    return [
        envelope
        for _, envelope in iter_events(comments, EventType.WISP)
        if isinstance(envelope, WispEnvelope) and is_wisp_active(envelope, now)
    ]


async def create_wisp(
    thread: CommentThread,
    *,
    task_uid: str | None,
    note: str,
    ttl: timedelta,
    now: datetime,
    logger: Any | None = None,
) -> WispEnvelope:
    if not note.strip():
        raise ValueError("wisp note must be non-empty")
    if ttl.total_seconds() <= 0:
        raise ValueError("wisp ttl must be positive")
    log = logger if logger is not None else structlog.get_logger(__name__)
    wisp = WispEnvelope(
        id=new_wisp_id(),
        note=note.strip(),
        expires_at=format_utc(now + ttl),
        task_uid=task_uid,
    )
    comment = await thread.post(render_wisp_comment(wisp))
    log.info(
        "wisp_created",
        wisp_id=wisp.id,
        task_uid=task_uid,
        expires_at=wisp.expires_at,
        comment_id=comment.id,
    )
    return wisp


def render_discovery_note(wisp: WispEnvelope, now: datetime) -> str:
    return "\n".join(
        [
            DISCOVERY_NOTE_TITLE,
            "",
            f"**Promoted from wisp:** `{wisp.id}`",
            f"**Original task:** `{wisp.task_uid or ''}`",
            f"**Timestamp:** {format_utc(now)}",
            "",
            "### Pattern Discovered",
            wisp.note,
            "",
            "### Source",
            "Promoted from ephemeral wisp to durable discovery note.",
        ]
    )


async def promote_wisp(
    thread: CommentThread,
    document: TaskGraphDocument,
    wisp: WispEnvelope,
    target: PromotionTarget | str,
    *,
    work_unit: int | str,
    now: datetime,
    logger: Any | None = None,
) -> WispPromotion:
    """Turn ``wisp`` into a discovery note or a discovered task.

    For the ``task`` target the document is mutated and the caller saves it. Expired or
    already-promoted wisps raise ``ValueError`` before anything is posted.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    kind = PromotionTarget(target)
    if not is_wisp_active(wisp, now):
        state = "already promoted" if wisp.promoted else "expired"
        log.warning("wisp_promotion_refused", wisp_id=wisp.id, state=state)
        raise ValueError(f"wisp {wisp.id} is {state} and cannot be promoted")
    note_comment: Comment | None = None
    tasks: list[Task] = []

    if kind is PromotionTarget.NOTE:
        note_comment = await thread.post(render_discovery_note(wisp, now))
    else:
        parent = document.task_by_uid(wisp.task_uid) if wisp.task_uid else None
        candidate = DiscoveredTask(
            title=PROMOTED_TASK_TITLE_PREFIX + wisp.note[:60],
            description=wisp.note,
            acceptance_criteria=[PROMOTED_TASK_CRITERION],
        )
        tasks = enqueue_discovered_tasks(
            document,
            parent_id=parent.id if parent is not None else _UNKNOWN_PARENT_ID,
            parent_uid=wisp.task_uid,
            parent_priority=parent.priority if parent is not None else _UNKNOWN_PARENT_PRIORITY,
            candidates=[candidate],
            work_unit=work_unit,
            discovery_source=DiscoverySource.WISP,
            logger=log,
        )

    marked = await _mark_promoted(thread, wisp, logger=log)
    log.info(
        "wisp_promoted",
        wisp_id=wisp.id,
        target=kind.value,
        tasks=[task.id for task in tasks],
        marked_promoted=marked,
    )
    return WispPromotion(
        wisp_id=wisp.id,
        target=kind,
        note_comment=note_comment,
        tasks=tuple(tasks),
        marked_promoted=marked,
    )


def find_wisp(comments: Iterable[Comment], wisp_id: str) -> tuple[Comment, WispEnvelope] | None:
    for comment, envelope in iter_events(comments, EventType.WISP):
        if isinstance(envelope, WispEnvelope) and envelope.id == wisp_id:
            return comment, envelope
    return None


async def _mark_promoted(thread: CommentThread, wisp: WispEnvelope, *, logger: Any) -> bool:
    try:
        located = find_wisp(await thread.list_comments(), wisp.id)
        if located is None:
            logger.warning("wisp_comment_missing", wisp_id=wisp.id)
            return False
        comment, current = located
        await thread.patch(
            comment.id, render_wisp_comment(dataclasses.replace(current, promoted=True))
        )
    except LogWriteFailure as exc:
        logger.warning("wisp_promotion_patch_failed", wisp_id=wisp.id, detail=str(exc))
        return False
    return True


__all__ = [
    "PromotionTarget",
    "WispPromotion",
    "collect_active_wisps",
    "create_wisp",
    "find_wisp",
    "is_wisp_active",
    "promote_wisp",
    "render_discovery_note",
]
