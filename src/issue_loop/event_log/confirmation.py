"""
issue-loop — task-log confirmation against the remote log

File: src/issue_loop/event_log/confirmation.py
Last updated: 2026-10-17

Purpose
- Prove that the agent's task log was durably posted, using remote state rather than
  agent stdout.

Functional requirements
- Only the most recent ``window`` comments are inspected; the last matching event wins.
- An event belongs to the current attempt only when its comment is newer than the
  ``after_comment_id`` mark taken before the agent ran. Without a mark, the reported
  ``attempt`` must match instead.
- A wrong ``taskUid`` is corrected in place on the remote comment. When the correction
  cannot be written the event counts as unconfirmed.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any

import structlog

from issue_loop.errors import LogWriteFailure
from issue_loop.event_log.envelopes import EventType, TaskLogEnvelope
from issue_loop.event_log.extractor import issue_matches, iter_events
from issue_loop.event_log.thread import Comment, CommentThread

DEFAULT_CONFIRMATION_WINDOW = 5

_TASK_UID_FIELD = re.compile(r'("taskUid"\s*:\s*)(?:"[^"\\]*"|null)')


async def confirm_task_log(
    thread: CommentThread,
    *,
    work_unit: int | str,
    task_id: str,
    expected_uid: str | None,
    attempt: int | None = None,
    after_comment_id: int | None = None,
    window: int = DEFAULT_CONFIRMATION_WINDOW,
    logger: Any | None = None,
) -> TaskLogEnvelope | None:
    """Return the confirmed task-log event for this attempt, or ``None``."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    try:
        comments = await thread.list_comments()
    except LogWriteFailure as exc:
        log.warning(
            "task_log_unconfirmed",
            task_id=task_id,
            reason="thread_unreadable",
            detail=str(exc),
        )
        return None

    recent = comments[-window:] if window > 0 else comments
    marker = f"Task Log: {task_id}"
    matched: tuple[Comment, TaskLogEnvelope] | None = None
    for comment, envelope in iter_events(
        (comment for comment in recent if marker in comment.body), EventType.TASK_LOG
    ):
        if not isinstance(envelope, TaskLogEnvelope) or envelope.task_id != task_id:
            continue
        if not issue_matches(envelope.issue, work_unit):
            continue
        if after_comment_id is not None:
            if comment.id <= after_comment_id:
                continue
        elif attempt is not None and envelope.attempt != attempt:
            continue
        matched = (comment, envelope)

    if matched is None:
        log.info("task_log_unconfirmed", task_id=task_id, reason="no_matching_event")
        return None

    comment, envelope = matched
    if not expected_uid or envelope.task_uid == expected_uid:
        return envelope

    patched_body, replacements = _TASK_UID_FIELD.subn(
        lambda match: f'{match.group(1)}"{expected_uid}"', comment.body
    )
    if replacements == 0:
        log.warning(
            "task_log_unconfirmed",
            task_id=task_id,
            reason="uid_field_not_patchable",
            comment_id=comment.id,
        )
        return None

    try:
        await thread.patch(comment.id, patched_body)
    except LogWriteFailure as exc:
        log.warning(
            "task_log_unconfirmed",
            task_id=task_id,
            reason="uid_patch_failed",
            comment_id=comment.id,
            detail=str(exc),
        )
        return None

    log.info(
        "task_log_uid_corrected",
        task_id=task_id,
        comment_id=comment.id,
        reported_uid=envelope.task_uid,
        expected_uid=expected_uid,
    )
    return dataclasses.replace(envelope, task_uid=expected_uid)


__all__ = ["DEFAULT_CONFIRMATION_WINDOW", "confirm_task_log"]
