"""
issue-loop — event log extractor

File: src/issue_loop/event_log/extractor.py
Last updated: 2026-10-17

Purpose
- Recover typed events from free-form comment text.

What should be included in this file
- ``extract_json_blocks``: heading-scoped line state machine.
- ``iter_events``/``extract_events``/``latest_task_log`` over a comment list.
- ``EventCursor`` for incremental ingestion.

Functional requirements
- Only fenced ``json`` blocks directly under the requested heading count; JSON elsewhere
  in a comment (examples, quoted code) is ignored.
- Malformed JSON in a labelled block is skipped, never fatal.
- When several events match, the last one in thread order is authoritative.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from issue_loop.constants import WISP_TITLE
from issue_loop.event_log.envelopes import (
    EVENT_HEADINGS,
    Envelope,
    EventType,
    TaskLogEnvelope,
    parse_envelope,
)
from issue_loop.event_log.thread import Comment

_OPEN_FENCE = re.compile(r"^\s*```json\s*$")
_CLOSE_FENCE = re.compile(r"^\s*```\s*$")
_SECTION_BREAK = re.compile(r"^#{1,4} |^---")


def extract_json_blocks(text: str, heading: str) -> list[dict[str, object]]:
    """Return JSON objects from fenced blocks that directly follow ``heading``.

    A line containing ``heading`` opens a section. Inside it, a ```` ```json ```` fence
    starts a block and the next bare fence ends it and closes the section. A markdown
    heading (levels 1-4) or a ``---`` rule seen before the opening fence leaves the
    section without capturing anything.
    """

    blocks: list[dict[str, object]] = []
    in_section = False
    in_block = False
    buffer: list[str] = []

    for line in text.splitlines():
        if not in_block and heading in line:
            in_section = True
            buffer = []
            continue
        if not in_section:
            continue
        if not in_block:
            if _OPEN_FENCE.match(line):
                in_block = True
                buffer = []
            elif _SECTION_BREAK.match(line):
                in_section = False
            continue
        if _CLOSE_FENCE.match(line):
            decoded = _decode_object("\n".join(buffer))
            if decoded is not None:
                blocks.append(decoded)
            in_block = False
            in_section = False
            buffer = []
            continue
        buffer.append(line)

    return blocks


def extract_fenced_json_blocks(text: str) -> list[dict[str, object]]:
    """Return every fenced ``json`` object in ``text`` regardless of headings."""

    blocks: list[dict[str, object]] = []
    in_block = False
    buffer: list[str] = []
    for line in text.splitlines():
        if not in_block:
            if _OPEN_FENCE.match(line):
                in_block = True
                buffer = []
            continue
        if _CLOSE_FENCE.match(line):
            decoded = _decode_object("\n".join(buffer))
            if decoded is not None:
                blocks.append(decoded)
            in_block = False
            continue
        buffer.append(line)
    return blocks


def iter_events(
    comments: Iterable[Comment],
    event_type: EventType,
) -> Iterator[tuple[Comment, Envelope]]:
    """Yield ``(comment, envelope)`` pairs in thread order."""

    kind = EventType(event_type)
    heading = EVENT_HEADINGS[kind]
    for comment in comments:
        payloads = extract_json_blocks(comment.body, heading)
        if not payloads and kind is EventType.WISP and comment.body.startswith(WISP_TITLE):
            payloads = extract_fenced_json_blocks(comment.body)[:1]
        for payload in payloads:
            try:
                envelope = parse_envelope(kind, payload)
            except ValueError:
                continue
            yield comment, envelope


def extract_events(comments: Iterable[Comment], event_type: EventType) -> list[Envelope]:
    return [envelope for _, envelope in iter_events(comments, event_type)]


def latest_task_log(
    comments: Iterable[Comment],
    task_id: str,
    *,
    work_unit: int | str | None = None,
) -> TaskLogEnvelope | None:
    """Return the most recent task-log event for ``task_id`` (and work unit, if given)."""

    latest: TaskLogEnvelope | None = None
    for _, envelope in iter_events(comments, EventType.TASK_LOG):
        if not isinstance(envelope, TaskLogEnvelope) or envelope.task_id != task_id:
            continue
        if not issue_matches(envelope.issue, work_unit):
            continue
        latest = envelope
    return latest


def issue_matches(event_issue: int | str | None, work_unit: int | str | None) -> bool:
    """An event without an ``issue`` field matches any work unit."""

    if event_issue is None or work_unit is None:
        return True
    return str(event_issue).lstrip("#") == str(work_unit).lstrip("#")


@dataclass(slots=True)
class EventCursor:
    """High-water mark over comment ids for incremental ingestion."""

    last_seen_id: int = 0

    def advance(self, comments: Sequence[Comment]) -> list[Comment]:
        """Return comments newer than the mark, in thread order, and move the mark."""

        fresh = [comment for comment in comments if comment.id > self.last_seen_id]
        if fresh:
            self.last_seen_id = max(comment.id for comment in fresh)
        return fresh


def _decode_object(raw: str) -> dict[str, object] | None:
    if not raw.strip():
        return None
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


__all__ = [
    "EventCursor",
    "extract_events",
    "extract_fenced_json_blocks",
    "extract_json_blocks",
    "issue_matches",
    "iter_events",
    "latest_task_log",
]
