"""
issue-loop — remote event log

File: src/issue_loop/event_log/__init__.py
Last updated: 2026-10-17

Purpose
- Envelopes, extraction and confirmation over an append-only comment thread.
"""

from issue_loop.event_log.confirmation import DEFAULT_CONFIRMATION_WINDOW, confirm_task_log
from issue_loop.event_log.envelopes import (
    BrowserVerificationEnvelope,
    Envelope,
    EventType,
    ReviewFinding,
    ReviewLogEnvelope,
    TaskLogEnvelope,
    WispEnvelope,
    parse_envelope,
    render_browser_verification_comment,
    render_review_log_comment,
    render_task_log_comment,
    render_wisp_comment,
)
from issue_loop.event_log.extractor import (
    EventCursor,
    extract_events,
    extract_json_blocks,
    iter_events,
    latest_task_log,
)
from issue_loop.event_log.thread import Comment, CommentThread, GhIssueThread, InMemoryThread

__all__ = [
    "DEFAULT_CONFIRMATION_WINDOW",
    "BrowserVerificationEnvelope",
    "Comment",
    "CommentThread",
    "Envelope",
    "EventCursor",
    "EventType",
    "GhIssueThread",
    "InMemoryThread",
    "ReviewFinding",
    "ReviewLogEnvelope",
    "TaskLogEnvelope",
    "WispEnvelope",
    "confirm_task_log",
    "extract_events",
    "extract_json_blocks",
    "iter_events",
    "latest_task_log",
    "parse_envelope",
    "render_browser_verification_comment",
    "render_review_log_comment",
    "render_task_log_comment",
    "render_wisp_comment",
]
