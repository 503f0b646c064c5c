"""
issue-loop — event envelopes

File: src/issue_loop/event_log/envelopes.py
Last updated: 2026-10-17

Purpose
- Typed, versioned event payloads embedded in remote-log comments.
- Markdown renderers that place each envelope under its dedicated heading.

What should be included in this file
- ``TaskLogEnvelope``, ``ReviewLogEnvelope`` (+ ``ReviewFinding``), ``WispEnvelope``,
  ``BrowserVerificationEnvelope``.
- ``parse_envelope`` dispatch by ``EventType``.
- ``render_*_comment`` helpers.

Functional requirements
- ``from_dict`` raises ``ValueError`` on structurally invalid payloads; the extractor
  treats that as "not an event" and skips it.
- ``type`` and ``v`` are optional on the wire for task logs written by agents; when
  present they must match.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, NoReturn

from issue_loop.constants import (
    BROWSER_EVENT_HEADING,
    BROWSER_VERIFICATION_TITLE,
    EVENT_ENVELOPE_VERSION,
    REVIEW_EVENT_HEADING,
    REVIEW_LOG_TITLE,
    REVIEW_SEVERITIES,
    TASK_LOG_EVENT_HEADING,
    TASK_LOG_TITLE,
    WISP_EVENT_HEADING,
    WISP_TITLE,
)
from issue_loop.domain.models import DiscoveredTask

JSONObject = dict[str, Any]


class EventType(StrEnum):
    TASK_LOG = "task_log"
    REVIEW_LOG = "review_log"
    WISP = "wisp"
    BROWSER_VERIFICATION = "browser_verification"


EVENT_HEADINGS: dict[EventType, str] = {
    EventType.TASK_LOG: TASK_LOG_EVENT_HEADING,
    EventType.REVIEW_LOG: REVIEW_EVENT_HEADING,
    EventType.WISP: WISP_EVENT_HEADING,
    EventType.BROWSER_VERIFICATION: BROWSER_EVENT_HEADING,
}


@dataclass(frozen=True, slots=True)
class TaskLogEnvelope:
    """Outcome report an execution agent posts after each attempt."""

    task_id: str
    task_uid: str | None = None
    status: str = ""
    attempt: int = 0
    issue: int | str | None = None
    commit: str | None = None
    verify_passed: tuple[str, ...] = ()
    verify_failed: tuple[str, ...] = ()
    search_queries: tuple[str, ...] = ()
    files_inspected: tuple[str, ...] = ()
    discovered: tuple[DiscoveredTask, ...] = ()
    patterns: tuple[str, ...] = ()
    context_manifest_hash: str | None = None
    ts: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TaskLogEnvelope:
        _check_header(data, EventType.TASK_LOG, type_required=False)
        verify = _as_object(data.get("verify", {}), "verify")
        search = _as_object(data.get("search", {}), "search")
        discovered_raw = data.get("discovered", [])
        if discovered_raw is None:
            discovered_raw = []
        if not isinstance(discovered_raw, list):
            _fail("discovered", "must be a list")
        return cls(
            task_id=_as_str(data.get("taskId"), "taskId"),
            task_uid=_as_optional_str(data.get("taskUid"), "taskUid"),
            status=_as_optional_str(data.get("status"), "status") or "",
            attempt=_as_int(data.get("attempt", 0), "attempt"),
            issue=_as_issue(data.get("issue")),
            commit=_as_optional_str(data.get("commit"), "commit"),
            verify_passed=_as_str_tuple(verify.get("passed", []), "verify.passed"),
            verify_failed=_as_str_tuple(verify.get("failed", []), "verify.failed"),
            search_queries=_as_str_tuple(search.get("queries", []), "search.queries"),
            files_inspected=_as_str_tuple(
                search.get("filesInspected", []), "search.filesInspected"
            ),
            discovered=tuple(
                DiscoveredTask.from_dict(item, path=f"discovered[{index}]")
                for index, item in enumerate(discovered_raw)
            ),
            patterns=_as_patterns(data.get("patterns", [])),
            context_manifest_hash=_as_optional_str(
                data.get("contextManifestHash"), "contextManifestHash"
            ),
            ts=_as_optional_str(data.get("ts"), "ts"),
        )

    def to_dict(self) -> JSONObject:
        out: JSONObject = {
            "type": EventType.TASK_LOG.value,
            "v": EVENT_ENVELOPE_VERSION,
            "issue": self.issue,
            "taskId": self.task_id,
            "taskUid": self.task_uid,
            "status": self.status,
            "attempt": self.attempt,
            "commit": self.commit,
            "verify": {"passed": list(self.verify_passed), "failed": list(self.verify_failed)},
            "search": {
                "queries": list(self.search_queries),
                "filesInspected": list(self.files_inspected),
            },
            "discovered": [item.to_dict() for item in self.discovered],
            "patterns": list(self.patterns),
            "ts": self.ts,
        }
        if self.context_manifest_hash is not None:
            out["contextManifestHash"] = self.context_manifest_hash
        return out


@dataclass(frozen=True, slots=True)
class ReviewFinding:
    id: str
    severity: str
    confidence: float
    category: str = ""
    evidence: str = ""
    suggested_task: DiscoveredTask | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "finding") -> ReviewFinding:
        payload = _as_object(data, path)
        severity = _as_str(payload.get("severity"), f"{path}.severity").lower()
        if severity not in REVIEW_SEVERITIES:
            _fail(f"{path}.severity", f"must be one of {', '.join(REVIEW_SEVERITIES)}")
        confidence_raw = payload.get("confidence", 0.0)
        if isinstance(confidence_raw, bool) or not isinstance(confidence_raw, (int, float)):
            _fail(f"{path}.confidence", "must be a number")
        confidence = float(confidence_raw)
        if not 0.0 <= confidence <= 1.0:
            _fail(f"{path}.confidence", "must be within [0, 1]")
        suggested_raw = payload.get("suggestedTask")
        return cls(
            id=_as_str(payload.get("id"), f"{path}.id"),
            severity=severity,
            confidence=confidence,
            category=_as_optional_str(payload.get("category"), f"{path}.category") or "",
            evidence=_as_optional_str(payload.get("evidence"), f"{path}.evidence") or "",
            suggested_task=(
                None
                if suggested_raw is None
                else DiscoveredTask.from_dict(
                    _as_object(suggested_raw, f"{path}.suggestedTask"),
                    path=f"{path}.suggestedTask",
                )
            ),
        )

    def to_dict(self) -> JSONObject:
        out: JSONObject = {
            "id": self.id,
            "severity": self.severity,
            "confidence": self.confidence,
            "category": self.category,
            "evidence": self.evidence,
        }
        if self.suggested_task is not None:
            out["suggestedTask"] = self.suggested_task.to_dict()
        return out


@dataclass(frozen=True, slots=True)
class ReviewLogEnvelope:
    review_id: str
    task_id: str
    scope: str = "task"
    task_uid: str | None = None
    issue: int | str | None = None
    findings: tuple[ReviewFinding, ...] = ()
    ts: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ReviewLogEnvelope:
        _check_header(data, EventType.REVIEW_LOG, type_required=False)
        findings_raw = data.get("findings", [])
        if not isinstance(findings_raw, list):
            _fail("findings", "must be a list")
        scope = _as_optional_str(data.get("scope"), "scope") or "task"
        if scope not in {"task", "final"}:
            _fail("scope", "must be 'task' or 'final'")
        return cls(
            review_id=_as_str(data.get("reviewId"), "reviewId"),
            task_id=_as_str(data.get("taskId"), "taskId"),
            scope=scope,
            task_uid=_as_optional_str(data.get("taskUid"), "taskUid"),
            issue=_as_issue(data.get("issue")),
            findings=tuple(
                ReviewFinding.from_dict(item, path=f"findings[{index}]")
                for index, item in enumerate(findings_raw)
            ),
            ts=_as_optional_str(data.get("ts"), "ts"),
        )

    def to_dict(self) -> JSONObject:
        return {
            "type": EventType.REVIEW_LOG.value,
            "v": EVENT_ENVELOPE_VERSION,
            "issue": self.issue,
            "reviewId": self.review_id,
            "taskId": self.task_id,
            "taskUid": self.task_uid,
            "scope": self.scope,
            "findings": [finding.to_dict() for finding in self.findings],
            "ts": self.ts,
        }


@dataclass(frozen=True, slots=True)
class WispEnvelope:
    id: str
    note: str
    expires_at: str
    task_uid: str | None = None
    promoted: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> WispEnvelope:
        _check_header(data, EventType.WISP, type_required=True)
        promoted = data.get("promoted", False)
        if not isinstance(promoted, bool):
            _fail("promoted", "must be a boolean")
        return cls(
            id=_as_str(data.get("id"), "id"),
            note=_as_str(data.get("note"), "note"),
            expires_at=_as_optional_str(data.get("expiresAt"), "expiresAt") or "",
            task_uid=_as_optional_str(data.get("taskUid"), "taskUid"),
            promoted=promoted,
            extra={
                key: value
                for key, value in data.items()
                if key not in {"type", "v", "id", "note", "expiresAt", "taskUid", "promoted"}
            },
        )

    def to_dict(self) -> JSONObject:
        out: JSONObject = {
            "type": EventType.WISP.value,
            "v": EVENT_ENVELOPE_VERSION,
            "id": self.id,
            "taskUid": self.task_uid,
            "note": self.note,
            "expiresAt": self.expires_at,
            "promoted": self.promoted,
        }
        out.update(self.extra)
        return out


@dataclass(frozen=True, slots=True)
class BrowserVerificationEnvelope:
    task_id: str
    tool: str
    status: str
    task_uid: str | None = None
    ts: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> BrowserVerificationEnvelope:
        _check_header(data, EventType.BROWSER_VERIFICATION, type_required=False)
        return cls(
            task_id=_as_str(data.get("taskId"), "taskId"),
            tool=_as_str(data.get("tool"), "tool"),
            status=_as_str(data.get("status"), "status").lower(),
            task_uid=_as_optional_str(data.get("taskUid"), "taskUid"),
            ts=_as_optional_str(data.get("ts"), "ts"),
        )

    def to_dict(self) -> JSONObject:
        return {
            "type": EventType.BROWSER_VERIFICATION.value,
            "v": EVENT_ENVELOPE_VERSION,
            "taskId": self.task_id,
            "taskUid": self.task_uid,
            "tool": self.tool,
            "status": self.status,
            "ts": self.ts,
        }


Envelope = TaskLogEnvelope | ReviewLogEnvelope | WispEnvelope | BrowserVerificationEnvelope

_PARSERS: dict[EventType, Any] = {
    EventType.TASK_LOG: TaskLogEnvelope.from_dict,
    EventType.REVIEW_LOG: ReviewLogEnvelope.from_dict,
    EventType.WISP: WispEnvelope.from_dict,
    EventType.BROWSER_VERIFICATION: BrowserVerificationEnvelope.from_dict,
}


def parse_envelope(event_type: EventType, payload: Mapping[str, object]) -> Envelope:
    parser = _PARSERS[EventType(event_type)]
    envelope: Envelope = parser(payload)
    return envelope


def render_task_log_comment(envelope: TaskLogEnvelope, *, summary: str = "") -> str:
    return _render(
        f"{TASK_LOG_TITLE}: {envelope.task_id}",
        summary,
        TASK_LOG_EVENT_HEADING,
        envelope.to_dict(),
    )


def render_review_log_comment(envelope: ReviewLogEnvelope, *, summary: str = "") -> str:
    label = "final" if envelope.scope == "final" else envelope.task_id
    return _render(
        f"{REVIEW_LOG_TITLE}: {label}",
        summary,
        REVIEW_EVENT_HEADING,
        envelope.to_dict(),
    )


def render_wisp_comment(envelope: WispEnvelope) -> str:
    return _render(WISP_TITLE, "", WISP_EVENT_HEADING, envelope.to_dict())


def render_browser_verification_comment(envelope: BrowserVerificationEnvelope) -> str:
    return _render(
        f"{BROWSER_VERIFICATION_TITLE}: {envelope.task_id}",
        "",
        BROWSER_EVENT_HEADING,
        envelope.to_dict(),
    )


def _render(title: str, summary: str, heading: str, payload: JSONObject) -> str:
    parts = [title, ""]
    if summary.strip():
        parts.extend([summary.strip(), ""])
    parts.extend(
        [
            heading,
            "```json",
            json.dumps(payload, separators=(",", ":"), ensure_ascii=False),
            "```",
        ]
    )
    return "\n".join(parts)


def _check_header(data: Mapping[str, object], expected: EventType, *, type_required: bool) -> None:
    if not isinstance(data, Mapping):
        _fail("<root>", f"expected object, got {type(data).__name__}")
    event_type = data.get("type")
    if event_type is None:
        if type_required:
            _fail("type", f"must be {expected.value!r}")
    elif event_type != expected.value:
        _fail("type", f"expected {expected.value!r}, got {event_type!r}")
    version = data.get("v")
    if version is not None and version != EVENT_ENVELOPE_VERSION:
        _fail("v", f"unsupported envelope version {version!r}")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_object(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return value


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        _fail(path, "must be a non-empty string")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    return value


def _as_issue(value: object) -> int | str | None:
    if value is None or (isinstance(value, (int, str)) and not isinstance(value, bool)):
        return value
    _fail("issue", "must be an integer or string")


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        _fail(path, f"expected list, got {type(value).__name__}")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            _fail(f"{path}[{index}]", "expected string")
    return tuple(value)


def _as_patterns(value: object) -> tuple[str, ...]:
    """Patterns arrive as plain strings or objects with a ``pattern`` field."""

    if value is None:
        return ()
    if not isinstance(value, list):
        _fail("patterns", "must be a list")
    out: list[str] = []
    for index, item in enumerate(value):
        if isinstance(item, str):
            text = item
        elif isinstance(item, Mapping) and isinstance(item.get("pattern"), str):
            text = item["pattern"]
        else:
            _fail(f"patterns[{index}]", "expected string or object with 'pattern'")
        if text.strip():
            out.append(text)
    return tuple(out)


__all__ = [
    "EVENT_HEADINGS",
    "BrowserVerificationEnvelope",
    "Envelope",
    "EventType",
    "ReviewFinding",
    "ReviewLogEnvelope",
    "TaskLogEnvelope",
    "WispEnvelope",
    "parse_envelope",
    "render_browser_verification_comment",
    "render_review_log_comment",
    "render_task_log_comment",
    "render_wisp_comment",
]
