"""
issue-loop — unit tests for the task graph store

File: tests/unit/persistence/test_task_graph_store.py
Last updated: 2026-10-17

Purpose
- Validate load, default backfill and atomic save of the task-graph document.

What this test file should cover
- Backfill idempotence: a second load/backfill/save cycle is byte-identical.
- Unknown keys survive a round trip.
- Corrupt or missing documents raise ``CorruptStateError``.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from issue_loop.domain.identity import generate_task_uid
from issue_loop.domain.models import DocumentStatus
from issue_loop.errors import CorruptStateError
from issue_loop.persistence.task_graph_store import TaskGraphStore

LEGACY_DOCUMENT: dict[str, object] = {
    "issueNumber": 12,
    "branchName": "feature/login",
    "owner": "platform-team",
    "userStories": [
        {"id": "US-001", "title": "Add login form", "priority": 1, "passes": False},
        {
            "id": "US-002",
            "title": "Add logout",
            "priority": 2,
            "dependsOn": ["US-001"],
            "notes": "keep me",
        },
    ],
}


def _write(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def test_backfill_fills_uids_and_bookkeeping(tmp_path: Path) -> None:
    path = tmp_path / "prd.json"
    _write(path, LEGACY_DOCUMENT)
    store = TaskGraphStore(path)

    document = store.load_and_backfill()

    assert document.tasks[0].uid == generate_task_uid(12, "Add login form", None, 1)
    assert document.tasks[1].uid == generate_task_uid(12, "Add logout", None, 2)
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["status"] == "active"
    assert saved["compaction"] == {"taskLogCountSinceLastSummary": 0, "summaryEveryNTaskLogs": 5}
    assert saved["executionRetry"]["consecutiveRetries"] == 0
    assert saved["userStories"][0]["attempts"] == 0
    assert saved["userStories"][1]["notes"] == "keep me"
    assert saved["owner"] == "platform-team"


def test_backfill_is_byte_identical_on_second_pass(tmp_path: Path) -> None:
    path = tmp_path / "prd.json"
    _write(path, LEGACY_DOCUMENT)
    store = TaskGraphStore(path)

    store.load_and_backfill()
    first = path.read_bytes()

    document = store.load()
    assert store.backfill_defaults(document) is False
    store.save(document)

    assert path.read_bytes() == first
    store.load_and_backfill()
    assert path.read_bytes() == first


def test_backfill_keeps_existing_uid(tmp_path: Path) -> None:
    path = tmp_path / "prd.json"
    payload = json.loads(json.dumps(LEGACY_DOCUMENT))
    payload["userStories"][0]["uid"] = "tsk_custom000001"
    _write(path, payload)

    document = TaskGraphStore(path).load_and_backfill()

    assert document.tasks[0].uid == "tsk_custom000001"


def test_tasks_array_key_is_preserved(tmp_path: Path) -> None:
    path = tmp_path / "prd.json"
    _write(path, {"issueNumber": 3, "tasks": [{"id": "US-001", "title": "Only"}]})
    store = TaskGraphStore(path)

    store.load_and_backfill()

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert "tasks" in saved
    assert "userStories" not in saved


def test_save_round_trips_status(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "prd.json"
    store = TaskGraphStore(path)
    path.parent.mkdir()
    _write(path, LEGACY_DOCUMENT)
    document = store.load_and_backfill()

    document.status = DocumentStatus.BLOCKED
    store.save(document)

    assert store.load().status is DocumentStatus.BLOCKED


def test_missing_document_is_corrupt_state(tmp_path: Path) -> None:
    store = TaskGraphStore(tmp_path / "absent.json")

    assert store.exists() is False
    with pytest.raises(CorruptStateError, match="not found"):
        store.load()


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        "[]",
        json.dumps({"issueNumber": 1, "userStories": {"id": "US-001"}}),
        json.dumps({"issueNumber": 1, "status": "paused", "userStories": []}),
        json.dumps({"issueNumber": 1, "userStories": [{"title": "no id"}]}),
    ],
)
def test_invalid_documents_raise_corrupt_state(tmp_path: Path, text: str) -> None:
    path = tmp_path / "prd.json"
    path.write_text(text, encoding="utf-8")

    with pytest.raises(CorruptStateError):
        TaskGraphStore(path).load()
