"""
issue-loop — unit tests for task-log confirmation

File: tests/unit/event_log/test_confirmation.py
Last updated: 2026-10-17

Purpose
- Confirmation reads remote state, honours the window, and patches wrong uids in place.
"""

from __future__ import annotations

import pytest

from issue_loop.event_log.confirmation import confirm_task_log
from issue_loop.event_log.envelopes import TaskLogEnvelope, render_task_log_comment
from issue_loop.event_log.extractor import latest_task_log
from issue_loop.event_log.thread import InMemoryThread

EXPECTED_UID = "tsk_aaaaaaaaaaaa"


def _post_log(thread: InMemoryThread, *, task_uid: str | None, status: str = "pass") -> None:
    envelope = TaskLogEnvelope(
        task_id="US-001", task_uid=task_uid, status=status, attempt=1, issue=12
    )
    thread.add(render_task_log_comment(envelope))


@pytest.mark.asyncio
async def test_confirms_matching_event() -> None:
    thread = InMemoryThread()
    _post_log(thread, task_uid=EXPECTED_UID)

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID
    )

    assert confirmed is not None
    assert confirmed.task_uid == EXPECTED_UID


@pytest.mark.asyncio
async def test_missing_event_is_unconfirmed() -> None:
    thread = InMemoryThread()
    thread.add("just chatting")

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID
    )

    assert confirmed is None


@pytest.mark.asyncio
async def test_event_outside_window_is_ignored() -> None:
    thread = InMemoryThread()
    _post_log(thread, task_uid=EXPECTED_UID)
    for index in range(3):
        thread.add(f"noise {index}")

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID, window=3
    )

    assert confirmed is None


@pytest.mark.asyncio
async def test_wrong_uid_is_patched_on_the_remote_comment() -> None:
    thread = InMemoryThread()
    _post_log(thread, task_uid="tsk_wrongwrong00")

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID
    )

    assert confirmed is not None
    assert confirmed.task_uid == EXPECTED_UID
    stored = latest_task_log(thread.comments, "US-001")
    assert stored is not None
    assert stored.task_uid == EXPECTED_UID


@pytest.mark.asyncio
async def test_null_uid_is_patched() -> None:
    thread = InMemoryThread()
    _post_log(thread, task_uid=None)

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID
    )

    assert confirmed is not None
    assert f'"taskUid":"{EXPECTED_UID}"' in thread.comments[0].body


@pytest.mark.asyncio
async def test_failed_uid_patch_leaves_event_unconfirmed() -> None:
    thread = InMemoryThread(fail_patches=True)
    _post_log(thread, task_uid="tsk_wrongwrong00")

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID
    )

    assert confirmed is None


@pytest.mark.asyncio
async def test_other_issue_events_do_not_confirm() -> None:
    thread = InMemoryThread()
    thread.add(
        render_task_log_comment(
            TaskLogEnvelope(task_id="US-001", task_uid=EXPECTED_UID, status="pass", issue=77)
        )
    )

    confirmed = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID
    )

    assert confirmed is None


@pytest.mark.asyncio
async def test_log_posted_before_the_mark_does_not_confirm() -> None:
    thread = InMemoryThread()
    _post_log(thread, task_uid=EXPECTED_UID)
    mark = thread.add("agent started").id

    confirmed = await confirm_task_log(
        thread,
        work_unit=12,
        task_id="US-001",
        expected_uid=EXPECTED_UID,
        attempt=2,
        after_comment_id=mark,
    )

    assert confirmed is None


@pytest.mark.asyncio
async def test_log_posted_after_the_mark_confirms() -> None:
    thread = InMemoryThread()
    mark = thread.add("agent started").id
    _post_log(thread, task_uid=EXPECTED_UID)

    confirmed = await confirm_task_log(
        thread,
        work_unit=12,
        task_id="US-001",
        expected_uid=EXPECTED_UID,
        attempt=1,
        after_comment_id=mark,
    )

    assert confirmed is not None


@pytest.mark.asyncio
async def test_without_a_mark_the_attempt_number_must_match() -> None:
    thread = InMemoryThread()
    _post_log(thread, task_uid=EXPECTED_UID)

    stale = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID, attempt=2
    )
    current = await confirm_task_log(
        thread, work_unit=12, task_id="US-001", expected_uid=EXPECTED_UID, attempt=1
    )

    assert stale is None
    assert current is not None
