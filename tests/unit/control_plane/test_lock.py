"""
issue-loop — unit tests for the single-instance process lock

File: tests/unit/control_plane/test_lock.py
Last updated: 2026-10-17
"""

from __future__ import annotations

from pathlib import Path

import pytest

from issue_loop.control_plane.lock import LoopLock
from issue_loop.errors import LockContentionError


def test_second_holder_fails_fast(tmp_path: Path) -> None:
    path = tmp_path / "state" / "loop.lock"
    first = LoopLock(path)
    second = LoopLock(path)

    with first:
        assert first.is_locked
        with pytest.raises(LockContentionError) as excinfo:
            second.acquire()

    assert excinfo.value.lock_path == str(path)
    assert not first.is_locked


def test_lock_is_reusable_after_release(tmp_path: Path) -> None:
    path = tmp_path / "loop.lock"

    with LoopLock(path):
        pass
    with LoopLock(path) as again:
        assert again.is_locked


def test_release_without_acquire_is_a_no_op(tmp_path: Path) -> None:
    LoopLock(tmp_path / "loop.lock").release()
