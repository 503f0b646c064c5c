"""
issue-loop — unit tests for filesystem helpers

File: tests/unit/utils/test_fs.py
Last updated: 2026-10-17
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from issue_loop.utils.fs import atomic_write, ensure_parent_dir


def test_atomic_write_replaces_content_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "prd.json"
    target.write_text("old", encoding="utf-8")

    atomic_write(target, '{"ok": true}\n')
    atomic_write(target, b"bytes\n")

    assert target.read_bytes() == b"bytes\n"
    assert sorted(os.listdir(tmp_path)) == ["prd.json"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        atomic_write(tmp_path / "missing" / "prd.json", "x")


def test_failed_write_cleans_up_temp_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "prd.json"
    target.write_text("original", encoding="utf-8")

    def _boom(src: object, dst: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _boom)

    with pytest.raises(OSError, match="disk full"):
        atomic_write(target, "new")

    assert target.read_text(encoding="utf-8") == "original"
    assert sorted(os.listdir(tmp_path)) == ["prd.json"]


def test_ensure_parent_dir_creates_nested_dirs(tmp_path: Path) -> None:
    target = ensure_parent_dir(tmp_path / "a" / "b" / "loop.lock")

    assert target.parent.is_dir()
    assert not target.exists()
