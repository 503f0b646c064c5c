"""
issue-loop — unit tests for git workspace queries

File: tests/unit/integration_plane/test_git.py
Last updated: 2026-10-17

Purpose
- Exercise ``GitWorkspace`` against throwaway local repositories.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import threading
from pathlib import Path

import pytest

from issue_loop.integration_plane.git import GitCommandError, GitWorkspace
from issue_loop.verification_plane.placeholder_scan import scan_placeholder_patterns

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def run_git(cwd: Path, *args: str) -> str:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    completed = subprocess.run(
        ["git", *args], cwd=cwd, env=env, text=True, capture_output=True, check=False
    )
    if completed.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed:\n{completed.stderr}")
    return completed.stdout


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Loop Tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "loop@example.invalid")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Loop Tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "loop@example.invalid")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    path = tmp_path / "repo"
    path.mkdir()
    run_git(path, "init", "-q")
    return path


def _commit(repo: Path, rel_path: str, content: str, message: str) -> str:
    target = repo / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    run_git(repo, "add", "--all")
    run_git(repo, "commit", "-q", "-m", message)
    return run_git(repo, "rev-parse", "HEAD").strip()


def test_unborn_branch_has_no_head(repo: Path) -> None:
    workspace = GitWorkspace(repo)

    assert workspace.is_repository()
    assert workspace.head() is None


def test_not_a_repository(tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    workspace = GitWorkspace(plain)

    assert not workspace.is_repository()
    with pytest.raises(GitCommandError):
        workspace.untracked_files()


def test_attempt_diff_covers_commits_edits_and_new_files(repo: Path) -> None:
    base = _commit(repo, "src/app.py", "value = 1\n", "initial")
    _commit(repo, "src/app.py", "value = 2\n", "agent commit")
    (repo / "src" / "util.py").write_text("# TODO later\n", encoding="utf-8")
    (repo / "README.md").write_text("notes\n", encoding="utf-8")
    workspace = GitWorkspace(repo)

    diff = workspace.attempt_diff(base)

    assert "+value = 2" in diff
    assert "+# TODO later" in diff
    assert workspace.changed_files(base) == ("README.md", "src/app.py", "src/util.py")
    scan = scan_placeholder_patterns(diff)
    assert [(item.path, item.line) for item in scan.findings] == [("src/util.py", 1)]


def test_head_tracks_new_commits(repo: Path) -> None:
    first = _commit(repo, "a.txt", "a\n", "one")
    workspace = GitWorkspace(repo)
    assert workspace.head() == first

    second = _commit(repo, "a.txt", "b\n", "two")

    assert workspace.head() == second
    assert workspace.attempt_diff(second) == ""


@pytest.mark.asyncio
async def test_async_queries_run_git_off_the_event_loop_thread(
    repo: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    base = _commit(repo, "a.txt", "a\n", "one")
    (repo / "b.txt").write_text("b\n", encoding="utf-8")
    workspace = GitWorkspace(repo)
    loop_thread = threading.get_ident()
    git_threads: list[int] = []
    real_run_git = GitWorkspace._run_git

    def recording_run_git(self: GitWorkspace, args: list[str], *, check: bool = True) -> object:
        git_threads.append(threading.get_ident())
        return real_run_git(self, args, check=check)

    monkeypatch.setattr(GitWorkspace, "_run_git", recording_run_git)

    assert await workspace.head_async() == base
    assert await workspace.changed_files_async(base) == ("b.txt",)
    assert "+b" in await workspace.attempt_diff_async(base)
    assert git_threads
    assert loop_thread not in git_threads
