"""
issue-loop — git workspace queries

File: src/issue_loop/integration_plane/git.py
Last updated: 2026-10-17

Purpose
- Read-only git helpers the loop needs around an attempt: head commit, the diff an
  attempt introduced, and changed paths for review prompts.

Functional requirements
- Never prompts for credentials (``GIT_TERMINAL_PROMPT=0``).
- ``attempt_diff`` covers committed and uncommitted tracked changes since ``base_ref``
  plus new untracked files, so the placeholder scan sees everything the agent added.
- Coroutines use the ``*_async`` variants, which run git in a worker thread.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class GitCommandError(RuntimeError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class GitResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class GitWorkspace:
    """Thin wrapper around the git CLI for one working tree."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self._env_overrides = dict(env_overrides or {})

    def is_repository(self) -> bool:
        return self._run_git(["rev-parse", "--git-dir"], check=False).returncode == 0

    def head(self) -> str | None:
        """Return the HEAD commit SHA, or ``None`` for an unborn branch."""

        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def current_branch(self) -> str:
        return self._run_git(["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()

    def attempt_diff(self, base_ref: str | None) -> str:
        """Return a unified diff of everything changed since ``base_ref``."""

        tracked_args = ["diff", "--no-color", "--no-ext-diff"]
        if base_ref:
            tracked_args.append(base_ref)
        chunks = [self._run_git(tracked_args).stdout]
        for path in self.untracked_files():
            result = self._run_git(
                ["diff", "--no-color", "--no-index", "--", os.devnull, path],
                check=False,
            )
            if result.returncode in (0, 1):
                chunks.append(result.stdout)
        normalized = [chunk if chunk.endswith("\n") else chunk + "\n" for chunk in chunks if chunk]
        return "".join(normalized)

    def untracked_files(self) -> tuple[str, ...]:
        output = self._run_git(["ls-files", "--others", "--exclude-standard"]).stdout
        return tuple(line for line in output.splitlines() if line.strip())

    def changed_files(self, base_ref: str | None) -> tuple[str, ...]:
        args = ["diff", "--name-only"]
        if base_ref:
            args.append(base_ref)
        tracked = [line for line in self._run_git(args).stdout.splitlines() if line.strip()]
        return tuple(sorted({*tracked, *self.untracked_files()}))

    async def head_async(self) -> str | None:
        return await asyncio.to_thread(self.head)

    async def attempt_diff_async(self, base_ref: str | None) -> str:
        return await asyncio.to_thread(self.attempt_diff, base_ref)

    async def changed_files_async(self, base_ref: str | None) -> tuple[str, ...]:
        return await asyncio.to_thread(self.changed_files, base_ref)

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> GitResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)

        completed = subprocess.run(
            command,
            cwd=self.repo_path,
            env=env,
            text=True,
            capture_output=True,
            check=False,
        )
        result = GitResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


__all__ = ["GitCommandError", "GitResult", "GitWorkspace"]
