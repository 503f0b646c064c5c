"""
issue-loop — append-only comment thread adapters

File: src/issue_loop/event_log/thread.py
Last updated: 2026-10-17

Purpose
- Abstract the remote log (one GitHub issue per work unit) behind ``CommentThread``.

What should be included in this file
- ``Comment`` record and the async ``CommentThread`` protocol.
- ``GhIssueThread`` backed by the ``gh`` CLI.
- ``InMemoryThread`` for tests and dry runs.

Functional requirements
- Comments are returned oldest first.
- Post/patch/label failures raise ``LogWriteFailure``; callers decide whether to recover.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from issue_loop.errors import LogWriteFailure
from issue_loop.utils.process import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)

_COMMENT_PROJECTION = ".[] | {id: .id, body: .body, url: .html_url, createdAt: .created_at}"


@dataclass(frozen=True, slots=True)
class Comment:
    id: int
    body: str
    url: str = ""
    created_at: str = ""


@runtime_checkable
class CommentThread(Protocol):
    """Append-only remote log for one work unit."""

    async def list_comments(self) -> list[Comment]: ...

    async def post(self, body: str) -> Comment: ...

    async def patch(self, comment_id: int, body: str) -> Comment: ...

    async def add_label(self, label: str) -> None: ...


@dataclass(slots=True)
class InMemoryThread:
    """Process-local thread. ``fail_posts``/``fail_patches`` simulate remote outages."""

    comments: list[Comment] = field(default_factory=list)
    labels: set[str] = field(default_factory=set)
    fail_posts: bool = False
    fail_patches: bool = False
    fail_labels: bool = False
    _next_id: int = 1

    def __post_init__(self) -> None:
        if self.comments:
            self._next_id = max(comment.id for comment in self.comments) + 1

    async def list_comments(self) -> list[Comment]:
        return list(self.comments)

    async def post(self, body: str) -> Comment:
        if self.fail_posts:
            raise LogWriteFailure("post", "simulated outage")
        comment = Comment(
            id=self._next_id,
            body=body,
            url=f"memory://comments/{self._next_id}",
        )
        self._next_id += 1
        self.comments.append(comment)
        return comment

    async def patch(self, comment_id: int, body: str) -> Comment:
        if self.fail_patches:
            raise LogWriteFailure("patch", "simulated outage")
        for index, existing in enumerate(self.comments):
            if existing.id == comment_id:
                updated = Comment(
                    id=existing.id,
                    body=body,
                    url=existing.url,
                    created_at=existing.created_at,
                )
                self.comments[index] = updated
                return updated
        raise LogWriteFailure("patch", f"comment {comment_id} not found")

    async def add_label(self, label: str) -> None:
        if self.fail_labels:
            raise LogWriteFailure("label", "simulated outage")
        self.labels.add(label)

    def add(self, body: str) -> Comment:
        """Synchronously append a comment, as if another actor posted it."""

        comment = Comment(id=self._next_id, body=body, url=f"memory://comments/{self._next_id}")
        self._next_id += 1
        self.comments.append(comment)
        return comment


class GhIssueThread:
    """GitHub issue comments through the ``gh`` CLI."""

    def __init__(
        self,
        repo: str,
        issue_number: int,
        *,
        gh_binary: str = "gh",
        timeout_seconds: float = 60.0,
        cwd: str | None = None,
        executor: CommandExecutor | None = None,
        logger: Any | None = None,
    ) -> None:
        if "/" not in repo:
            raise ValueError(f"repo must be 'owner/name', got {repo!r}")
        if issue_number <= 0:
            raise ValueError("issue_number must be > 0")
        self._repo = repo
        self._issue_number = issue_number
        self._gh = gh_binary
        self._timeout = timeout_seconds
        self._cwd = cwd
        self._executor = executor if executor is not None else LocalSubprocessExecutor()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def repo(self) -> str:
        return self._repo

    @property
    def issue_number(self) -> int:
        return self._issue_number

    @classmethod
    async def resolve_repo(
        cls,
        *,
        gh_binary: str = "gh",
        cwd: str | None = None,
        executor: CommandExecutor | None = None,
    ) -> str:
        """Return ``owner/name`` of the repository checked out at ``cwd``."""

        runner = executor if executor is not None else LocalSubprocessExecutor()
        result = await runner.run(
            CommandSpec(
                argv=(
                    gh_binary,
                    "repo",
                    "view",
                    "--json",
                    "nameWithOwner",
                    "--jq",
                    ".nameWithOwner",
                ),
                cwd=cwd,
                timeout_seconds=30.0,
            )
        )
        repo = result.stdout.strip()
        if not result.is_success() or not repo:
            raise LogWriteFailure("resolve", _failure_detail(result))
        return repo

    async def list_comments(self) -> list[Comment]:
        result = await self._gh_call(
            "list",
            "api",
            f"repos/{self._repo}/issues/{self._issue_number}/comments",
            "--paginate",
            "--jq",
            _COMMENT_PROJECTION,
        )
        comments: list[Comment] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                raise LogWriteFailure("list", f"unparseable gh output: {exc}") from exc
            comments.append(_comment_from_payload(payload))
        return comments

    async def post(self, body: str) -> Comment:
        result = await self._gh_call(
            "post",
            "api",
            "-X",
            "POST",
            f"repos/{self._repo}/issues/{self._issue_number}/comments",
            "-f",
            f"body={body}",
        )
        comment = _parse_single_comment(result, "post")
        self._logger.info("remote_log_posted", comment_id=comment.id, issue=self._issue_number)
        return comment

    async def patch(self, comment_id: int, body: str) -> Comment:
        result = await self._gh_call(
            "patch",
            "api",
            "-X",
            "PATCH",
            f"repos/{self._repo}/issues/comments/{comment_id}",
            "-f",
            f"body={body}",
        )
        comment = _parse_single_comment(result, "patch")
        self._logger.info("remote_log_patched", comment_id=comment_id, issue=self._issue_number)
        return comment

    async def add_label(self, label: str) -> None:
        await self._gh_call(
            "label",
            "issue",
            "edit",
            str(self._issue_number),
            "--repo",
            self._repo,
            "--add-label",
            label,
        )

    async def _gh_call(self, operation: str, *args: str) -> CommandResult:
        result = await self._executor.run(
            CommandSpec(argv=(self._gh, *args), cwd=self._cwd, timeout_seconds=self._timeout)
        )
        if not result.is_success():
            detail = _failure_detail(result)
            self._logger.warning(
                "remote_log_call_failed",
                operation=operation,
                issue=self._issue_number,
                detail=detail,
            )
            raise LogWriteFailure(operation, detail)
        return result


def _parse_single_comment(result: CommandResult, operation: str) -> Comment:
    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise LogWriteFailure(operation, f"unparseable gh output: {exc}") from exc
    if isinstance(payload, dict) and "html_url" in payload and "url" not in payload:
        payload = {**payload, "url": payload["html_url"]}
    return _comment_from_payload(payload)


def _comment_from_payload(payload: object) -> Comment:
    if not isinstance(payload, dict):
        raise LogWriteFailure("list", f"expected comment object, got {type(payload).__name__}")
    comment_id = payload.get("id")
    body = payload.get("body")
    if isinstance(comment_id, bool) or not isinstance(comment_id, int):
        raise LogWriteFailure("list", "comment without numeric id")
    url = payload.get("url") or payload.get("html_url") or ""
    created = payload.get("createdAt") or payload.get("created_at") or ""
    return Comment(
        id=comment_id,
        body=body if isinstance(body, str) else "",
        url=str(url),
        created_at=str(created),
    )


def _failure_detail(result: CommandResult) -> str:
    if result.error:
        return result.error
    stderr = result.stderr.strip()
    return stderr.splitlines()[-1] if stderr else f"exit code {result.exit_code}"


__all__ = ["Comment", "CommentThread", "GhIssueThread", "InMemoryThread"]
