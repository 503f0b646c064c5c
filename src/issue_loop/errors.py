"""
issue-loop — error taxonomy

File: src/issue_loop/errors.py
Last updated: 2026-10-17

Purpose
- One typed exception per terminal or recoverable loop condition.

Functional requirements
- ``LogWriteFailure`` is the only error recovered locally (retried next cycle).
- Every other error surfaces as an explicit terminal state in the task-graph
  document or as a process exit code.
"""

from __future__ import annotations


class IssueLoopError(RuntimeError):
    """Base class for all loop errors."""


class CorruptStateError(IssueLoopError):
    """Raised when the task-graph document is missing or not valid structured data."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(message if path is None else f"{message}: {path}")


class VerificationFailure(IssueLoopError):
    """Authoritative verification did not pass. Retryable within the attempt budget."""

    def __init__(self, task_id: str, failed_commands: tuple[str, ...]) -> None:
        self.task_id = task_id
        self.failed_commands = failed_commands
        rendered = ", ".join(failed_commands) if failed_commands else "(none)"
        super().__init__(f"verification failed for {task_id}: {rendered}")


class GuardViolation(IssueLoopError):
    """One or more guards failed while ``gateMode`` is ``enforce``."""

    def __init__(self, task_id: str, reasons: tuple[str, ...]) -> None:
        self.task_id = task_id
        self.reasons = reasons
        super().__init__(f"guard violation for {task_id}: {'; '.join(reasons)}")


class AgentInvocationFailure(IssueLoopError):
    """The execution agent exited non-zero with empty output. Fatal for the loop."""

    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class LogWriteFailure(IssueLoopError):
    """A post or patch to the remote log failed. Best effort, retried next cycle."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"remote log {operation} failed: {detail}")


class AttemptBudgetExhausted(IssueLoopError):
    """A task used every allowed attempt and needs external input."""

    def __init__(self, task_id: str, attempts: int) -> None:
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(f"task {task_id} exhausted its attempt budget ({attempts} attempts)")


class StalePlanDetected(IssueLoopError):
    """Escalation: repeated failures require an external re-planning step."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class LockContentionError(IssueLoopError):
    """Another loop instance already holds the process lock."""

    def __init__(self, lock_path: str) -> None:
        self.lock_path = lock_path
        super().__init__(f"another issue-loop instance holds {lock_path}")


__all__ = [
    "AgentInvocationFailure",
    "AttemptBudgetExhausted",
    "CorruptStateError",
    "GuardViolation",
    "IssueLoopError",
    "LockContentionError",
    "LogWriteFailure",
    "StalePlanDetected",
    "VerificationFailure",
]
