"""
issue-loop — domain layer

File: src/issue_loop/domain/__init__.py
Last updated: 2026-10-17

Purpose
- Task-graph types, identity helpers and pure task policies.

Non-functional requirements
- No IO in this package.
"""

from issue_loop.domain.identity import (
    compute_task_fingerprint,
    generate_task_uid,
    new_review_id,
    new_run_id,
    new_wisp_id,
    normalize_text,
)
from issue_loop.domain.models import (
    CompactionState,
    DiscoveredTask,
    DiscoverySource,
    DocumentStatus,
    ExecutionRetryState,
    FindingStatus,
    ReviewState,
    StoredFinding,
    Task,
    TaskGraphDocument,
    VerificationCadence,
)
from issue_loop.domain.policies import (
    TaskSizingLimits,
    is_task_exhausted,
    task_requires_browser_verification,
    update_task_state_authoritative,
    validate_task_sizing,
)

__all__ = [
    "CompactionState",
    "DiscoveredTask",
    "DiscoverySource",
    "DocumentStatus",
    "ExecutionRetryState",
    "FindingStatus",
    "ReviewState",
    "StoredFinding",
    "Task",
    "TaskGraphDocument",
    "TaskSizingLimits",
    "VerificationCadence",
    "compute_task_fingerprint",
    "generate_task_uid",
    "is_task_exhausted",
    "new_review_id",
    "new_run_id",
    "new_wisp_id",
    "normalize_text",
    "task_requires_browser_verification",
    "update_task_state_authoritative",
    "validate_task_sizing",
]
