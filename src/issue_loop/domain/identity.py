"""
issue-loop — deterministic task identity

File: src/issue_loop/domain/identity.py
Last updated: 2026-10-17

Purpose
- Compute stable task uids and discovery fingerprints.
- Mint random ids for wisps and review passes.

Functional requirements
- ``generate_task_uid`` has no timestamp input: identical inputs give identical uids
  across restarts.
- Fingerprints cover title, description, acceptance criteria and parent uid, not the
  title alone.
"""

from __future__ import annotations

import re
import secrets
from typing import TYPE_CHECKING

from issue_loop.constants import (
    REVIEW_ID_PREFIX,
    TASK_UID_PREFIX,
    UID_HASH_LENGTH,
    WISP_ID_PREFIX,
)
from issue_loop.utils.hashing import short_hash

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

_WHITESPACE_RUN = re.compile(r"\s+")
_NULL_PARENT = "null"


def normalize_text(text: str) -> str:
    """Lowercase, trim and collapse internal whitespace runs to one space."""

    return _WHITESPACE_RUN.sub(" ", text.lower()).strip()


def generate_task_uid(
    work_unit: int | str,
    title: str,
    discovered_from: str | None,
    ordinal: int,
) -> str:
    """Return ``tsk_`` + 12 hex chars of ``sha256(workUnit|title|parent|ordinal)``."""

    if ordinal < 1:
        raise ValueError("ordinal must be >= 1")
    parent = discovered_from if discovered_from else _NULL_PARENT
    seed = f"{work_unit}|{normalize_text(title)}|{parent}|{ordinal}"
    return TASK_UID_PREFIX + short_hash(seed, UID_HASH_LENGTH)


def compute_task_fingerprint(
    title: str,
    description: str,
    acceptance_criteria: Iterable[str],
    parent_uid: str | None,
) -> str:
    """Return the 12-char dedup fingerprint for a discovered task."""

    criteria = normalize_text(",".join(acceptance_criteria))
    parent = parent_uid if parent_uid else _NULL_PARENT
    seed = f"{normalize_text(title)}|{normalize_text(description)}|{criteria}|{parent}"
    return short_hash(seed, UID_HASH_LENGTH)


def new_wisp_id() -> str:
    return WISP_ID_PREFIX + secrets.token_hex(6)


def new_review_id() -> str:
    return REVIEW_ID_PREFIX + secrets.token_hex(6)


def new_run_id(now: datetime) -> str:
    """Run ids sort by start time: ``run-20261017T120000Z-1a2b3c``."""

    return f"run-{now.strftime('%Y%m%dT%H%M%SZ')}-{secrets.token_hex(3)}"


__all__ = [
    "compute_task_fingerprint",
    "generate_task_uid",
    "new_review_id",
    "new_run_id",
    "new_wisp_id",
    "normalize_text",
]
