"""
issue-loop — discovered-task enqueueing

File: src/issue_loop/control_plane/discovery.py
Last updated: 2026-10-17

Purpose
- Append follow-up tasks reported by task logs, review findings and promoted wisps.

Functional requirements
- Deduplicate by content fingerprint (title, description, criteria, parent uid)
  against earlier children of the same parent and within the batch.
- New ids continue the ``US-###`` sequence; uids use the ordinal within the parent.
- Default ``priority = parent + 1`` and ``dependsOn = [parent_id]``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.constants import TASK_ID_PREFIX
from issue_loop.domain.identity import compute_task_fingerprint, generate_task_uid
from issue_loop.domain.models import DiscoveredTask, DiscoverySource, Task

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from issue_loop.domain.models import TaskGraphDocument


def format_task_id(number: int) -> str:
    return f"{TASK_ID_PREFIX}{number:03d}"


def enqueue_discovered_tasks(
    document: TaskGraphDocument,
    *,
    parent_id: str,
    parent_uid: str | None,
    parent_priority: int,
    candidates: Iterable[DiscoveredTask | Mapping[str, object]],
    work_unit: int | str,
    discovery_source: DiscoverySource | str = DiscoverySource.DISCOVERED,
    logger: Any | None = None,
) -> list[Task]:
    """Append non-duplicate candidates to ``document`` and return the new tasks.

    The caller persists the document; nothing here touches disk.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    source = DiscoverySource(discovery_source).value
    children = document.children_of(parent_uid)
    seen = {
        compute_task_fingerprint(
            child.title, child.description, child.acceptance_criteria, parent_uid
        )
        for child in children
    }
    ordinal = len(children)
    next_number = document.max_task_number()

    added: list[Task] = []
    skipped = 0
    for index, raw in enumerate(candidates):
        candidate = (
            raw
            if isinstance(raw, DiscoveredTask)
            else DiscoveredTask.from_dict(raw, path=f"discovered[{index}]")
        )
        fingerprint = compute_task_fingerprint(
            candidate.title,
            candidate.description,
            candidate.acceptance_criteria,
            parent_uid,
        )
        if fingerprint in seen:
            skipped += 1
            continue
        seen.add(fingerprint)

        ordinal += 1
        next_number += 1
        task = Task(
            id=format_task_id(next_number),
            uid=generate_task_uid(work_unit, candidate.title, parent_uid, ordinal),
            title=candidate.title,
            description=candidate.description,
            priority=parent_priority + 1,
            depends_on=list(candidate.depends_on) or [parent_id],
            acceptance_criteria=list(candidate.acceptance_criteria),
            verify_commands=list(candidate.verify_commands),
            passes=False,
            attempts=0,
            last_attempt=None,
            discovered_from=parent_uid,
            discovery_source=source,
            extra={"phase": None, "files": []},
        )
        document.tasks.append(task)
        added.append(task)

    if added or skipped:
        log.info(
            "discovered_tasks_enqueued",
            parent_id=parent_id,
            source=source,
            added=[task.id for task in added],
            skipped_duplicates=skipped,
        )
    return added


__all__ = ["enqueue_discovered_tasks", "format_task_id"]
