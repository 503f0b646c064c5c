"""
issue-loop — task-graph document store

File: src/issue_loop/persistence/task_graph_store.py
Last updated: 2026-10-17

Purpose
- Load, backfill and atomically save the task-graph document.

What should be included in this file
- ``TaskGraphStore`` with ``load``/``backfill_defaults``/``save``/``load_and_backfill``.
- Canonical serialization (2-space indent, UTF-8, trailing newline).

Functional requirements
- Backfill is idempotent and never alters present fields.
- ``save`` is the only write path and goes through ``utils.fs.atomic_write``.
- Any malformed document surfaces as ``CorruptStateError``.
"""

from __future__ import annotations

import json
from pathlib import Path

from issue_loop.domain.identity import generate_task_uid
from issue_loop.domain.models import TaskGraphDocument
from issue_loop.errors import CorruptStateError
from issue_loop.utils.fs import atomic_write, ensure_parent_dir


def serialize_document(document: TaskGraphDocument) -> str:
    """Return the canonical on-disk text for ``document``."""

    return json.dumps(document.to_dict(), indent=2, ensure_ascii=False) + "\n"


def backfill_defaults(document: TaskGraphDocument) -> bool:
    """Fill keys a legacy document lacks. Returns ``True`` when anything changed."""

    changed = bool(document.absent_keys)
    document.absent_keys.clear()

    for position, task in enumerate(document.tasks):
        if task.absent_keys:
            changed = True
            task.absent_keys.clear()
        if not task.uid:
            task.uid = generate_task_uid(
                document.work_unit,
                task.title,
                task.discovered_from,
                position + 1,
            )
            changed = True
    return changed


class TaskGraphStore:
    """File-backed store for one work unit's task graph."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> TaskGraphDocument:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CorruptStateError("task-graph document not found", path=str(self._path)) from exc
        except OSError as exc:
            raise CorruptStateError(
                f"unable to read task-graph document ({exc})", path=str(self._path)
            ) from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptStateError(
                f"task-graph document is not valid JSON (line {exc.lineno}, column {exc.colno})",
                path=str(self._path),
            ) from exc

        if not isinstance(payload, dict):
            raise CorruptStateError(
                f"task-graph document root must be an object, got {type(payload).__name__}",
                path=str(self._path),
            )

        try:
            return TaskGraphDocument.from_dict(payload)
        except ValueError as exc:
            raise CorruptStateError(
                f"invalid task-graph document ({exc})", path=str(self._path)
            ) from exc

    def backfill_defaults(self, document: TaskGraphDocument) -> bool:
        return backfill_defaults(document)

    def save(self, document: TaskGraphDocument) -> None:
        ensure_parent_dir(self._path)
        atomic_write(self._path, serialize_document(document))

    def load_and_backfill(self) -> TaskGraphDocument:
        document = self.load()
        if backfill_defaults(document):
            self.save(document)
        return document


__all__ = ["TaskGraphStore", "backfill_defaults", "serialize_document"]
