"""Task-graph document persistence."""

from issue_loop.persistence.task_graph_store import (
    TaskGraphStore,
    backfill_defaults,
    serialize_document,
)

__all__ = ["TaskGraphStore", "backfill_defaults", "serialize_document"]
