"""Knowledge plane: wisps, context bundles and pattern ingestion."""

from issue_loop.knowledge_plane.context import (
    ContextBundle,
    build_context_manifest,
    build_issue_context_bundle,
    compute_context_manifest_hash,
    ingest_task_patterns_into_document,
)
from issue_loop.knowledge_plane.wisps import (
    PromotionTarget,
    WispPromotion,
    collect_active_wisps,
    create_wisp,
    find_wisp,
    promote_wisp,
)

__all__ = [
    "ContextBundle",
    "PromotionTarget",
    "WispPromotion",
    "build_context_manifest",
    "build_issue_context_bundle",
    "collect_active_wisps",
    "compute_context_manifest_hash",
    "create_wisp",
    "find_wisp",
    "ingest_task_patterns_into_document",
    "promote_wisp",
]
