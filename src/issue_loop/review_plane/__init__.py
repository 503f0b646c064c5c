"""Review plane: asynchronous review lane, finding ingestion and the final gate."""

from issue_loop.review_plane.lane import (
    FinalReviewOutcome,
    ReviewLane,
    ReviewPolicy,
    approve_finding,
    ingest_review_findings,
    run_final_review,
)

__all__ = [
    "FinalReviewOutcome",
    "ReviewLane",
    "ReviewPolicy",
    "approve_finding",
    "ingest_review_findings",
    "run_final_review",
]
