from issue_loop.utils.clock import format_utc, parse_utc, utc_now
from issue_loop.utils.fs import atomic_write, ensure_parent_dir
from issue_loop.utils.hashing import (
    canonical_json,
    sha256_bytes,
    sha256_json,
    sha256_text,
    short_hash,
)

__all__ = [
    "atomic_write",
    "canonical_json",
    "ensure_parent_dir",
    "format_utc",
    "parse_utc",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
    "short_hash",
    "utc_now",
]
