"""
issue-loop — hashing utilities

File: src/issue_loop/utils/hashing.py
Last updated: 2026-10-17

Purpose
- Deterministic SHA-256 helpers for task identity, fingerprints and context manifests.

Functional requirements
- Canonical JSON uses sorted keys and compact separators so equal payloads hash equally.
"""

from __future__ import annotations

import hashlib
import json

__all__ = [
    "canonical_json",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
    "short_hash",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def short_hash(text: str, length: int = 12) -> str:
    """Return the first ``length`` hex characters of ``sha256_text(text)``."""

    if length <= 0:
        raise ValueError("length must be > 0")
    return sha256_text(text)[:length]


def canonical_json(payload: object) -> str:
    """Serialize ``payload`` deterministically."""

    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_json(payload: object) -> str:
    """Return SHA-256 hex digest of the canonical JSON form of ``payload``."""

    return sha256_text(canonical_json(payload))
