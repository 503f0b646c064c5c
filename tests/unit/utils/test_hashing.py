"""
issue-loop — unit tests for hashing helpers

File: tests/unit/utils/test_hashing.py
Last updated: 2026-10-17
"""

from __future__ import annotations

import hashlib

import pytest
from hypothesis import given
from hypothesis import strategies as st

from issue_loop.utils.hashing import canonical_json, sha256_json, sha256_text, short_hash

_json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=8),
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(st.text(max_size=5), children, max_size=3),
    max_leaves=10,
)


def test_sha256_text_matches_hashlib() -> None:
    assert sha256_text("issue") == hashlib.sha256(b"issue").hexdigest()


def test_canonical_json_is_compact_and_sorted() -> None:
    assert canonical_json({"b": 1, "a": ["é", None]}) == '{"a":["é",null],"b":1}'


@given(st.dictionaries(st.text(max_size=5), _json_values, max_size=5))
def test_sha256_json_ignores_key_order(payload: dict[str, object]) -> None:
    reordered = dict(reversed(list(payload.items())))

    assert sha256_json(payload) == sha256_json(reordered)


def test_short_hash_length() -> None:
    assert len(short_hash("x", 8)) == 8
    with pytest.raises(ValueError):
        short_hash("x", 0)
