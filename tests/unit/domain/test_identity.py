"""
issue-loop — unit tests for task identity helpers

File: tests/unit/domain/test_identity.py
Last updated: 2026-10-17

Purpose
- Pin the uid and fingerprint derivations that dedup and parent links rely on.

What this test file should cover
- uid determinism, prefix and length.
- Fingerprint normalisation (case and whitespace) and sensitivity to each input field.
"""

from __future__ import annotations

import string
from datetime import UTC, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from issue_loop.domain.identity import (
    compute_task_fingerprint,
    generate_task_uid,
    new_review_id,
    new_run_id,
    new_wisp_id,
    normalize_text,
)

_ascii = string.ascii_letters + string.digits + " -_"
_titles = st.text(alphabet=_ascii, min_size=1, max_size=60)
_work_units = st.one_of(st.integers(min_value=1, max_value=10_000), st.text(min_size=1))


@given(work_unit=_work_units, title=_titles, ordinal=st.integers(min_value=1, max_value=500))
def test_uid_is_deterministic(work_unit: int | str, title: str, ordinal: int) -> None:
    first = generate_task_uid(work_unit, title, None, ordinal)
    second = generate_task_uid(work_unit, title, None, ordinal)

    assert first == second
    assert first.startswith("tsk_")
    assert len(first) == len("tsk_") + 12


@given(title=_titles)
def test_uid_ignores_case_and_whitespace_in_title(title: str) -> None:
    noisy = "  " + title.upper().replace(" ", "   ") + "\t"

    assert generate_task_uid(7, title, None, 1) == generate_task_uid(7, noisy, None, 1)


def test_uid_changes_with_parent_and_ordinal() -> None:
    base = generate_task_uid(42, "Add login", None, 1)

    assert generate_task_uid(42, "Add login", "tsk_aaaaaaaaaaaa", 1) != base
    assert generate_task_uid(42, "Add login", None, 2) != base
    assert generate_task_uid(43, "Add login", None, 1) != base


def test_uid_treats_empty_parent_like_missing_parent() -> None:
    assert generate_task_uid(1, "x", "", 3) == generate_task_uid(1, "x", None, 3)


def test_uid_rejects_non_positive_ordinal() -> None:
    with pytest.raises(ValueError, match="ordinal"):
        generate_task_uid(1, "x", None, 0)


@given(
    title=_titles,
    description=st.text(alphabet=_ascii, max_size=80),
    criteria=st.lists(st.text(alphabet=_ascii, max_size=20), max_size=4),
)
def test_fingerprint_normalises_case_and_whitespace(
    title: str, description: str, criteria: list[str]
) -> None:
    original = compute_task_fingerprint(title, description, criteria, "tsk_parent00000")
    shouted = compute_task_fingerprint(
        f" {title.upper()} ",
        description.upper() + "  ",
        [item.upper() for item in criteria],
        "tsk_parent00000",
    )

    assert original == shouted
    assert len(original) == 12


def test_fingerprint_differs_when_description_differs() -> None:
    first = compute_task_fingerprint("Fix cache", "stale reads", ["works"], None)
    second = compute_task_fingerprint("Fix cache", "stale writes", ["works"], None)

    assert first != second


def test_fingerprint_depends_on_parent() -> None:
    assert compute_task_fingerprint("a", "b", [], None) != compute_task_fingerprint(
        "a", "b", [], "tsk_000000000001"
    )


def test_normalize_text_collapses_runs() -> None:
    assert normalize_text("  Hello \n\t  World  ") == "hello world"


def test_random_ids_carry_prefixes() -> None:
    assert new_wisp_id().startswith("wsp_")
    assert new_review_id().startswith("rvw_")
    assert new_wisp_id() != new_wisp_id()


def test_run_id_sorts_by_start_time() -> None:
    earlier = new_run_id(datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC))
    later = new_run_id(datetime(2026, 1, 2, 3, 4, 6, tzinfo=UTC))

    assert earlier.startswith("run-20260102T030405Z-")
    assert earlier < later
