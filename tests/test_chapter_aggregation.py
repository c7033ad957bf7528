# ABOUTME: Tests chapter-level aggregation of reduced item records.
# ABOUTME: Ensures means skip missing values and chapter ordering is enforced.

import math

import pandas as pd
import pytest

from src.chapter_panel.aggregation import aggregate_chapters, assert_chapter_order
from src.chapter_panel.dedup import deduplicate_attempts
from src.common.schemas import CHAPTER_KEY, STUDENT_KEY, AttemptRecord, ReducedItemRecord


def _reduced(student: str, chapter: int, item: str, correct, time_spent=5.0, completed=True, attempt=1):
    return ReducedItemRecord(
        book_id="B1",
        release_id="R1",
        institution_id="I1",
        class_id="C1",
        student_id=student,
        chapter=chapter,
        item_id=item,
        attempt=attempt,
        completed=completed,
        points_possible=1.0,
        points_earned=correct,
        correct=correct,
        time_spent=time_spent,
    )


def test_single_correct_attempt_scores_exactly_one():
    attempts = [
        AttemptRecord(
            book_id="B1",
            release_id="R1",
            institution_id="I1",
            class_id="C1",
            student_id="S1",
            chapter=1,
            item_id="q1",
            attempt=1,
            submitted_at="2024-01-01T00:03:00",
            started_at="2024-01-01T00:00:00",
            completed=True,
            points_possible=1.0,
            points_earned=1.0,
        )
    ]

    summary = aggregate_chapters(deduplicate_attempts(attempts))

    assert len(summary) == 1
    assert summary.iloc[0]["score"] == 1.0
    assert summary.iloc[0]["completion_rate"] == 1.0
    assert summary.iloc[0]["time_spent"] == 3.0
    assert summary.iloc[0]["n_items"] == 1


def test_means_skip_missing_values_without_dropping_groups():
    records = [
        _reduced("S1", 1, "q1", 1.0, time_spent=None, completed=None, attempt=1),
        _reduced("S1", 1, "q2", 0.0, time_spent=None, completed=False, attempt=3),
        _reduced("S2", 1, "q1", None, time_spent=4.0),
    ]

    summary = aggregate_chapters(records).set_index("student_id")

    assert summary.loc["S1", "score"] == 0.5
    assert summary.loc["S1", "completion_rate"] == 0.0
    assert math.isnan(summary.loc["S1", "time_spent"])
    assert summary.loc["S1", "attempts"] == 2.0
    assert math.isnan(summary.loc["S2", "score"])
    assert summary.loc["S2", "time_spent"] == 4.0


def test_rows_sorted_by_chapter_within_student(synthetic_attempts):
    summary = aggregate_chapters(deduplicate_attempts(synthetic_attempts))

    assert not summary.duplicated(subset=CHAPTER_KEY).any()
    for _, chapters in summary.groupby(STUDENT_KEY, sort=False)["chapter"]:
        assert chapters.is_monotonic_increasing


def test_assert_chapter_order_rejects_unsorted_rows():
    summary = pd.DataFrame(
        {
            "book_id": ["B1", "B1"],
            "release_id": ["R1", "R1"],
            "institution_id": ["I1", "I1"],
            "class_id": ["C1", "C1"],
            "student_id": ["S1", "S1"],
            "chapter": [2, 1],
        }
    )
    with pytest.raises(ValueError, match="not sorted"):
        assert_chapter_order(summary)


def test_assert_chapter_order_rejects_interleaved_students():
    summary = pd.DataFrame(
        {
            "book_id": ["B1"] * 3,
            "release_id": ["R1"] * 3,
            "institution_id": ["I1"] * 3,
            "class_id": ["C1"] * 3,
            "student_id": ["S1", "S2", "S1"],
            "chapter": [1, 1, 2],
        }
    )
    with pytest.raises(ValueError, match="contiguous"):
        assert_chapter_order(summary)


def test_assert_chapter_order_compares_chapter_numbers():
    summary = pd.DataFrame(
        {
            "book_id": ["B1"] * 3,
            "release_id": ["R1"] * 3,
            "institution_id": ["I1"] * 3,
            "class_id": ["C1"] * 3,
            "student_id": ["S1"] * 3,
            "chapter": ["1", "10", "2"],
        }
    )
    with pytest.raises(ValueError, match="not sorted"):
        assert_chapter_order(summary)
