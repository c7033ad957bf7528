# ABOUTME: Tests reduction of attempt logs to one record per student item.
# ABOUTME: Covers max-attempt selection, tie-breaking, and derived time spent.

import math

import pandas as pd

from src.chapter_panel.dedup import compute_time_spent, deduplicate_attempts, normalize_completion
from src.common.schemas import ITEM_KEY, AttemptRecord


def _attempt(item: str, attempt: int, earned: float, submitted="2024-01-01T00:10:00", started="2024-01-01T00:00:00", **kw):
    return AttemptRecord(
        book_id=kw.get("book_id", "B1"),
        release_id="R1",
        institution_id="I1",
        class_id=kw.get("class_id", "C1"),
        student_id=kw.get("student_id", "S1"),
        chapter=kw.get("chapter", 1),
        item_id=item,
        attempt=attempt,
        submitted_at=submitted,
        started_at=started,
        completed=kw.get("completed", True),
        points_possible=1.0,
        points_earned=earned,
    )


def test_keeps_latest_attempt_per_item():
    records = [
        _attempt("q1", 1, 0.0),
        _attempt("q1", 3, 1.0),
        _attempt("q1", 2, 0.0),
        _attempt("q2", 1, 1.0),
        _attempt("q1", 1, 0.0, student_id="S2"),
    ]

    reduced = deduplicate_attempts(records)

    assert len(reduced) == 3
    assert not reduced.duplicated(subset=ITEM_KEY).any()
    s1_q1 = reduced[(reduced["student_id"] == "S1") & (reduced["item_id"] == "q1")].iloc[0]
    assert s1_q1["attempt"] == 3
    assert s1_q1["correct"] == 1.0


def test_max_attempt_matches_group_maximum(synthetic_attempts):
    reduced = deduplicate_attempts(synthetic_attempts)

    expected = synthetic_attempts.groupby(ITEM_KEY)["attempt"].max().rename("expected").reset_index()
    merged = reduced.merge(expected, on=ITEM_KEY, how="outer", validate="one_to_one")
    assert len(merged) == len(expected)
    assert (merged["attempt"] == merged["expected"]).all()


def test_ties_resolve_to_first_row_in_input_order():
    df = pd.DataFrame(
        [
            _attempt("q1", 2, 0.0, submitted="2024-01-01T00:05:00").__dict__,
            _attempt("q1", 2, 1.0, submitted="2024-01-01T00:20:00").__dict__,
        ]
    )

    first = deduplicate_attempts(df)
    again = deduplicate_attempts(df)

    assert first.iloc[0]["correct"] == 0.0
    assert first.iloc[0]["time_spent"] == 5.0
    pd.testing.assert_frame_equal(first, again)


def test_input_frame_is_not_mutated(synthetic_attempts):
    snapshot = synthetic_attempts.copy()
    deduplicate_attempts(synthetic_attempts)
    pd.testing.assert_frame_equal(synthetic_attempts, snapshot)


def test_unparseable_and_negative_durations_become_missing():
    records = [
        _attempt("q1", 1, 1.0, submitted="not a timestamp"),
        _attempt("q2", 1, 1.0, submitted="2024-01-01T00:00:00", started="2024-01-01T00:30:00"),
        _attempt("q3", 1, 0.0, submitted=None),
        _attempt("q4", 1, 0.0),
    ]

    reduced = deduplicate_attempts(records).set_index("item_id")

    assert len(reduced) == 4
    assert math.isnan(reduced.loc["q1", "time_spent"])
    assert math.isnan(reduced.loc["q2", "time_spent"])
    assert math.isnan(reduced.loc["q3", "time_spent"])
    assert reduced.loc["q4", "time_spent"] == 10.0


def test_compute_time_spent_accepts_epoch_seconds():
    minutes = compute_time_spent(pd.Series([1_600_000_600.0]), pd.Series([1_600_000_000.0]))
    assert minutes.iloc[0] == 10.0


def test_normalize_completion_handles_mixed_encodings():
    values = pd.Series([True, "false", "Yes", 0, None, "maybe"], dtype="object")
    normalized = normalize_completion(values)

    assert str(normalized.dtype) == "boolean"
    assert normalized.tolist()[:4] == [True, False, True, False]
    assert normalized.isna().tolist()[4:] == [True, True]


def test_fractional_points_are_scaled_by_points_possible():
    df = pd.DataFrame([_attempt("q1", 1, 2.0).__dict__])
    df["points_possible"] = 4.0

    reduced = deduplicate_attempts(df)

    assert reduced.iloc[0]["correct"] == 0.5
