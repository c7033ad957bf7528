# ABOUTME: Aggregates reduced item records into per (student, chapter) summaries.
# ABOUTME: Guarantees chapter ordering within each student for downstream lag features.

from __future__ import annotations

from typing import Iterable, Union

import pandas as pd

from src.common.schemas import CHAPTER_KEY, STUDENT_KEY, ReducedItemRecord, ensure_frame, require_columns

from .dedup import as_float, normalize_completion

SUMMARY_COLUMNS = CHAPTER_KEY + ["score", "completion_rate", "time_spent", "attempts", "n_items"]


def aggregate_chapters(reduced: Union[pd.DataFrame, Iterable[ReducedItemRecord]]) -> pd.DataFrame:
    """
    Compute chapter-level means per student.

    Steps:
    - Cast correctness, completion, time spent and attempt index to floats.
    - Average each metric per chapter key, skipping missing values.
    - Sort by chapter number within each student key.

    A metric with no valid observation in a group stays NaN; the group is kept.
    """

    df = ensure_frame(reduced, ReducedItemRecord)
    require_columns(df, CHAPTER_KEY + ["correct", "completed", "time_spent", "attempt"], "Reduced item table")
    if df.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    metrics = df[CHAPTER_KEY].copy()
    metrics["chapter"] = as_float(df["chapter"])
    metrics["score"] = as_float(df["correct"])
    metrics["completion_rate"] = as_float(normalize_completion(df["completed"]).astype("Float64"))
    metrics["time_spent"] = as_float(df["time_spent"])
    metrics["attempts"] = as_float(df["attempt"])

    grouped = (
        metrics.groupby(CHAPTER_KEY, sort=False, dropna=False)
        .agg(
            score=("score", "mean"),
            completion_rate=("completion_rate", "mean"),
            time_spent=("time_spent", "mean"),
            attempts=("attempts", "mean"),
            n_items=("score", "size"),
        )
        .reset_index()
    )

    summary = grouped.sort_values(CHAPTER_KEY, kind="mergesort").reset_index(drop=True)
    assert_chapter_order(summary)
    return summary[SUMMARY_COLUMNS]


def assert_chapter_order(summary: pd.DataFrame) -> None:
    """
    Raise ValueError unless rows are grouped by student and chapter numbers ascend.

    Lag features read the immediately preceding row, so this ordering is a hard
    precondition rather than an assumption.
    """

    require_columns(summary, CHAPTER_KEY, "Chapter summary")
    if summary.empty:
        return

    if summary.duplicated(subset=CHAPTER_KEY).any():
        raise ValueError("Chapter summary contains duplicate (student, chapter) rows.")

    student_codes = summary.groupby(STUDENT_KEY, sort=False, dropna=False).ngroup()
    # Every student must occupy one contiguous block of rows.
    changes = student_codes.ne(student_codes.shift()).sum()
    if changes != student_codes.nunique():
        raise ValueError("Chapter summary rows for a student are not contiguous.")

    chapters = pd.to_numeric(summary["chapter"], errors="coerce")
    ascending = chapters.groupby(student_codes, sort=False).apply(lambda s: s.is_monotonic_increasing)
    if not ascending.all():
        raise ValueError("Chapter summary rows are not sorted by chapter within each student.")
