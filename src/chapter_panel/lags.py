# ABOUTME: Derives previous-chapter score features from ordered chapter summaries.
# ABOUTME: Flags first observed chapters so zero-filled lags stay distinguishable.

from __future__ import annotations

import numpy as np
import pandas as pd

from src.common.schemas import STUDENT_KEY

from .aggregation import assert_chapter_order

FIRST_CHAPTER_FILL = 0.0


def add_lag_features(summary: pd.DataFrame) -> pd.DataFrame:
    """
    Attach score_prev_chapter, prev_missing and chapter_gap to chapter summaries.

    The lag reads the immediately preceding row of the same student, which is
    the nearest chapter the student has data for. A student with chapters 1 and
    3 gets chapter 1's score as the lag on chapter 3; chapter_gap records the
    2-chapter jump. The first row of each student gets a lag of 0 and
    prev_missing=True.
    """

    assert_chapter_order(summary)
    df = summary.copy()
    if df.empty:
        for col in ("score_prev_chapter", "prev_missing", "chapter_gap"):
            df[col] = pd.Series(dtype="float64" if col != "prev_missing" else "bool")
        return df

    by_student = df.groupby(STUDENT_KEY, sort=False, dropna=False)
    is_first = by_student.cumcount() == 0

    previous_score = by_student["score"].shift(1)
    previous_chapter = by_student["chapter"].shift(1)

    df["prev_missing"] = is_first.to_numpy()
    # A preceding row with an undefined score keeps NaN; only true first rows are filled.
    df["score_prev_chapter"] = np.where(is_first, FIRST_CHAPTER_FILL, previous_score).astype("float64")
    df["chapter_gap"] = (pd.to_numeric(df["chapter"]) - pd.to_numeric(previous_chapter)).astype("float64")

    gaps = int((df["chapter_gap"] > 1).sum())
    if gaps:
        print(f"[panel] {gaps} chapter rows lag a non-adjacent previous chapter")
    return df
