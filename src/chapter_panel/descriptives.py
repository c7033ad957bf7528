# ABOUTME: Summarizes the chapter panel for reporting before model fitting.
# ABOUTME: Produces per-chapter descriptives consumed only by the CLI report.

import pandas as pd

DESCRIPTIVE_COLUMNS = [
    "chapter",
    "students",
    "mean_score",
    "mean_completion_rate",
    "median_time_spent",
    "mean_attempts",
    "first_chapter_rows",
    "gap_rows",
]


def describe_panel(chapter_lags: pd.DataFrame) -> pd.DataFrame:
    """Per-chapter student counts and metric means from lagged chapter summaries."""

    if chapter_lags is None or chapter_lags.empty:
        return pd.DataFrame(columns=DESCRIPTIVE_COLUMNS)

    df = chapter_lags.copy()
    df["prev_missing"] = df["prev_missing"].astype(bool)
    df["is_gap"] = df["chapter_gap"].fillna(0) > 1

    described = (
        df.groupby("chapter", sort=True)
        .agg(
            students=("student_id", "nunique"),
            mean_score=("score", "mean"),
            mean_completion_rate=("completion_rate", "mean"),
            median_time_spent=("time_spent", "median"),
            mean_attempts=("attempts", "mean"),
            first_chapter_rows=("prev_missing", "sum"),
            gap_rows=("is_gap", "sum"),
        )
        .reset_index()
    )
    described["first_chapter_rows"] = described["first_chapter_rows"].astype("int64")
    described["gap_rows"] = described["gap_rows"].astype("int64")
    return described[DESCRIPTIVE_COLUMNS]
