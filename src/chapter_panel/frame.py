# ABOUTME: Joins item records with chapter lag features into the model analysis table.
# ABOUTME: Applies per-model complete-case filtering and prepares held-out frames.

from __future__ import annotations

from typing import Dict, List, Sequence

import pandas as pd

from src.common.schemas import CHAPTER_KEY, GROUPING_COLUMNS, ITEM_KEY, require_columns

from .dedup import as_float

RESPONSE_COLUMN = "correct"
LAG_COLUMNS = ["score_prev_chapter", "prev_missing", "chapter_gap"]

# Fixed-effect predictor name -> analysis table column.
PREDICTOR_COLUMNS: Dict[str, str] = {
    "chapter": "chapter",
    "book": "book_id",
    "attempt": "attempt",
    "score_prev_chapter": "score_prev_chapter",
    "prev_missing": "prev_missing",
}
CATEGORICAL_PREDICTORS = {"book"}

FRAME_COLUMNS = ITEM_KEY + ["attempt", "completed", "time_spent", RESPONSE_COLUMN] + LAG_COLUMNS


def build_model_frame(reduced: pd.DataFrame, chapter_lags: pd.DataFrame) -> pd.DataFrame:
    """
    Enrich every reduced item row with its student/chapter lag features.

    Grouping columns become categoricals and numeric predictors floats. No rows
    are dropped here; missing values are resolved per model by model_rows().
    """

    require_columns(reduced, ITEM_KEY + ["attempt", "correct"], "Reduced item table")
    require_columns(chapter_lags, CHAPTER_KEY + ["score_prev_chapter", "prev_missing"], "Chapter lag table")

    lag_columns = [col for col in LAG_COLUMNS if col in chapter_lags.columns]
    frame = reduced.merge(
        chapter_lags[CHAPTER_KEY + lag_columns],
        on=CHAPTER_KEY,
        how="left",
        validate="many_to_one",
    )
    for col in LAG_COLUMNS:
        if col not in frame.columns:
            frame[col] = float("nan")
    for col in ("completed", "time_spent"):
        if col not in frame.columns:
            frame[col] = pd.NA

    frame = frame[FRAME_COLUMNS].copy()
    for col in ("chapter", "attempt", RESPONSE_COLUMN, "time_spent", "score_prev_chapter", "chapter_gap"):
        frame[col] = as_float(frame[col])
    frame["prev_missing"] = flag_to_float(frame["prev_missing"])
    for col in GROUPING_COLUMNS:
        frame[col] = frame[col].astype("category")
    return frame


def required_columns(predictors: Sequence[str]) -> List[str]:
    unknown = [name for name in predictors if name not in PREDICTOR_COLUMNS]
    if unknown:
        raise ValueError(f"Unknown predictors: {', '.join(unknown)}. Expected a subset of {sorted(PREDICTOR_COLUMNS)}.")
    columns = [RESPONSE_COLUMN, "class_id", "student_id"]
    columns += [PREDICTOR_COLUMNS[name] for name in predictors if PREDICTOR_COLUMNS[name] not in columns]
    return columns


def model_rows(frame: pd.DataFrame, predictors: Sequence[str]) -> pd.DataFrame:
    """
    Complete-case rows for one model's response, predictors and grouping factors.

    The row count of the returned frame is the n_obs that model reports.
    """

    columns = required_columns(predictors)
    require_columns(frame, columns, "Model frame")
    subset = frame.dropna(subset=columns).reset_index(drop=True)
    for col in subset.columns:
        if isinstance(subset[col].dtype, pd.CategoricalDtype):
            subset[col] = subset[col].cat.remove_unused_categories()
    return subset


def prepare_heldout_frame(heldout: pd.DataFrame) -> pd.DataFrame:
    """Type a held-out table like the analysis table; it carries no lag features."""

    require_columns(heldout, ["class_id", "student_id", "chapter", "book_id"], "Held-out table")
    frame = heldout.copy()
    for col in ("chapter", "attempt", "score_prev_chapter"):
        if col in frame.columns:
            frame[col] = as_float(frame[col])
    if "prev_missing" in frame.columns:
        frame["prev_missing"] = flag_to_float(frame["prev_missing"])
    for col in GROUPING_COLUMNS:
        frame[col] = frame[col].astype("string").astype("category")
    return frame.reset_index(drop=True)


def flag_to_float(values: pd.Series) -> pd.Series:
    """Boolean-like flags as 1.0/0.0 with NaN for anything missing."""

    return values.astype("object").map({True: 1.0, False: 0.0}).astype("float64")
