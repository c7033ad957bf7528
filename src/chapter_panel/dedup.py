# ABOUTME: Reduces raw attempt logs to one record per (student, item) pair.
# ABOUTME: Keeps the latest attempt and derives time spent and completion flags.

from __future__ import annotations

from typing import Iterable, Union

import numpy as np
import pandas as pd

from src.common.schemas import ITEM_KEY, AttemptRecord, ensure_frame, require_columns

TRUE_STRINGS = {"true", "t", "yes", "y", "1", "1.0"}
FALSE_STRINGS = {"false", "f", "no", "n", "0", "0.0"}

REDUCED_COLUMNS = ITEM_KEY + [
    "attempt",
    "completed",
    "points_possible",
    "points_earned",
    "correct",
    "time_spent",
]


def deduplicate_attempts(attempts: Union[pd.DataFrame, Iterable[AttemptRecord]]) -> pd.DataFrame:
    """
    Keep the maximum-attempt row for every item key.

    Ties on the maximum attempt index resolve to the row that appears first in
    the input. The input frame is never modified.
    """

    df = ensure_frame(attempts, AttemptRecord)
    require_columns(df, ITEM_KEY + ["attempt"], "Attempt table")
    if df.empty:
        return pd.DataFrame(columns=REDUCED_COLUMNS)

    df = df.reset_index(drop=True).copy()
    df["chapter"] = as_float(df["chapter"])
    df["attempt"] = as_float(df["attempt"])
    df["_position"] = np.arange(len(df))

    ordered = df.sort_values(
        ITEM_KEY + ["attempt", "_position"],
        ascending=[True] * len(ITEM_KEY) + [False, True],
        kind="mergesort",
        na_position="last",
    )
    latest = ordered.drop_duplicates(subset=ITEM_KEY, keep="first")
    latest = latest.sort_values(ITEM_KEY, kind="mergesort").reset_index(drop=True)

    for col in ("submitted_at", "started_at", "completed", "points_possible", "points_earned"):
        if col not in latest.columns:
            latest[col] = pd.NA

    latest["time_spent"] = compute_time_spent(latest["submitted_at"], latest["started_at"])
    latest["completed"] = normalize_completion(latest["completed"])
    latest["correct"] = _item_correctness(latest)
    return latest[REDUCED_COLUMNS]


def compute_time_spent(submitted: pd.Series, started: pd.Series) -> pd.Series:
    """Minutes between start and submission; unparseable or negative spans become NaN."""

    submitted_ts = _parse_timestamps(submitted)
    started_ts = _parse_timestamps(started)
    minutes = (submitted_ts - started_ts).dt.total_seconds() / 60.0
    minutes = minutes.where(minutes >= 0)
    return minutes.astype("float64")


def normalize_completion(values: pd.Series) -> pd.Series:
    """Map assorted truthy/falsy encodings onto a nullable boolean series."""

    def _to_bool(value):
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return pd.NA
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, (int, float, np.integer, np.floating)):
            return bool(value)
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        return pd.NA

    return values.map(_to_bool).astype("boolean")


def as_float(values: pd.Series) -> pd.Series:
    """Coerce to float64, turning unparseable values and pd.NA into NaN."""

    numeric = pd.to_numeric(values, errors="coerce")
    return pd.Series(numeric.to_numpy(dtype="float64", na_value=np.nan), index=values.index)


def _parse_timestamps(values: pd.Series) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(values):
        parsed = values
        if getattr(parsed.dt, "tz", None) is None:
            parsed = parsed.dt.tz_localize("UTC")
        return parsed
    if pd.api.types.is_numeric_dtype(values):
        return pd.to_datetime(values, unit="s", utc=True, errors="coerce")
    return pd.to_datetime(values.astype("string"), utc=True, errors="coerce", format="mixed")


def _item_correctness(df: pd.DataFrame) -> pd.Series:
    """Points earned as a share of points possible, clipped to [0, 1]."""

    earned = as_float(df["points_earned"])
    possible = as_float(df["points_possible"])
    ratio = earned.where(~(possible > 0), earned / possible)
    return ratio.clip(0.0, 1.0)
