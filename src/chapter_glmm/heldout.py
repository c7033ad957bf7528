# ABOUTME: Applies a fitted GLMM to held-out students and classes never seen in fitting.
# ABOUTME: Averages population-level item predictions to one score per student chapter.

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from src.chapter_panel.frame import PREDICTOR_COLUMNS, prepare_heldout_frame

from .design import unseen_level_counts

HELDOUT_GROUP_KEYS = ("student_id", "chapter")


def predict_heldout(model, heldout: pd.DataFrame, group_keys: Sequence[str] = HELDOUT_GROUP_KEYS) -> pd.DataFrame:
    """
    Population-level predictions aggregated per held-out (student, chapter).

    Random intercepts are zero for every row because held-out groups have no
    estimates; unseen class, student and book levels never raise. A missing or
    unseen book is scored at the reference book level. The result is
    ordered by the group keys with a contiguous zero-based ``id``.
    """

    frame = prepare_heldout_frame(heldout)
    missing = [PREDICTOR_COLUMNS[p] for p in model.predictors if PREDICTOR_COLUMNS[p] not in frame.columns]
    if missing:
        raise ValueError(f"Held-out frame lacks predictors required by '{model.name}': {', '.join(missing)}")

    unseen = {name: count for name, count in unseen_level_counts(frame, model.design).items() if count}
    if unseen:
        summary = ", ".join(f"{name}={count}" for name, count in unseen.items())
        print(f"[heldout] Rows with levels unseen in fitting: {summary}")

    no_book = int(frame["book_id"].isna().sum())
    if no_book and "book" in model.predictors:
        print(f"[heldout] {no_book} rows without a book are scored at the reference level")

    frame["prediction"] = model.predict(frame, include_random=False)
    undefined = int(frame["prediction"].isna().sum())
    if undefined:
        print(f"[heldout] {undefined} rows have undefined predictions (missing predictors)")

    aggregated = (
        frame.groupby(list(group_keys), sort=True, observed=True)
        .agg(score=("prediction", "mean"), n_rows=("prediction", "size"))
        .reset_index()
    )
    aggregated.insert(0, "id", np.arange(len(aggregated), dtype=np.int64))
    return aggregated


def format_submission(predictions: pd.DataFrame) -> pd.DataFrame:
    """Two-column (id, score) output table."""

    return predictions[["id", "score"]].reset_index(drop=True)
