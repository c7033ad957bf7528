# ABOUTME: Ranks fitted GLMMs by information criteria and in-sample prediction error.
# ABOUTME: Selects the best-supported model usable on a given set of columns.

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from src.chapter_panel.frame import PREDICTOR_COLUMNS
from src.common.evaluation import defined_count, evaluate_predictions

COMPARISON_COLUMNS = [
    "rank",
    "model",
    "predictors",
    "n_obs",
    "n_params",
    "loglik",
    "aic",
    "bic",
    "delta_aic",
    "rmse",
    "rmse_n",
    "auc",
    "ece",
    "converged",
]


def compare_models(models: Sequence, include_random: bool = True) -> pd.DataFrame:
    """
    Build the ranking table, AIC ascending with ties kept in input order.

    RMSE compares training responses with fitted probabilities (conditional on
    the estimated random intercepts unless ``include_random`` is False); rows
    without a defined prediction are left out of both sum and count. ECE is the
    expected calibration error of the same predictions over ten equal-width bins.
    """

    rows = []
    for model in models:
        fitted = model.fitted if include_random else model.fitted_population
        scored = pd.DataFrame({"y_true": np.asarray(model.observed, dtype=float), "y_pred": np.asarray(fitted, dtype=float)})
        metrics = evaluate_predictions(scored, metrics=["rmse", "auc", "calibration_ece"])
        rows.append(
            {
                "model": model.name,
                "predictors": ", ".join(model.predictors),
                "n_obs": int(model.n_obs),
                "n_params": int(model.n_params),
                "loglik": float(model.loglik),
                "aic": float(model.aic),
                "bic": float(model.bic),
                "rmse": metrics["rmse"],
                "rmse_n": defined_count(scored["y_true"], scored["y_pred"]),
                "auc": metrics["auc"],
                "ece": metrics["calibration_ece"],
                "converged": bool(model.converged),
            }
        )

    if not rows:
        return pd.DataFrame(columns=COMPARISON_COLUMNS)

    table = pd.DataFrame(rows).sort_values("aic", kind="mergesort", na_position="last").reset_index(drop=True)
    table["delta_aic"] = table["aic"] - table["aic"].min()
    table["rank"] = np.arange(1, len(table) + 1)
    return table[COMPARISON_COLUMNS]


def select_model(ranking: pd.DataFrame, models: Sequence, available_columns: Iterable[str] = None):
    """
    Best-ranked model whose predictors all exist in ``available_columns``.

    Converged models are preferred; a non-converged one is returned only when
    no converged candidate qualifies. Raises ValueError when nothing qualifies.
    """

    by_name = {model.name: model for model in models}
    available = None if available_columns is None else set(available_columns)

    candidates = []
    for name in ranking["model"]:
        model = by_name.get(name)
        if model is None:
            continue
        if available is not None and any(PREDICTOR_COLUMNS[p] not in available for p in model.predictors):
            continue
        candidates.append(model)

    if not candidates:
        raise ValueError("No fitted model can be applied to the available columns.")
    for model in candidates:
        if model.converged:
            return model
    return candidates[0]
