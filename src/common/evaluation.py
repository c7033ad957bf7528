# ABOUTME: Defines evaluation helpers shared by the comparison and held-out stages.
# ABOUTME: Computes RMSE over defined predictions, AUC, and expected calibration error.

from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, roc_auc_score


def rmse(y_true, y_pred) -> float:
    """
    Root-mean-squared error over rows where both values are defined.

    Rows with NaN in either vector are dropped and the denominator shrinks with
    them. Returns NaN when no row is left.
    """

    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    mask = np.isfinite(y_true) & np.isfinite(y_pred)
    if not mask.any():
        return float("nan")
    return float(np.sqrt(mean_squared_error(y_true[mask], y_pred[mask])))


def defined_count(y_true, y_pred) -> int:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    return int((np.isfinite(y_true) & np.isfinite(y_pred)).sum())


def is_binary_response(values) -> bool:
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    return bool(values.size) and bool(np.isin(values, (0.0, 1.0)).all())


def evaluate_predictions(predictions: pd.DataFrame, metrics: Iterable[str]) -> Mapping[str, float]:
    """
    Evaluate predictions dataframe using the requested metric names.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred'] plus optional identifiers.
    metrics : Iterable[str]
        Metric identifiers: 'rmse', 'auc', 'calibration_ece'.
    """

    metrics = list(metrics)
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    frame = predictions[["y_true", "y_pred"]].astype(float)
    defined = frame.dropna()
    y_true = defined["y_true"]
    y_pred = defined["y_pred"].clip(0.0, 1.0)

    results = {}
    for metric in metrics:
        if metric == "rmse":
            results[metric] = rmse(frame["y_true"], frame["y_pred"])
        elif metric == "auc":
            # roc_auc_score needs both classes of a binary outcome.
            if not is_binary_response(y_true) or len(np.unique(y_true)) < 2:
                results[metric] = np.nan
            else:
                results[metric] = float(roc_auc_score(y_true, y_pred))
        elif metric == "calibration_ece":
            results[metric] = float(_expected_calibration_error(y_true, y_pred))
        else:
            raise ValueError(f"Unsupported metric '{metric}'.")

    return results


def _expected_calibration_error(y_true: pd.Series, y_pred: pd.Series, num_bins: int = 10) -> float:
    """
    Compute expected calibration error using equal-width bins between 0 and 1.
    """

    total = len(y_true)
    if total == 0:
        return np.nan

    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    bins = np.linspace(0.0, 1.0, num_bins + 1)
    digitized = np.clip(np.digitize(y_pred, bins) - 1, 0, num_bins - 1)

    ece = 0.0
    for b in range(num_bins):
        mask = digitized == b
        count = mask.sum()
        if count == 0:
            continue
        acc = y_true[mask].mean()
        conf = y_pred[mask].mean()
        ece += (count / total) * abs(acc - conf)
    return ece
