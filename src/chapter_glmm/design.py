# ABOUTME: Builds fixed-effect and random-intercept design matrices for the GLMM.
# ABOUTME: Freezes training levels so prediction frames with new levels stay usable.

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import sparse

from src.chapter_panel.frame import CATEGORICAL_PREDICTORS, PREDICTOR_COLUMNS

from .specs import RANDOM_INTERCEPTS

INTERCEPT = "(Intercept)"


@dataclass(frozen=True)
class DesignInfo:
    """Column layout and categorical levels observed when the model was fit."""

    predictors: Tuple[str, ...]
    columns: Tuple[str, ...]
    levels: Dict[str, Tuple[str, ...]]


def level_values(values: pd.Series) -> List[str]:
    present = values.dropna()
    return sorted({str(v) for v in present.astype("object")})


def level_codes(values: pd.Series, levels: Sequence[str]) -> np.ndarray:
    """Integer codes into ``levels``; missing or unseen values map to -1."""

    lookup = {level: idx for idx, level in enumerate(levels)}
    codes = np.full(len(values), -1, dtype=np.int64)
    for pos, value in enumerate(values.astype("object")):
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            continue
        codes[pos] = lookup.get(str(value), -1)
    return codes


def fit_design(frame: pd.DataFrame, predictors: Sequence[str]) -> DesignInfo:
    """Record columns and levels from the fitting frame."""

    levels: Dict[str, Tuple[str, ...]] = {}
    columns: List[str] = [INTERCEPT]
    for name in predictors:
        column = PREDICTOR_COLUMNS[name]
        if name in CATEGORICAL_PREDICTORS:
            observed = level_values(frame[column])
            levels[name] = tuple(observed)
            # Treatment coding against the first sorted level.
            columns.extend(f"{name}[{level}]" for level in observed[1:])
        else:
            columns.append(name)
    for group in RANDOM_INTERCEPTS:
        levels[group] = tuple(level_values(frame[group]))
    return DesignInfo(predictors=tuple(predictors), columns=tuple(columns), levels=levels)


def fixed_design(frame: pd.DataFrame, info: DesignInfo) -> np.ndarray:
    """
    Dense fixed-effect matrix aligned to ``info.columns``.

    Rows with a missing numeric predictor are NaN. A categorical value that is
    missing or unseen at fit time gets all-zero dummies, i.e. the reference level.
    """

    n = len(frame)
    blocks = [np.ones((n, 1))]
    for name in info.predictors:
        column = PREDICTOR_COLUMNS[name]
        if name in CATEGORICAL_PREDICTORS:
            levels = info.levels[name]
            codes = level_codes(frame[column], levels)
            dummies = np.zeros((n, max(len(levels) - 1, 0)))
            known = codes > 0
            dummies[np.flatnonzero(known), codes[known] - 1] = 1.0
            blocks.append(dummies)
        else:
            values = pd.to_numeric(frame[column], errors="coerce").to_numpy(dtype="float64", na_value=np.nan)
            blocks.append(values.reshape(-1, 1))
    return np.hstack(blocks)


def random_design(frame: pd.DataFrame, info: DesignInfo) -> Tuple[sparse.csc_matrix, List[int]]:
    """
    Sparse indicator matrix [Z_class | Z_student] and the level count per block.

    Unseen or missing levels leave their row empty in that block.
    """

    blocks = []
    sizes = []
    n = len(frame)
    for group in RANDOM_INTERCEPTS:
        levels = info.levels[group]
        codes = level_codes(frame[group], levels)
        rows = np.flatnonzero(codes >= 0)
        block = sparse.csr_matrix(
            (np.ones(len(rows)), (rows, codes[rows])),
            shape=(n, len(levels)),
        )
        blocks.append(block)
        sizes.append(len(levels))
    return sparse.hstack(blocks, format="csc"), sizes


def unseen_level_counts(frame: pd.DataFrame, info: DesignInfo) -> Dict[str, int]:
    """Rows per categorical factor whose level was not present at fit time."""

    counts = {}
    for name, levels in info.levels.items():
        column = PREDICTOR_COLUMNS.get(name, name)
        if column not in frame.columns:
            continue
        codes = level_codes(frame[column], levels)
        counts[name] = int(((codes < 0) & frame[column].notna().to_numpy()).sum())
    return counts
