# ABOUTME: Fits every configured GLMM on a shared model frame.
# ABOUTME: Captures per-configuration failures and reports non-convergence without stopping.

from __future__ import annotations

import warnings
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import List, Sequence, Union

import numpy as np
import pandas as pd
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .model import FittedModel, GlmmConfig, fit_glmm
from .specs import CANONICAL_SPECS, ModelSpec


@dataclass(frozen=True)
class FitFailure:
    """A configuration that could not be fitted at all."""

    spec: ModelSpec
    error: str

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass
class FitReport:
    models: List[FittedModel] = field(default_factory=list)
    failures: List[FitFailure] = field(default_factory=list)

    @property
    def non_converged(self) -> List[FittedModel]:
        return [model for model in self.models if not model.converged]


def fit_models(
    frame: pd.DataFrame,
    specs: Sequence[ModelSpec] = None,
    config: GlmmConfig = None,
) -> FitReport:
    """
    Fit each spec on ``frame`` and collect models and failures in spec order.

    The fits only read ``frame``; with ``config.n_jobs > 1`` they run in a
    process pool and the report is assembled once all of them finish.
    """

    config = config or GlmmConfig()
    specs = list(specs) if specs is not None else list(CANONICAL_SPECS)

    if config.n_jobs > 1 and len(specs) > 1:
        with ProcessPoolExecutor(max_workers=min(config.n_jobs, len(specs))) as pool:
            futures = [pool.submit(_fit_one, frame, spec, config) for spec in specs]
            outcomes = [future.result() for future in futures]
    else:
        outcomes = [_fit_one(frame, spec, config) for spec in specs]

    report = FitReport()
    for outcome in outcomes:
        if isinstance(outcome, FitFailure):
            print(f"[glmm] {outcome.name} failed: {outcome.error}")
            report.failures.append(outcome)
            continue
        report.models.append(outcome)
        if not outcome.converged:
            detail = "; ".join(outcome.messages) or "optimizer stopped early"
            print(f"[glmm] {outcome.name} did not converge ({outcome.spec.formula}): {detail}")
            warnings.warn(f"Model '{outcome.name}' did not converge: {detail}", ConvergenceWarning, stacklevel=2)
        else:
            print(f"[glmm] {outcome.name} converged: AIC={outcome.aic:.2f} n={outcome.n_obs}")
    return report


def _fit_one(frame: pd.DataFrame, spec: ModelSpec, config: GlmmConfig) -> Union[FittedModel, FitFailure]:
    try:
        return fit_glmm(frame, spec, config)
    except (ValueError, np.linalg.LinAlgError, RuntimeError) as exc:
        return FitFailure(spec=spec, error=f"{type(exc).__name__}: {exc}")
