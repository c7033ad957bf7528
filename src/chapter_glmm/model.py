# ABOUTME: Fits binomial GLMMs with crossed class and student random intercepts.
# ABOUTME: Returns fitted models exposing coefficients, variances, and predictions.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from scipy.optimize import minimize
from scipy.special import expit

from src.chapter_panel.frame import RESPONSE_COLUMN, model_rows

from .design import DesignInfo, fit_design, fixed_design, random_design
from .laplace import LaplaceProblem
from .specs import RANDOM_INTERCEPTS, ModelSpec


@dataclass
class GlmmConfig:
    """Solver settings for the Laplace GLMM fit."""

    max_iter: int = 1000
    pirls_max_iter: int = 50
    pirls_tol: float = 1e-10
    laplace_refine: bool = True
    restarts: int = 1
    jitter: float = 0.1
    seed: int = 42
    n_jobs: int = 1
    singular_tol: float = 1e-4


@dataclass
class FittedModel:
    """Binomial GLMM fitted on the complete rows of one model configuration."""

    spec: ModelSpec
    design: DesignInfo
    coefficients: pd.DataFrame
    variance_components: pd.DataFrame
    random_effects: Dict[str, pd.Series]
    loglik: float
    deviance: float
    aic: float
    bic: float
    n_obs: int
    n_params: int
    converged: bool
    messages: Tuple[str, ...]
    observed: np.ndarray = field(repr=False)
    fitted: np.ndarray = field(repr=False)
    fitted_population: np.ndarray = field(repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def predictors(self) -> Tuple[str, ...]:
        return self.spec.predictors

    @property
    def singular(self) -> bool:
        return any(message.startswith("boundary (singular) fit") for message in self.messages)

    def linear_predictor(self, frame: pd.DataFrame, include_random: bool = True) -> np.ndarray:
        X = fixed_design(frame, self.design)
        eta = X @ self.coefficients["estimate"].to_numpy()
        if include_random:
            Z, _ = random_design(frame, self.design)
            # Unseen levels have empty Z rows and so contribute zero.
            eta = eta + Z @ self._random_vector()
        return eta

    def predict(self, frame: pd.DataFrame, include_random: bool = True) -> np.ndarray:
        """
        Predicted probabilities for ``frame``.

        With include_random=False the prediction is population-level. Group
        levels absent at fit time are allowed either way; rows with a missing
        numeric predictor come back as NaN.
        """

        return expit(self.linear_predictor(frame, include_random=include_random))

    def _random_vector(self) -> np.ndarray:
        return np.concatenate(
            [self.random_effects[group].reindex(list(self.design.levels[group])).to_numpy() for group in RANDOM_INTERCEPTS]
        )


def fit_glmm(frame: pd.DataFrame, spec: ModelSpec, config: GlmmConfig = None) -> FittedModel:
    """
    Fit one configuration by maximum likelihood under the Laplace approximation.

    Stage one optimizes the random-intercept standard deviations with fixed
    effects taken from the joint penalized IRLS mode. Stage two, when enabled,
    refines standard deviations and fixed effects together. Optimizer stages
    that stop short mark the model as not converged; they never raise.
    """

    config = config or GlmmConfig()
    rows = model_rows(frame, spec.predictors)
    if rows.empty:
        raise ValueError(f"Model '{spec.name}' has no rows with complete data.")

    design = fit_design(rows, spec.predictors)
    X = fixed_design(rows, design)
    Z, block_sizes = random_design(rows, design)
    y = rows[RESPONSE_COLUMN].to_numpy(dtype=float)

    rank = np.linalg.matrix_rank(X)
    if rank < X.shape[1]:
        raise ValueError(
            f"Model '{spec.name}' has a rank-deficient fixed-effect design ({rank} of {X.shape[1]} columns)."
        )

    problem = LaplaceProblem(X, Z, y, block_sizes, max_iter=config.pirls_max_iter, tol=config.pirls_tol)
    beta_start = _glm_start(X, y)
    messages: List[str] = []
    k = len(RANDOM_INTERCEPTS)

    stage_one = minimize(
        problem.profiled_deviance,
        np.ones(k),
        args=(beta_start,),
        method="Nelder-Mead",
        bounds=[(0.0, None)] * k,
        options={"maxiter": config.max_iter, "xatol": 1e-5, "fatol": 1e-7},
    )
    converged = bool(stage_one.success)
    if not stage_one.success:
        messages.append(f"variance stage: {stage_one.message}")
    theta = np.clip(stage_one.x, 0.0, None)
    mode = problem.joint_mode(theta, beta_start)
    beta = mode.beta
    best = problem.deviance(theta, mode)

    if config.laplace_refine:
        refined = _refine(problem, theta, beta, mode.u, config)
        if refined is not None:
            if refined.success and refined.fun <= best:
                theta, beta, best = refined.x[:k], refined.x[k:], float(refined.fun)
            converged = converged and bool(refined.success)
            if not refined.success:
                messages.append(f"laplace stage: {refined.message}")

    theta = np.clip(theta, 0.0, None)
    mode = problem.conditional_mode(theta, beta, mode.u)
    if not mode.converged:
        converged = False
        messages.append("penalized IRLS did not converge at the final estimates")
    deviance = problem.deviance(theta, mode)

    for group, sd in zip(RANDOM_INTERCEPTS, theta):
        if sd < config.singular_tol:
            messages.append(f"boundary (singular) fit: {group} variance is estimated at zero")

    covariance = problem.fixed_covariance(theta, mode)
    coefficients = _coefficient_table(design, beta, covariance)
    variances = pd.DataFrame(
        {
            "variance": theta ** 2,
            "std_dev": theta,
            "n_levels": block_sizes,
        },
        index=pd.Index(RANDOM_INTERCEPTS, name="group"),
    )
    random_effects = _split_random_effects(design, problem.expand(theta) * mode.u, block_sizes)

    n_obs = len(rows)
    n_params = X.shape[1] + k
    loglik = -0.5 * deviance
    return FittedModel(
        spec=spec,
        design=design,
        coefficients=coefficients,
        variance_components=variances,
        random_effects=random_effects,
        loglik=loglik,
        deviance=deviance,
        aic=deviance + 2.0 * n_params,
        bic=deviance + n_params * np.log(n_obs),
        n_obs=n_obs,
        n_params=n_params,
        converged=converged,
        messages=tuple(messages),
        observed=y,
        fitted=mode.mu,
        fitted_population=expit(X @ beta),
    )


def _glm_start(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Fixed-effects-only binomial GLM estimates used as starting values."""

    result = sm.GLM(y, X, family=sm.families.Binomial()).fit()
    return np.asarray(result.params, dtype=float)


def _refine(problem: LaplaceProblem, theta: np.ndarray, beta: np.ndarray, u: np.ndarray, config: GlmmConfig):
    """Joint Laplace optimization with seeded jittered restarts on failure."""

    k = len(theta)
    start = np.concatenate([theta, beta])
    bounds = [(0.0, None)] * k + [(None, None)] * len(beta)
    rng = np.random.default_rng(config.seed)

    result = None
    for attempt in range(config.restarts + 1):
        x0 = start.copy() if attempt == 0 else start + rng.normal(scale=config.jitter, size=start.shape)
        x0[:k] = np.clip(x0[:k], 0.0, None)
        candidate = minimize(
            problem.laplace_deviance,
            x0,
            args=(u,),
            method="L-BFGS-B",
            bounds=bounds,
            options={"maxiter": config.max_iter},
        )
        if result is None or (candidate.success and (not result.success or candidate.fun < result.fun)):
            result = candidate
        if result.success:
            break
    return result


def _coefficient_table(design: DesignInfo, beta: np.ndarray, covariance: np.ndarray) -> pd.DataFrame:
    variances = np.diag(covariance)
    std_error = np.sqrt(np.where(variances > 0, variances, np.nan))
    z_value = beta / std_error
    p_value = 2.0 * stats.norm.sf(np.abs(z_value))
    return pd.DataFrame(
        {
            "estimate": beta,
            "std_error": std_error,
            "z_value": z_value,
            "p_value": p_value,
        },
        index=pd.Index(design.columns, name="term"),
    )


def _split_random_effects(design: DesignInfo, b: np.ndarray, block_sizes: List[int]) -> Dict[str, pd.Series]:
    effects: Dict[str, pd.Series] = {}
    offset = 0
    for group, size in zip(RANDOM_INTERCEPTS, block_sizes):
        effects[group] = pd.Series(b[offset : offset + size], index=list(design.levels[group]), name=group)
        offset += size
    return effects
