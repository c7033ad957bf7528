# ABOUTME: Exposes the chapter GLMM engine entrypoints.
# ABOUTME: Groups model specs, the Laplace fitter, comparison, and held-out prediction.

from .comparison import compare_models, select_model
from .fitter import FitFailure, FitReport, fit_models
from .heldout import format_submission, predict_heldout
from .model import FittedModel, GlmmConfig, fit_glmm
from .specs import CANONICAL_SPECS, CanonicalModel, ModelSpec, resolve_specs

__all__ = [
    "CANONICAL_SPECS",
    "CanonicalModel",
    "FitFailure",
    "FitReport",
    "FittedModel",
    "GlmmConfig",
    "ModelSpec",
    "compare_models",
    "fit_glmm",
    "fit_models",
    "format_submission",
    "predict_heldout",
    "resolve_specs",
    "select_model",
]
