# ABOUTME: Makes the shared common package importable across engines.
# ABOUTME: Re-exports schema types and evaluation helpers for convenience.

from .schemas import AttemptRecord, ChapterSummary, ReducedItemRecord, records_to_frame
from .evaluation import evaluate_predictions, rmse

__all__ = [
    "AttemptRecord",
    "ChapterSummary",
    "ReducedItemRecord",
    "evaluate_predictions",
    "records_to_frame",
    "rmse",
]
