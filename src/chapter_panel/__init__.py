# ABOUTME: Exposes the chapter panel reduction stages.
# ABOUTME: Groups deduplication, chapter aggregation, lag features, and model frames.

from .aggregation import aggregate_chapters, assert_chapter_order
from .dedup import deduplicate_attempts
from .descriptives import describe_panel
from .frame import build_model_frame, model_rows, prepare_heldout_frame
from .lags import add_lag_features

__all__ = [
    "add_lag_features",
    "aggregate_chapters",
    "assert_chapter_order",
    "build_model_frame",
    "deduplicate_attempts",
    "describe_panel",
    "model_rows",
    "prepare_heldout_frame",
]
