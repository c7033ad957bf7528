# ABOUTME: Defines canonical data structures shared by the panel and model engines.
# ABOUTME: Centralizes attempt, reduced item, and chapter summary schema definitions.

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Iterable, Optional, Sequence, Type, Union

import pandas as pd

ATTEMPT_COLUMNS = [
    "book_id",
    "release_id",
    "institution_id",
    "class_id",
    "student_id",
    "chapter",
    "item_id",
    "attempt",
    "submitted_at",
    "started_at",
    "completed",
    "points_possible",
    "points_earned",
]

STUDENT_KEY = ["book_id", "release_id", "institution_id", "class_id", "student_id"]
CHAPTER_KEY = STUDENT_KEY + ["chapter"]
ITEM_KEY = CHAPTER_KEY + ["item_id"]

GROUPING_COLUMNS = ["class_id", "student_id", "book_id"]


@dataclass(frozen=True)
class AttemptRecord:
    """One submission attempt as exported by the textbook platform."""

    book_id: str
    release_id: str
    institution_id: str
    class_id: str
    student_id: str
    chapter: int
    item_id: str
    attempt: int
    submitted_at: Optional[Union[datetime, str]] = None
    started_at: Optional[Union[datetime, str]] = None
    completed: Optional[bool] = None
    points_possible: Optional[float] = 1.0
    points_earned: Optional[float] = None


@dataclass(frozen=True)
class ReducedItemRecord:
    """Latest attempt for a (student, item) pair with derived duration."""

    book_id: str
    release_id: str
    institution_id: str
    class_id: str
    student_id: str
    chapter: int
    item_id: str
    attempt: int
    completed: Optional[bool]
    points_possible: Optional[float]
    points_earned: Optional[float]
    correct: Optional[float]
    time_spent: Optional[float]


@dataclass(frozen=True)
class ChapterSummary:
    """Per (student, chapter) aggregates plus the previous-chapter lag."""

    book_id: str
    release_id: str
    institution_id: str
    class_id: str
    student_id: str
    chapter: int
    score: Optional[float]
    completion_rate: Optional[float]
    time_spent: Optional[float]
    attempts: Optional[float]
    n_items: int
    score_prev_chapter: Optional[float] = None
    prev_missing: Optional[bool] = None
    chapter_gap: Optional[float] = None


Record = Union[AttemptRecord, ReducedItemRecord, ChapterSummary]


def records_to_frame(records: Iterable[Record], record_type: Type = AttemptRecord) -> pd.DataFrame:
    """Convert an iterable of schema records into a DataFrame with canonical columns."""

    rows = [asdict(record) for record in records]
    columns = [f.name for f in fields(record_type)]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows, columns=columns)


def ensure_frame(data: Union[pd.DataFrame, Iterable[Record]], record_type: Type = AttemptRecord) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    return records_to_frame(data, record_type)


def require_columns(df: pd.DataFrame, columns: Sequence[str], context: str) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ValueError(f"{context} is missing required columns: {', '.join(missing)}")
