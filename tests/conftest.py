# ABOUTME: Shared fixtures building a synthetic attempt log and fitted baseline model.
# ABOUTME: The log has crossed class and student effects, two books, and retries.

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit


def make_attempts(seed: int = 7, n_classes: int = 6, students_per_class: int = 6, items_per_chapter: int = 5) -> pd.DataFrame:
    """Synthetic attempt log with class and student intercepts, two books, and retries."""

    rng = np.random.default_rng(seed)
    class_effects = rng.normal(scale=0.6, size=n_classes)
    rows = []
    base = pd.Timestamp("2023-01-09 08:00:00", tz="UTC")
    for c in range(n_classes):
        book = "B1" if c % 2 == 0 else "B2"
        for s in range(students_per_class):
            student = f"S{c}_{s}"
            student_effect = rng.normal(scale=0.8)
            chapters = [1, 2, 3, 4]
            if s == 0:
                # First student of each class skips chapter 3.
                chapters = [1, 2, 4]
            for chapter in chapters:
                for i in range(items_per_chapter):
                    eta = 0.4 + class_effects[c] + student_effect - 0.15 * chapter + (0.3 if book == "B2" else 0.0)
                    n_attempts = int(rng.integers(1, 4))
                    for attempt in range(1, n_attempts + 1):
                        start = base + pd.Timedelta(days=7 * chapter, minutes=10 * i)
                        earned = float(rng.random() < expit(eta + 0.3 * (attempt - 1)))
                        rows.append(
                            {
                                "book_id": book,
                                "release_id": "R1",
                                "institution_id": f"I{c // 3}",
                                "class_id": f"C{c}",
                                "student_id": student,
                                "chapter": chapter,
                                "item_id": f"ch{chapter}_q{i}",
                                "attempt": attempt,
                                "submitted_at": (start + pd.Timedelta(minutes=2 * attempt)).isoformat(),
                                "started_at": start.isoformat(),
                                "completed": bool(rng.random() < 0.8),
                                "points_possible": 1.0,
                                "points_earned": earned,
                            }
                        )
    return pd.DataFrame(rows)


@pytest.fixture(scope="session")
def synthetic_attempts() -> pd.DataFrame:
    return make_attempts()


@pytest.fixture(scope="session")
def synthetic_frame(synthetic_attempts):
    from src.chapter_panel import add_lag_features, aggregate_chapters, build_model_frame, deduplicate_attempts

    reduced = deduplicate_attempts(synthetic_attempts)
    chapters = add_lag_features(aggregate_chapters(reduced))
    return build_model_frame(reduced, chapters)


@pytest.fixture(scope="session")
def baseline_model(synthetic_frame):
    from src.chapter_glmm import CanonicalModel, GlmmConfig, fit_glmm

    return fit_glmm(synthetic_frame, CanonicalModel.CHAPTER_BOOK.spec, GlmmConfig(laplace_refine=False))
