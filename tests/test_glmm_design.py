# ABOUTME: Tests model configuration parsing and GLMM design matrix construction.
# ABOUTME: Covers canonical specs, custom specs, dummy coding, and unseen levels.

import numpy as np
import pandas as pd
import pytest

from src.chapter_glmm.design import INTERCEPT, fit_design, fixed_design, random_design, unseen_level_counts
from src.chapter_glmm.specs import CANONICAL_SPECS, CanonicalModel, ModelSpec, resolve_specs


def _frame():
    return pd.DataFrame(
        {
            "correct": [1.0, 0.0, 1.0, 0.0],
            "chapter": [1.0, 2.0, 1.0, 2.0],
            "book_id": pd.Categorical(["B1", "B1", "B2", "B2"]),
            "attempt": [1.0, 2.0, 1.0, 1.0],
            "class_id": pd.Categorical(["C1", "C1", "C2", "C2"]),
            "student_id": pd.Categorical(["S1", "S1", "S2", "S3"]),
        }
    )


def test_canonical_specs_nest_predictors():
    names = [spec.name for spec in CANONICAL_SPECS]
    assert names == ["model1", "model2", "model3", "model4"]
    full = set(CanonicalModel.FULL.spec.predictors)
    for spec in CANONICAL_SPECS:
        assert {"chapter", "book"} <= set(spec.predictors) <= full


def test_resolve_specs_accepts_names_and_mappings():
    specs = resolve_specs(["full", "model1", {"name": "custom", "predictors": ["chapter"]}])

    assert [spec.name for spec in specs] == ["model4", "model1", "custom"]
    assert specs[2].predictors == ("chapter",)
    assert resolve_specs(None) == CANONICAL_SPECS


def test_resolve_specs_rejects_unknown_and_duplicate_names():
    with pytest.raises(ValueError, match="Unknown model"):
        resolve_specs(["model9"])
    with pytest.raises(ValueError, match="unique"):
        resolve_specs(["model1", "CHAPTER_BOOK"])
    with pytest.raises(ValueError, match="unknown predictors"):
        ModelSpec("bad", ("chapter", "shoe_size"))


def test_formula_lists_fixed_and_random_terms():
    formula = CanonicalModel.ATTEMPT.spec.formula
    assert formula == "correct ~ chapter + book + attempt + (1 | class_id) + (1 | student_id)"


def test_book_is_treatment_coded():
    info = fit_design(_frame(), ("chapter", "book"))
    X = fixed_design(_frame(), info)

    assert info.columns == (INTERCEPT, "chapter", "book[B2]")
    np.testing.assert_array_equal(X[:, 2], [0.0, 0.0, 1.0, 1.0])
    np.testing.assert_array_equal(X[:, 0], np.ones(4))


def test_unseen_levels_fall_back_to_reference_and_zero_effects():
    info = fit_design(_frame(), ("chapter", "book"))
    new = pd.DataFrame(
        {
            "chapter": [3.0],
            "book_id": ["B7"],
            "class_id": ["C99"],
            "student_id": ["S99"],
        }
    )

    X = fixed_design(new, info)
    Z, sizes = random_design(new, info)

    np.testing.assert_array_equal(X[0], [1.0, 3.0, 0.0])
    assert sizes == [2, 3]
    assert Z.nnz == 0
    assert unseen_level_counts(new, info) == {"book": 1, "class_id": 1, "student_id": 1}


def test_random_design_has_one_indicator_per_block():
    info = fit_design(_frame(), ("chapter",))
    Z, sizes = random_design(_frame(), info)

    dense = Z.toarray()
    assert dense.shape == (4, sum(sizes))
    np.testing.assert_array_equal(dense[:, :2].sum(axis=1), np.ones(4))
    np.testing.assert_array_equal(dense[:, 2:].sum(axis=1), np.ones(4))


def test_missing_numeric_predictor_gives_nan_row():
    info = fit_design(_frame(), ("chapter", "attempt"))
    new = _frame()
    new.loc[1, "attempt"] = np.nan

    X = fixed_design(new, info)

    assert np.isnan(X[1]).any()
    assert not np.isnan(X[0]).any()
