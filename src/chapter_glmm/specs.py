# ABOUTME: Declares the fixed-effect configurations compared by the GLMM engine.
# ABOUTME: Canonical models are enum members listing included predictor names.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Mapping, Tuple, Union

from src.chapter_panel.frame import PREDICTOR_COLUMNS

RANDOM_INTERCEPTS = ("class_id", "student_id")


@dataclass(frozen=True)
class ModelSpec:
    """Named set of fixed-effect predictors; random intercepts are always class and student."""

    name: str
    predictors: Tuple[str, ...]

    def __post_init__(self) -> None:
        unknown = [p for p in self.predictors if p not in PREDICTOR_COLUMNS]
        if unknown:
            raise ValueError(f"Model '{self.name}' uses unknown predictors: {', '.join(unknown)}")
        if len(set(self.predictors)) != len(self.predictors):
            raise ValueError(f"Model '{self.name}' lists a predictor twice.")

    @property
    def formula(self) -> str:
        """Human-readable formula for reports only."""

        fixed = " + ".join(self.predictors) if self.predictors else "1"
        random = " + ".join(f"(1 | {group})" for group in RANDOM_INTERCEPTS)
        return f"correct ~ {fixed} + {random}"


class CanonicalModel(Enum):
    CHAPTER_BOOK = ModelSpec("model1", ("chapter", "book"))
    ATTEMPT = ModelSpec("model2", ("chapter", "book", "attempt"))
    PRIOR_SCORE = ModelSpec("model3", ("chapter", "book", "score_prev_chapter"))
    FULL = ModelSpec("model4", ("chapter", "book", "attempt", "score_prev_chapter", "prev_missing"))

    @property
    def spec(self) -> ModelSpec:
        return self.value


CANONICAL_SPECS: List[ModelSpec] = [member.spec for member in CanonicalModel]


def resolve_specs(entries: Iterable[Union[str, Mapping]] = None) -> List[ModelSpec]:
    """
    Turn config entries into ModelSpecs.

    Strings name canonical models by enum member or spec name (``FULL`` or
    ``model4``); mappings define custom ``{name, predictors}`` configurations.
    """

    if entries is None:
        return list(CANONICAL_SPECS)

    by_name = {}
    for member in CanonicalModel:
        by_name[member.name.lower()] = member.spec
        by_name[member.spec.name.lower()] = member.spec

    specs: List[ModelSpec] = []
    for entry in entries:
        if isinstance(entry, str):
            key = entry.strip().lower()
            if key not in by_name:
                raise ValueError(f"Unknown model '{entry}'. Expected one of: {', '.join(sorted(by_name))}.")
            specs.append(by_name[key])
        else:
            specs.append(ModelSpec(name=str(entry["name"]), predictors=tuple(entry.get("predictors", ()))))

    names = [spec.name for spec in specs]
    if len(set(names)) != len(names):
        raise ValueError("Model names must be unique.")
    return specs
