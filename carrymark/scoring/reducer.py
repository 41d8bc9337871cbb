"""
Composite reducer: weights the three components into one bounded, rounded
final score and maps it to a grade label.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from ..core.entities import Weights, WEIGHT_TOLERANCE, WEIGHT_TOTAL
from ..core.enums import MissingComponentPolicy, RoundingMode
from ..core.exceptions import InvalidGradeScale, InvalidWeights


SCORE_MIN = 0.0
SCORE_MAX = 100.0

_QUANTUM = Decimal("0.01")
_DECIMAL_ROUNDING = {
    RoundingMode.HALF_UP: ROUND_HALF_UP,
    RoundingMode.HALF_EVEN: ROUND_HALF_EVEN,
}


class ComponentScores(NamedTuple):
    """Component values fed to the reducer; None means not measured."""
    assessment: Optional[float]
    assignment: Optional[float]
    attendance: Optional[float]


@dataclass(frozen=True)
class ReductionResult:
    final_score: Optional[float]
    grade: Optional[str]


def validate_weights(weights: Weights) -> Weights:
    """Reject negative weights and vectors not summing to 100 (+/- 1e-9)."""
    values = (weights.assessment, weights.assignment, weights.attendance)
    for value in values:
        if not isinstance(value, (int, float)) or math.isnan(value) or math.isinf(value):
            raise InvalidWeights(f"Weight {value!r} is not a finite number",
                                 details={'weights': weights.to_dict()})
        if value < 0:
            raise InvalidWeights(f"Weight {value} is negative",
                                 details={'weights': weights.to_dict()})
    if abs(sum(values) - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
        raise InvalidWeights(f"Weights must sum to {WEIGHT_TOTAL:g}, got {sum(values)!r}",
                             details={'weights': weights.to_dict()})
    return weights


# HALF_UP by default: a published 85.625 must read 85.63, and half-even gives 85.62.
def round_score(value: float, mode: RoundingMode = RoundingMode.HALF_UP) -> float:
    """Round to 2 decimal places on the value's shortest decimal form."""
    return float(Decimal(repr(value)).quantize(_QUANTUM, rounding=_DECIMAL_ROUNDING[mode]))


def clamp_score(value: float) -> float:
    return min(SCORE_MAX, max(SCORE_MIN, value))


@dataclass(frozen=True)
class GradeBand:
    """Scores in [min_score, max_score) earn ``label``; a band ending at 100 includes 100."""
    label: str
    min_score: float
    max_score: float

    def contains(self, score: float) -> bool:
        if self.max_score >= SCORE_MAX:
            return self.min_score <= score <= self.max_score
        return self.min_score <= score < self.max_score

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.label, 'min': self.min_score, 'max': self.max_score}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GradeBand':
        try:
            return cls(label=str(data['label']), min_score=float(data['min']),
                       max_score=float(data['max']))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidGradeScale(f"Invalid grade band {data!r}: {e}")


class GradeScale:
    """Ordered, non-overlapping set of score bands."""

    def __init__(self, bands: Iterable[GradeBand]):
        self._bands: Tuple[GradeBand, ...] = tuple(sorted(bands, key=lambda b: b.min_score))
        self._validate()

    def _validate(self) -> None:
        if not self._bands:
            raise InvalidGradeScale("A grade scale needs at least one band")
        labels = set()
        previous: Optional[GradeBand] = None
        for band in self._bands:
            if not band.label:
                raise InvalidGradeScale("Grade band label must not be empty")
            if band.label in labels:
                raise InvalidGradeScale(f"Duplicate grade label {band.label!r}")
            labels.add(band.label)
            if band.min_score < SCORE_MIN or band.max_score > SCORE_MAX:
                raise InvalidGradeScale(f"Band {band.label!r} lies outside [0, 100]")
            if band.min_score >= band.max_score:
                raise InvalidGradeScale(f"Band {band.label!r} is empty")
            if previous is not None and band.min_score < previous.max_score:
                raise InvalidGradeScale(f"Bands {previous.label!r} and {band.label!r} overlap")
            previous = band

    @property
    def bands(self) -> Tuple[GradeBand, ...]:
        return self._bands

    def grade_for(self, score: Optional[float]) -> Optional[str]:
        """Label of the band containing ``score``; None if no band covers it."""
        if score is None:
            return None
        for band in self._bands:
            if band.contains(score):
                return band.label
        return None

    def to_list(self) -> List[Dict[str, Any]]:
        return [band.to_dict() for band in reversed(self._bands)]

    @classmethod
    def from_list(cls, bands: Iterable[Dict[str, Any]]) -> 'GradeScale':
        return cls(GradeBand.from_dict(band) for band in bands)

    @classmethod
    def default(cls) -> 'GradeScale':
        return cls([
            GradeBand("A", 80.0, 100.0),
            GradeBand("B", 65.0, 80.0),
            GradeBand("C", 50.0, 65.0),
            GradeBand("D", 40.0, 50.0),
            GradeBand("E", 0.0, 40.0),
        ])


class CompositeReducer:
    """Weighted reduction of components to a final score and grade."""

    def __init__(self, grade_scale: Optional[GradeScale] = None,
                 missing_policy: MissingComponentPolicy = MissingComponentPolicy.EXCLUDE,
                 rounding: RoundingMode = RoundingMode.HALF_UP):
        self._grade_scale = grade_scale or GradeScale.default()
        self._missing_policy = missing_policy
        self._rounding = rounding

    @property
    def grade_scale(self) -> GradeScale:
        return self._grade_scale

    def reduce(self, components: ComponentScores, weights: Weights) -> ReductionResult:
        validate_weights(weights)
        final_score = self._weighted_score(components, weights)
        if final_score is None:
            return ReductionResult(final_score=None, grade=None)
        final_score = round_score(clamp_score(final_score), self._rounding)
        return ReductionResult(final_score=final_score, grade=self.grade_for(final_score))

    def grade_for(self, score: Optional[float]) -> Optional[str]:
        return self._grade_scale.grade_for(score)

    def _weighted_score(self, components: ComponentScores, weights: Weights) -> Optional[float]:
        pairs = [
            (components.assessment, weights.assessment),
            (components.assignment, weights.assignment),
            (components.attendance, weights.attendance),
        ]
        if all(value is None for value, _ in pairs):
            return None

        if self._missing_policy is MissingComponentPolicy.ZERO_FILL:
            return sum((value or 0.0) * weight for value, weight in pairs) / WEIGHT_TOTAL

        available = [(value, weight) for value, weight in pairs if value is not None]
        available_weight = sum(weight for _, weight in available)
        if available_weight <= 0:
            return None
        return sum(value * weight for value, weight in available) / available_weight
