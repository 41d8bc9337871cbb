"""
Scoring module: component extractors and the composite reducer.
"""

from .extractors import (
    ComponentValues, extract_components, assessment_average, assessment_breakdown,
    assignment_average, attendance_percentage
)
from .reducer import (
    CompositeReducer, ComponentScores, GradeBand, GradeScale, ReductionResult,
    validate_weights, round_score
)

__all__ = [
    "ComponentValues",
    "extract_components",
    "assessment_average",
    "assessment_breakdown",
    "assignment_average",
    "attendance_percentage",
    "CompositeReducer",
    "ComponentScores",
    "GradeBand",
    "GradeScale",
    "ReductionResult",
    "validate_weights",
    "round_score",
]
