"""
Enumerations and constants for the Carry Mark platform.
"""

from enum import Enum
from typing import FrozenSet


class AssessmentType(Enum):
    """Assessment sittings recorded per subject and term."""
    US1 = "US1"
    US2 = "US2"
    UASA = "UASA"
    US3 = "US3"
    US4 = "US4"
    UASA2 = "UASA2"


class AttendanceStatus(Enum):
    """Status of one attendance entry."""
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class CompositeField(Enum):
    """Fields of a carry mark record a caller may adjust by hand."""
    ASSESSMENT_AVERAGE = "assessment_average"
    ASSIGNMENT_AVERAGE = "assignment_average"
    ATTENDANCE_PERCENTAGE = "attendance_percentage"
    FINAL_SCORE = "final_score"
    GRADE = "grade"


class MissingComponentPolicy(Enum):
    """How the reducer treats a component with no contributing data."""
    EXCLUDE = "exclude"  # drop it and renormalize the remaining weights
    ZERO_FILL = "zero_fill"  # score it as 0 under the full weight vector


class RoundingMode(Enum):
    """Rounding applied to the final score."""
    HALF_UP = "half_up"
    HALF_EVEN = "half_even"


class RecomputeOutcome(Enum):
    """Terminal states of a recompute call."""
    COMPUTED = "computed"
    NO_DATA = "no_data"


class AuditAction(Enum):
    """Actions recorded in the audit trail."""
    RECOMPUTE = "recompute"
    ADJUST = "adjust"
    CLEAR_ADJUSTMENTS = "clear_adjustments"


ADJUSTABLE_FIELDS: FrozenSet[str] = frozenset(field.value for field in CompositeField)
COMPONENT_FIELDS: FrozenSet[str] = frozenset({
    CompositeField.ASSESSMENT_AVERAGE.value,
    CompositeField.ASSIGNMENT_AVERAGE.value,
    CompositeField.ATTENDANCE_PERCENTAGE.value,
})
