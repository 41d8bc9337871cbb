"""
Core entities for the Carry Mark platform.

Raw records (assessment scores, submissions, attendance) are immutable value
objects owned by the external record stores. ``CompositeRecord`` is the one
entity the engine owns; it is identified by its ``NaturalKey``.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional

from .enums import AssessmentType, AttendanceStatus, COMPONENT_FIELDS
from .exceptions import ValidationError


WEIGHT_TOTAL = 100.0
WEIGHT_TOLERANCE = 1e-9


def check_score_range(raw_score: float, max_score: float, what: str) -> None:
    """Reject a score outside [0, max_score] at ingestion."""
    if raw_score < 0 or raw_score > max_score:
        raise ValidationError(f"{what} must be within [0, {max_score:g}], got {raw_score:g}",
                              details={'raw_score': raw_score, 'max_score': max_score})


@dataclass(frozen=True)
class NaturalKey:
    """Identity of one carry mark: (student, class, subject, term, academic year)."""
    student_id: str
    class_id: str
    subject: str
    term: str
    academic_year: str

    def __post_init__(self):
        for name in ("student_id", "class_id", "subject", "term", "academic_year"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Natural key field '{name}' must be a non-empty string")

    def as_tuple(self) -> tuple:
        return (self.student_id, self.class_id, self.subject, self.term, self.academic_year)

    @property
    def resource_id(self) -> str:
        """Stable string form used for locks and audit entries."""
        return "carry_mark:" + "/".join(self.as_tuple())

    def to_dict(self) -> Dict[str, str]:
        return {
            'student_id': self.student_id,
            'class_id': self.class_id,
            'subject': self.subject,
            'term': self.term,
            'academic_year': self.academic_year,
        }

    def __str__(self) -> str:
        return "/".join(self.as_tuple())


@dataclass(frozen=True)
class Weights:
    """Percentage weight of each component. Validated by the reducer."""
    assessment: float = 70.0
    assignment: float = 20.0
    attendance: float = 10.0

    @property
    def total(self) -> float:
        return self.assessment + self.assignment + self.attendance

    def to_dict(self) -> Dict[str, float]:
        return {
            'assessment': self.assessment,
            'assignment': self.assignment,
            'attendance': self.attendance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Weights':
        try:
            return cls(
                assessment=float(data['assessment']),
                assignment=float(data['assignment']),
                attendance=float(data['attendance']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid weights {data!r}: {e}")


@dataclass(frozen=True)
class AssessmentScore:
    """One recorded assessment sitting."""
    student_id: str
    class_id: str
    subject: str
    assessment_type: AssessmentType
    raw_score: float
    term: str
    academic_year: str
    max_score: float = 100.0
    assessment_id: Optional[str] = None


@dataclass(frozen=True)
class Assignment:
    """Parent of submissions; supplies the max score they are marked out of."""
    assignment_id: str
    class_id: str
    subject: str
    title: str
    term: str
    academic_year: str
    max_score: float = 100.0


@dataclass(frozen=True)
class AssignmentSubmission:
    """A student's submission. ``raw_score`` is None when nothing was submitted."""
    assignment_id: str
    student_id: str
    raw_score: Optional[float]
    max_score: float
    term: str
    academic_year: str

    @property
    def is_scored(self) -> bool:
        return self.raw_score is not None


@dataclass(frozen=True)
class AttendanceEntry:
    """At most one per (student, class, date)."""
    student_id: str
    class_id: str
    date: date
    status: AttendanceStatus
    term: str
    academic_year: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CompositeRecord:
    """The derived carry mark for one natural key."""
    key: NaturalKey
    weights: Weights
    assessment_average: Optional[float] = None
    assignment_average: Optional[float] = None
    attendance_percentage: Optional[float] = None
    final_score: Optional[float] = None
    grade: Optional[str] = None
    assessment_breakdown: Dict[str, float] = field(default_factory=dict)
    manually_adjusted_fields: FrozenSet[str] = frozenset()
    computed_at: datetime = field(default_factory=_utcnow)
    created_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        self.manually_adjusted_fields = frozenset(self.manually_adjusted_fields)
        if self.created_at is None:
            self.created_at = self.computed_at

    def is_adjusted(self, field_name: str) -> bool:
        return field_name in self.manually_adjusted_fields

    def with_fields(self, **changes) -> 'CompositeRecord':
        """Return a copy with ``changes`` applied."""
        changes.setdefault('assessment_breakdown', dict(self.assessment_breakdown))
        return replace(self, **changes)

    def with_adjusted(self, field_names: Iterable[str]) -> 'CompositeRecord':
        return self.with_fields(manually_adjusted_fields=self.manually_adjusted_fields | frozenset(field_names))

    def components(self) -> Dict[str, Optional[float]]:
        return {name: getattr(self, name) for name in sorted(COMPONENT_FIELDS)}

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to a JSON-serializable dictionary."""
        data = self.key.to_dict()
        data.update({
            'assessment_average': self.assessment_average,
            'assignment_average': self.assignment_average,
            'attendance_percentage': self.attendance_percentage,
            'weights': self.weights.to_dict(),
            'final_score': self.final_score,
            'grade': self.grade,
            'assessment_breakdown': dict(self.assessment_breakdown),
            'manually_adjusted_fields': sorted(self.manually_adjusted_fields),
            'computed_at': self.computed_at.isoformat(),
            'created_at': self.created_at.isoformat(),
            'version': self.version,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CompositeRecord':
        key = NaturalKey(
            student_id=data['student_id'],
            class_id=data['class_id'],
            subject=data['subject'],
            term=data['term'],
            academic_year=data['academic_year'],
        )
        return cls(
            key=key,
            weights=Weights.from_dict(data['weights']),
            assessment_average=data.get('assessment_average'),
            assignment_average=data.get('assignment_average'),
            attendance_percentage=data.get('attendance_percentage'),
            final_score=data.get('final_score'),
            grade=data.get('grade'),
            assessment_breakdown=dict(data.get('assessment_breakdown') or {}),
            manually_adjusted_fields=frozenset(data.get('manually_adjusted_fields') or ()),
            computed_at=_parse_timestamp(data['computed_at']),
            created_at=_parse_timestamp(data.get('created_at') or data['computed_at']),
            version=int(data.get('version', 0)),
        )

    def __repr__(self) -> str:
        return f"CompositeRecord(key={self.key}, final_score={self.final_score}, version={self.version})"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
