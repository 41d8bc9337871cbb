"""
Component extractors.

Each extractor reduces the raw records for one natural key to a single
normalized component value on a 0-100 scale. They are pure: no I/O, no
mutation of their inputs. ``extract_components`` is the only function here
that touches the record stores, and it converts every store failure into
``DataUnavailable`` so a recompute never proceeds on a partial read.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..core.entities import AssessmentScore, AssignmentSubmission, AttendanceEntry, NaturalKey
from ..core.enums import AssessmentType, AttendanceStatus
from ..core.exceptions import DataUnavailable
from ..core.interfaces import AssessmentSource, AttendanceSource, SubmissionSource


logger = logging.getLogger(__name__)

_PRESENT_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.LATE)


@dataclass(frozen=True)
class ComponentValues:
    """The three components for one key, plus how many records fed each."""
    assessment_average: Optional[float]
    assignment_average: Optional[float]
    attendance_percentage: float
    assessment_count: int = 0
    submission_count: int = 0
    attendance_count: int = 0
    assessment_breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        """False when no store had a single contributing record."""
        return (self.assessment_count + self.submission_count + self.attendance_count) > 0

    @property
    def attendance_for_reduction(self) -> Optional[float]:
        # Zero entries reads as 0% once anything else was measured; with no
        # data at all there is nothing to score.
        return self.attendance_percentage if self.has_data else None


def _normalize(raw_score, max_score, what: str) -> float:
    if raw_score is None or max_score is None:
        raise DataUnavailable(f"Malformed {what}: missing score", error_code="MALFORMED_RECORD")
    try:
        raw = float(raw_score)
        maximum = float(max_score)
    except (TypeError, ValueError):
        raise DataUnavailable(f"Malformed {what}: non-numeric score {raw_score!r}/{max_score!r}",
                              error_code="MALFORMED_RECORD")
    if maximum <= 0:
        raise DataUnavailable(f"Malformed {what}: max score must be positive, got {maximum}",
                              error_code="MALFORMED_RECORD")
    if raw < 0 or raw > maximum:
        raise DataUnavailable(f"Malformed {what}: score {raw} outside [0, {maximum}]",
                              error_code="MALFORMED_RECORD")
    return raw / maximum * 100.0


def assessment_average(records: Sequence[AssessmentScore]) -> Optional[float]:
    """Mean normalized score over the assessments that exist.

    Assessment types with no recorded score are excluded, not counted as zero.
    A type recorded more than once contributes its mean, as in
    ``assessment_breakdown``.
    """
    if not records:
        return None
    per_type = assessment_breakdown(records)
    return sum(per_type.values()) / len(per_type)


def assessment_breakdown(records: Sequence[AssessmentScore]) -> Dict[str, float]:
    """Normalized score per assessment type, averaged when a type repeats."""
    by_type: Dict[str, List[float]] = defaultdict(list)
    for record in records:
        assessment_type = record.assessment_type
        if not isinstance(assessment_type, AssessmentType):
            raise DataUnavailable(f"Malformed assessment score: unknown type {assessment_type!r}",
                                  error_code="MALFORMED_RECORD")
        by_type[assessment_type.value].append(
            _normalize(record.raw_score, record.max_score, "assessment score"))
    return {name: sum(values) / len(values) for name, values in sorted(by_type.items())}


def assignment_average(submissions: Sequence[AssignmentSubmission]) -> Optional[float]:
    """Mean normalized score over scored submissions; absent ones are skipped."""
    scored = [s for s in submissions if s.is_scored]
    if not scored:
        return None
    scores = [_normalize(s.raw_score, s.max_score, "submission") for s in scored]
    return sum(scores) / len(scores)


def attendance_percentage(entries: Sequence[AttendanceEntry]) -> float:
    """Share of entries marked present or late. 0 when there are no entries."""
    if not entries:
        return 0.0
    attended = 0
    for entry in entries:
        if not isinstance(entry.status, AttendanceStatus):
            raise DataUnavailable(f"Malformed attendance entry: unknown status {entry.status!r}",
                                  error_code="MALFORMED_RECORD")
        if entry.status in _PRESENT_STATUSES:
            attended += 1
    return attended / len(entries) * 100.0


def _read(what: str, key: NaturalKey, query) -> list:
    try:
        return list(query(key))
    except DataUnavailable:
        raise
    except Exception as e:
        raise DataUnavailable(f"Could not read {what} for {key}: {e}",
                              error_code="STORE_UNAVAILABLE",
                              details={'key': key.to_dict(), 'store': what})


def extract_components(key: NaturalKey, assessments: AssessmentSource,
                       submissions: SubmissionSource,
                       attendance: AttendanceSource) -> ComponentValues:
    """Read all three stores for ``key`` and reduce them to components.

    Any failure aborts the whole extraction.
    """
    try:
        assessment_records = _read("assessments", key, assessments.list_assessments)
        submission_records = _read("submissions", key, submissions.list_submissions)
        attendance_records = _read("attendance", key, attendance.list_attendance)

        values = ComponentValues(
            assessment_average=assessment_average(assessment_records),
            assignment_average=assignment_average(submission_records),
            attendance_percentage=attendance_percentage(attendance_records),
            assessment_count=len(assessment_records),
            submission_count=sum(1 for s in submission_records if s.is_scored),
            attendance_count=len(attendance_records),
            assessment_breakdown=assessment_breakdown(assessment_records),
        )
    except DataUnavailable as e:
        logger.error("Extraction aborted for %s: %s", key, e.message)
        raise

    logger.debug("Extracted components for %s: %s", key, values)
    return values
