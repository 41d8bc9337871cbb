"""
In-memory stores, used by tests, the demo and single-process deployments.
"""

import threading
from datetime import date
from typing import Dict, List, Optional, Tuple

from ..core.entities import (
    AssessmentScore, Assignment, AssignmentSubmission, AttendanceEntry,
    CompositeRecord, NaturalKey, check_score_range
)
from ..core.exceptions import ConcurrentUpdateConflict, RecordNotFound
from ..core.interfaces import CompositeRecordStore, RecordSources


class InMemoryCompositeStore(CompositeRecordStore):
    """Thread-safe keyed carry mark store with versioned writes."""

    def __init__(self):
        self._records: Dict[Tuple[str, ...], CompositeRecord] = {}
        self._lock = threading.RLock()

    def get(self, key: NaturalKey) -> Optional[CompositeRecord]:
        with self._lock:
            record = self._records.get(key.as_tuple())
            return record.with_fields() if record else None

    def compare_and_set(self, record: CompositeRecord,
                        expected_version: Optional[int]) -> CompositeRecord:
        with self._lock:
            current = self._records.get(record.key.as_tuple())
            current_version = current.version if current else None
            if current_version != expected_version:
                raise ConcurrentUpdateConflict(
                    f"Carry mark {record.key} changed (expected version "
                    f"{expected_version}, found {current_version})",
                    error_code="VERSION_CONFLICT",
                    details={'key': record.key.to_dict()}
                )
            stored = record.with_fields(version=(current_version or 0) + 1)
            self._records[record.key.as_tuple()] = stored
            return stored.with_fields()

    def list_for_student(self, student_id: str, subject: Optional[str] = None,
                         term: Optional[str] = None,
                         academic_year: Optional[str] = None) -> List[CompositeRecord]:
        return self._filter(student_id=student_id, subject=subject, term=term,
                            academic_year=academic_year)

    def list_for_class(self, class_id: str, subject: Optional[str] = None,
                       term: Optional[str] = None,
                       academic_year: Optional[str] = None) -> List[CompositeRecord]:
        return self._filter(class_id=class_id, subject=subject, term=term,
                            academic_year=academic_year)

    def _filter(self, **criteria) -> List[CompositeRecord]:
        criteria = {name: value for name, value in criteria.items() if value is not None}
        with self._lock:
            matches = [
                record.with_fields() for record in self._records.values()
                if all(getattr(record.key, name) == value for name, value in criteria.items())
            ]
        return sorted(matches, key=lambda r: r.key.as_tuple())

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class InMemoryRecordStore(RecordSources):
    """Assessment, assignment and attendance records held in memory."""

    def __init__(self):
        self._assessments: Dict[Tuple[str, ...], AssessmentScore] = {}  # (key..., type) -> score
        self._assignments: Dict[str, Assignment] = {}
        self._submissions: Dict[Tuple[str, str], Optional[float]] = {}  # (assignment, student) -> score
        self._attendance: Dict[Tuple[str, str, date], AttendanceEntry] = {}
        self._lock = threading.RLock()

    def add_assessment(self, score: AssessmentScore) -> AssessmentScore:
        """Record a score; re-recording the same assessment type replaces it."""
        check_score_range(score.raw_score, score.max_score, f"{score.assessment_type.value} score")
        with self._lock:
            self._assessments[(score.student_id, score.class_id, score.subject, score.term,
                               score.academic_year, score.assessment_type.value)] = score
        return score

    def add_assignment(self, assignment: Assignment) -> Assignment:
        with self._lock:
            self._assignments[assignment.assignment_id] = assignment
        return assignment

    def submit(self, assignment_id: str, student_id: str, raw_score: Optional[float]) -> None:
        """Record (or replace) a student's submission. None means not submitted."""
        with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise RecordNotFound(f"Unknown assignment {assignment_id}")
            if raw_score is not None:
                check_score_range(raw_score, assignment.max_score, f"submission for {assignment_id}")
            self._submissions[(assignment_id, student_id)] = raw_score

    def mark_attendance(self, entry: AttendanceEntry) -> AttendanceEntry:
        """Record attendance; re-marking the same date replaces the entry."""
        with self._lock:
            self._attendance[(entry.student_id, entry.class_id, entry.date)] = entry
        return entry

    def list_assessments(self, key: NaturalKey) -> List[AssessmentScore]:
        with self._lock:
            return [
                score for score in self._assessments.values()
                if (score.student_id, score.class_id, score.subject, score.term,
                    score.academic_year) == key.as_tuple()
            ]

    def list_submissions(self, key: NaturalKey) -> List[AssignmentSubmission]:
        with self._lock:
            submissions = []
            for assignment in self._assignments.values():
                if (assignment.class_id, assignment.subject, assignment.term,
                        assignment.academic_year) != (key.class_id, key.subject, key.term,
                                                      key.academic_year):
                    continue
                submission_key = (assignment.assignment_id, key.student_id)
                if submission_key not in self._submissions:
                    continue
                submissions.append(AssignmentSubmission(
                    assignment_id=assignment.assignment_id,
                    student_id=key.student_id,
                    raw_score=self._submissions[submission_key],
                    max_score=assignment.max_score,
                    term=assignment.term,
                    academic_year=assignment.academic_year,
                ))
            return submissions

    def list_attendance(self, key: NaturalKey) -> List[AttendanceEntry]:
        with self._lock:
            return sorted(
                (entry for entry in self._attendance.values()
                 if entry.student_id == key.student_id and entry.class_id == key.class_id
                 and entry.term == key.term and entry.academic_year == key.academic_year),
                key=lambda entry: entry.date
            )
