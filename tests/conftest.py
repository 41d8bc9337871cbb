from datetime import date, timedelta
from typing import Dict, Optional

import pytest

from carrymark.config import EngineConfig
from carrymark.core.entities import AssessmentScore, Assignment, AttendanceEntry, NaturalKey
from carrymark.core.enums import AssessmentType, AttendanceStatus
from carrymark.persistence import InMemoryCompositeStore, InMemoryRecordStore
from carrymark.services import AuditTrail, CarryMarkService, ConcurrencyManager


class Seeder:
    """Writes raw records for one natural key into a record store."""

    def __init__(self, records, key: NaturalKey):
        self.records = records
        self.key = key
        self._assignments = 0
        self._next_day = date(2024, 9, 2)

    def assessments(self, scores: Dict[str, float], max_score: float = 100.0) -> None:
        for assessment_type, raw_score in scores.items():
            self.records.add_assessment(AssessmentScore(
                student_id=self.key.student_id, class_id=self.key.class_id,
                subject=self.key.subject, assessment_type=AssessmentType(assessment_type),
                raw_score=raw_score, term=self.key.term, academic_year=self.key.academic_year,
                max_score=max_score, assessment_id=f"{self.key.student_id}-{assessment_type}",
            ))

    def assignment(self, raw_score: Optional[float], max_score: float = 100.0) -> str:
        self._assignments += 1
        assignment_id = f"{self.key.class_id}-{self.key.subject}-{self._assignments}"
        self.records.add_assignment(Assignment(
            assignment_id=assignment_id, class_id=self.key.class_id, subject=self.key.subject,
            title=f"Assignment {self._assignments}", term=self.key.term,
            academic_year=self.key.academic_year, max_score=max_score,
        ))
        self.records.submit(assignment_id, self.key.student_id, raw_score)
        return assignment_id

    def attendance(self, present: int = 0, late: int = 0, absent: int = 0) -> None:
        statuses = ([AttendanceStatus.PRESENT] * present + [AttendanceStatus.LATE] * late
                    + [AttendanceStatus.ABSENT] * absent)
        for status in statuses:
            self.records.mark_attendance(AttendanceEntry(
                student_id=self.key.student_id, class_id=self.key.class_id,
                date=self._next_day, status=status, term=self.key.term,
                academic_year=self.key.academic_year,
            ))
            self._next_day += timedelta(days=1)


@pytest.fixture()
def key() -> NaturalKey:
    return NaturalKey("S001", "5A", "Mathematics", "Term 1", "2024-2025")


@pytest.fixture()
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture()
def store() -> InMemoryCompositeStore:
    return InMemoryCompositeStore()


@pytest.fixture()
def seed(records, key) -> Seeder:
    return Seeder(records, key)


@pytest.fixture()
def audit_trail() -> AuditTrail:
    return AuditTrail()


@pytest.fixture()
def service(store, records, audit_trail) -> CarryMarkService:
    return CarryMarkService(
        store=store,
        assessments=records,
        submissions=records,
        attendance=records,
        config=EngineConfig(retry_backoff=0.0),
        concurrency_manager=ConcurrencyManager(lock_timeout=5.0),
        audit_trail=audit_trail,
    )
