"""
Repository pattern implementations for data access.
"""

import json
import logging
import threading
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..core.audit import AuditLogEntry
from ..core.entities import (
    AssessmentScore, Assignment, AssignmentSubmission, AttendanceEntry,
    CompositeRecord, NaturalKey, Weights, check_score_range
)
from ..core.enums import AssessmentType, AttendanceStatus
from ..core.exceptions import (
    ConcurrentUpdateConflict, DataUnavailable, IntegrityViolation, PersistenceError,
    RecordNotFound, ValidationError
)
from ..core.interfaces import CompositeRecordStore, RecordSources
from .database import DatabaseManager


logger = logging.getLogger(__name__)

_KEY_CLAUSE = "student_id = ? AND class_id = ? AND subject = ? AND term = ? AND academic_year = ?"


class CarryMarkRepository(CompositeRecordStore):
    """SQL-backed carry mark store.

    The natural key is the table's primary key. Inserts rely on it to reject
    a second record for a key; updates only apply when the stored version
    still matches, so a lost race surfaces as ConcurrentUpdateConflict.
    """

    def __init__(self, database: DatabaseManager):
        self._database = database

    def get(self, key: NaturalKey) -> Optional[CompositeRecord]:
        rows = self._database.execute_query(
            f"SELECT * FROM carry_marks WHERE {_KEY_CLAUSE}", key.as_tuple())
        return self._record_from_row(rows[0]) if rows else None

    def compare_and_set(self, record: CompositeRecord,
                        expected_version: Optional[int]) -> CompositeRecord:
        if expected_version is None:
            stored = record.with_fields(version=1)
            try:
                self._database.execute_update(
                    """
                    INSERT INTO carry_marks (
                        student_id, class_id, subject, term, academic_year,
                        assessment_average, assignment_average, attendance_percentage,
                        weights, final_score, grade, assessment_breakdown,
                        manually_adjusted_fields, computed_at, created_at, version
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    record.key.as_tuple() + self._value_params(stored) + (
                        stored.created_at.isoformat(), stored.version)
                )
            except IntegrityViolation:
                raise ConcurrentUpdateConflict(
                    f"Carry mark {record.key} was created concurrently",
                    error_code="VERSION_CONFLICT",
                    details={'key': record.key.to_dict()}
                )
            return stored

        stored = record.with_fields(version=expected_version + 1)
        updated = self._database.execute_update(
            f"""
            UPDATE carry_marks SET
                assessment_average = ?, assignment_average = ?, attendance_percentage = ?,
                weights = ?, final_score = ?, grade = ?, assessment_breakdown = ?,
                manually_adjusted_fields = ?, computed_at = ?, version = ?
            WHERE {_KEY_CLAUSE} AND version = ?
            """,
            self._value_params(stored) + (stored.version,) + record.key.as_tuple()
            + (expected_version,)
        )
        if updated == 0:
            raise ConcurrentUpdateConflict(
                f"Carry mark {record.key} changed since version {expected_version}",
                error_code="VERSION_CONFLICT",
                details={'key': record.key.to_dict()}
            )
        return stored

    def list_for_student(self, student_id: str, subject: Optional[str] = None,
                         term: Optional[str] = None,
                         academic_year: Optional[str] = None) -> List[CompositeRecord]:
        return self._find_all({'student_id': student_id, 'subject': subject, 'term': term,
                               'academic_year': academic_year})

    def list_for_class(self, class_id: str, subject: Optional[str] = None,
                       term: Optional[str] = None,
                       academic_year: Optional[str] = None) -> List[CompositeRecord]:
        return self._find_all({'class_id': class_id, 'subject': subject, 'term': term,
                               'academic_year': academic_year})

    def _find_all(self, filters: Dict[str, Optional[str]]) -> List[CompositeRecord]:
        query = "SELECT * FROM carry_marks WHERE 1 = 1"
        params = []
        for column, value in filters.items():
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY student_id, class_id, subject, term, academic_year"
        return [self._record_from_row(row)
                for row in self._database.execute_query(query, tuple(params))]

    @staticmethod
    def _value_params(record: CompositeRecord) -> tuple:
        return (
            record.assessment_average,
            record.assignment_average,
            record.attendance_percentage,
            json.dumps(record.weights.to_dict()),
            record.final_score,
            record.grade,
            json.dumps(record.assessment_breakdown, sort_keys=True),
            json.dumps(sorted(record.manually_adjusted_fields)),
            record.computed_at.isoformat(),
        )

    @staticmethod
    def _record_from_row(row: Dict[str, Any]) -> CompositeRecord:
        try:
            data = dict(row)
            data['weights'] = json.loads(data['weights'])
            data['assessment_breakdown'] = json.loads(data['assessment_breakdown'])
            data['manually_adjusted_fields'] = json.loads(data['manually_adjusted_fields'])
            return CompositeRecord.from_dict(data)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise PersistenceError(f"Corrupt carry mark row: {str(e)}")


class SqlRecordStore(RecordSources):
    """SQL-backed assessment, assignment and attendance records."""

    def __init__(self, database: DatabaseManager):
        self._database = database

    # Writes

    def add_assessment(self, score: AssessmentScore) -> AssessmentScore:
        """Record a score; re-recording the same assessment type replaces it."""
        check_score_range(score.raw_score, score.max_score, f"{score.assessment_type.value} score")
        self._database.execute_update(
            """
            INSERT INTO assessments (id, student_id, class_id, subject, assessment_type,
                                     raw_score, max_score, term, academic_year)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (student_id, class_id, subject, term, academic_year, assessment_type)
            DO UPDATE SET raw_score = excluded.raw_score, max_score = excluded.max_score
            """,
            (score.assessment_id or str(uuid.uuid4()), score.student_id, score.class_id,
             score.subject, score.assessment_type.value, score.raw_score, score.max_score,
             score.term, score.academic_year)
        )
        rows = self._database.execute_query(
            f"SELECT id FROM assessments WHERE {_KEY_CLAUSE} AND assessment_type = ?",
            (score.student_id, score.class_id, score.subject, score.term, score.academic_year,
             score.assessment_type.value))
        assessment_id = rows[0]['id']
        return AssessmentScore(
            student_id=score.student_id, class_id=score.class_id, subject=score.subject,
            assessment_type=score.assessment_type, raw_score=score.raw_score,
            term=score.term, academic_year=score.academic_year, max_score=score.max_score,
            assessment_id=assessment_id,
        )

    def add_assignment(self, assignment: Assignment) -> Assignment:
        self._database.execute_update(
            """
            INSERT INTO assignments (id, class_id, subject, title, max_score, term, academic_year)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (assignment.assignment_id, assignment.class_id, assignment.subject, assignment.title,
             assignment.max_score, assignment.term, assignment.academic_year)
        )
        return assignment

    def find_assignment(self, assignment_id: str) -> Optional[Assignment]:
        rows = self._database.execute_query("SELECT * FROM assignments WHERE id = ?",
                                            (assignment_id,))
        if not rows:
            return None
        row = rows[0]
        return Assignment(assignment_id=row['id'], class_id=row['class_id'],
                          subject=row['subject'], title=row['title'],
                          term=row['term'], academic_year=row['academic_year'],
                          max_score=row['max_score'])

    def submit(self, assignment_id: str, student_id: str, raw_score: Optional[float]) -> None:
        """Record (or replace) a submission. ``raw_score`` None means not submitted."""
        assignment = self.find_assignment(assignment_id)
        if assignment is None:
            raise RecordNotFound(f"Unknown assignment {assignment_id}")
        if raw_score is not None:
            check_score_range(raw_score, assignment.max_score, f"submission for {assignment_id}")
        try:
            self._database.execute_update(
                """
                INSERT INTO assignment_submissions (assignment_id, student_id, raw_score)
                VALUES (?, ?, ?)
                ON CONFLICT (assignment_id, student_id) DO UPDATE SET raw_score = excluded.raw_score
                """,
                (assignment_id, student_id, raw_score)
            )
        except IntegrityViolation:
            raise RecordNotFound(f"Unknown assignment {assignment_id}")

    def mark_attendance(self, entry: AttendanceEntry) -> AttendanceEntry:
        """Record attendance; re-marking the same date replaces the status."""
        self._database.execute_update(
            """
            INSERT INTO attendance (student_id, class_id, date, status, term, academic_year)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (student_id, class_id, date) DO UPDATE SET
                status = excluded.status, term = excluded.term,
                academic_year = excluded.academic_year
            """,
            (entry.student_id, entry.class_id, entry.date.isoformat(), entry.status.value,
             entry.term, entry.academic_year)
        )
        return entry

    # Reads

    def list_assessments(self, key: NaturalKey) -> List[AssessmentScore]:
        rows = self._database.execute_query(
            f"SELECT * FROM assessments WHERE {_KEY_CLAUSE} ORDER BY created_at, id",
            key.as_tuple())
        try:
            return [
                AssessmentScore(
                    student_id=row['student_id'], class_id=row['class_id'],
                    subject=row['subject'],
                    assessment_type=AssessmentType(row['assessment_type']),
                    raw_score=row['raw_score'], term=row['term'],
                    academic_year=row['academic_year'], max_score=row['max_score'],
                    assessment_id=row['id'],
                )
                for row in rows
            ]
        except (KeyError, ValueError) as e:
            raise DataUnavailable(f"Malformed assessment row: {str(e)}", error_code="MALFORMED_RECORD")

    def list_submissions(self, key: NaturalKey) -> List[AssignmentSubmission]:
        rows = self._database.execute_query(
            """
            SELECT s.assignment_id, s.student_id, s.raw_score, a.max_score, a.term, a.academic_year
            FROM assignment_submissions s
            JOIN assignments a ON a.id = s.assignment_id
            WHERE s.student_id = ? AND a.class_id = ? AND a.subject = ?
              AND a.term = ? AND a.academic_year = ?
            ORDER BY s.assignment_id
            """,
            key.as_tuple())
        return [
            AssignmentSubmission(
                assignment_id=row['assignment_id'], student_id=row['student_id'],
                raw_score=row['raw_score'], max_score=row['max_score'],
                term=row['term'], academic_year=row['academic_year'],
            )
            for row in rows
        ]

    def list_attendance(self, key: NaturalKey) -> List[AttendanceEntry]:
        rows = self._database.execute_query(
            """
            SELECT * FROM attendance
            WHERE student_id = ? AND class_id = ? AND term = ? AND academic_year = ?
            ORDER BY date
            """,
            (key.student_id, key.class_id, key.term, key.academic_year))
        try:
            return [
                AttendanceEntry(
                    student_id=row['student_id'], class_id=row['class_id'],
                    date=date.fromisoformat(row['date']),
                    status=AttendanceStatus(row['status']),
                    term=row['term'], academic_year=row['academic_year'],
                )
                for row in rows
            ]
        except (KeyError, ValueError) as e:
            raise DataUnavailable(f"Malformed attendance row: {str(e)}", error_code="MALFORMED_RECORD")


class AuditRepository:
    """Append-only storage for audit trail entries."""

    def __init__(self, database: DatabaseManager):
        self._database = database
        self._lock = threading.RLock()

    def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._database.execute_update(
                """
                INSERT INTO audit_log (id, action, resource_id, actor, data, prev_hash, hash, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (entry.id, entry.action, entry.resource_id, entry.actor,
                 json.dumps(entry.data, sort_keys=True, default=str), entry.prev_hash,
                 entry.hash, entry.recorded_at.isoformat())
            )

    def find_all(self, resource_id: Optional[str] = None) -> List[AuditLogEntry]:
        query = "SELECT * FROM audit_log"
        params: tuple = ()
        if resource_id is not None:
            query += " WHERE resource_id = ?"
            params = (resource_id,)
        query += " ORDER BY seq"
        return [
            AuditLogEntry(
                action=row['action'], resource_id=row['resource_id'], actor=row['actor'],
                data=json.loads(row['data']), prev_hash=row['prev_hash'],
                entry_id=row['id'], recorded_at=datetime.fromisoformat(row['recorded_at']),
            )
            for row in self._database.execute_query(query, params)
        ]

    def last_hash(self) -> Optional[str]:
        rows = self._database.execute_query(
            "SELECT hash FROM audit_log ORDER BY seq DESC LIMIT 1")
        return rows[0]['hash'] if rows else None
