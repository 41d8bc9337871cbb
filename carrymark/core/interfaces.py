"""
Core interfaces and abstract base classes for the Carry Mark platform.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .entities import (
    AssessmentScore, AssignmentSubmission, AttendanceEntry, CompositeRecord, NaturalKey
)


class AssessmentSource(ABC):
    """Read capability over the assessment store."""

    @abstractmethod
    def list_assessments(self, key: NaturalKey) -> List[AssessmentScore]:
        """List assessment scores recorded for the key."""
        pass


class SubmissionSource(ABC):
    """Read capability over the assignment and submission store."""

    @abstractmethod
    def list_submissions(self, key: NaturalKey) -> List[AssignmentSubmission]:
        """List the student's submissions for assignments under the key."""
        pass


class AttendanceSource(ABC):
    """Read capability over the attendance store."""

    @abstractmethod
    def list_attendance(self, key: NaturalKey) -> List[AttendanceEntry]:
        """List attendance entries for the key."""
        pass


class RecordSources(AssessmentSource, SubmissionSource, AttendanceSource):
    """A single store that answers all three read queries."""
    pass


class CompositeRecordStore(ABC):
    """Keyed store for carry mark records with a versioned conditional write."""

    @abstractmethod
    def get(self, key: NaturalKey) -> Optional[CompositeRecord]:
        """Get the record at the key, or None."""
        pass

    @abstractmethod
    def compare_and_set(self, record: CompositeRecord,
                        expected_version: Optional[int]) -> CompositeRecord:
        """Write ``record`` only if the stored version still matches.

        ``expected_version`` None means no record may exist yet. Returns the
        stored record with its new version. Raises ConcurrentUpdateConflict
        when the precondition fails.
        """
        pass

    @abstractmethod
    def list_for_student(self, student_id: str, subject: Optional[str] = None,
                         term: Optional[str] = None,
                         academic_year: Optional[str] = None) -> List[CompositeRecord]:
        """List a student's records, optionally filtered."""
        pass

    @abstractmethod
    def list_for_class(self, class_id: str, subject: Optional[str] = None,
                       term: Optional[str] = None,
                       academic_year: Optional[str] = None) -> List[CompositeRecord]:
        """List a class's records, optionally filtered."""
        pass
