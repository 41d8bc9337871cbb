"""
Core module containing the record model, interfaces and exceptions.
"""

from .entities import *
from .interfaces import *
from .exceptions import *
from .enums import *
from .audit import AuditLogEntry

__all__ = [
    # Entities
    "NaturalKey",
    "Weights",
    "AssessmentScore",
    "Assignment",
    "AssignmentSubmission",
    "AttendanceEntry",
    "CompositeRecord",
    "AuditLogEntry",
    
    # Interfaces
    "AssessmentSource",
    "SubmissionSource",
    "AttendanceSource",
    "RecordSources",
    "CompositeRecordStore",
    
    # Enums
    "AssessmentType",
    "AttendanceStatus",
    "CompositeField",
    "MissingComponentPolicy",
    "RoundingMode",
    "RecomputeOutcome",
    "AuditAction",
    
    # Exceptions
    "CarryMarkException",
    "ValidationError",
    "DataUnavailable",
    "InvalidWeights",
    "InvalidGradeScale",
    "ConcurrentUpdateConflict",
    "RecordNotFound",
    "PersistenceError",
    "IntegrityViolation",
    "ConfigurationError",
]
