"""
Custom exceptions for the Carry Mark platform.
"""

from typing import Optional, Any, Dict


class CarryMarkException(Exception):
    """Base exception for all Carry Mark errors."""
    
    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(CarryMarkException):
    """Raised when data validation fails."""
    pass


class DataUnavailable(CarryMarkException):
    """Raised when a record store cannot be read or returns malformed records.

    Transient from the engine's point of view: the caller may retry.
    """
    pass


class InvalidWeights(CarryMarkException):
    """Raised when a weight vector is negative or does not sum to 100."""
    pass


class InvalidGradeScale(CarryMarkException):
    """Raised when grade bands overlap or are malformed."""
    pass


class ConcurrentUpdateConflict(CarryMarkException):
    """Raised when an optimistic upsert loses a race on the natural key."""
    pass


class RecordNotFound(CarryMarkException):
    """Raised when a carry mark record is required but does not exist."""
    pass


class PersistenceError(CarryMarkException):
    """Raised when persistence operations fail."""
    pass


class ConfigurationError(CarryMarkException):
    """Raised when configuration is invalid."""
    pass


class IntegrityViolation(PersistenceError):
    """Raised when a write breaks a uniqueness or integrity constraint."""
    pass
