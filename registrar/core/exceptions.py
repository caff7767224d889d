"""
Custom exceptions for the Registrar platform.

Every error carries a stable ``error_code`` so callers can tell failures
apart without parsing messages.
"""

from typing import Optional, Any, Dict


class RegistrarException(Exception):
    """Base exception for all Registrar errors."""

    default_code = "REGISTRAR_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}


class ValidationError(RegistrarException):
    """Raised when data validation fails."""
    default_code = "VALIDATION_ERROR"


class NotFoundError(RegistrarException):
    """Raised when a referenced entity does not exist."""
    default_code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{entity_type} not found: {entity_id}", details=details)
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEntityError(RegistrarException):
    """Raised when attempting to create a duplicate entity."""
    default_code = "DUPLICATE_ENTITY"


class AlreadyEnrolledError(RegistrarException):
    """Raised when a student is already enrolled in the course."""
    default_code = "ALREADY_ENROLLED"


class NotEnrolledError(RegistrarException):
    """Raised when a student is not enrolled in the course."""
    default_code = "NOT_ENROLLED"


class CapacityExceededError(RegistrarException):
    """Raised when a course has no seats left."""
    default_code = "CAPACITY_EXCEEDED"


class CourseNotEmptyError(RegistrarException):
    """Raised when retiring a course that still has enrolled students."""
    default_code = "COURSE_NOT_EMPTY"


class InvalidAmountError(RegistrarException):
    """Raised when a monetary amount is outside policy."""
    default_code = "INVALID_AMOUNT"


class OverPaymentError(RegistrarException):
    """Raised when a payment exceeds the outstanding due amount."""
    default_code = "OVER_PAYMENT"


class HasPaymentsError(RegistrarException):
    """Raised when deleting an obligation that already has payments."""
    default_code = "HAS_PAYMENTS"


class InvalidRangeError(RegistrarException):
    """Raised when marks fall outside [0, total_marks]."""
    default_code = "INVALID_RANGE"


class ConcurrencyError(RegistrarException):
    """Raised when a conditional commit finds a newer version."""
    default_code = "STALE_VERSION"


class ConflictError(ConcurrencyError):
    """Raised when an atomic update keeps losing the race after bounded retries."""
    default_code = "CONFLICT"


class PersistenceError(RegistrarException):
    """Raised when persistence operations fail."""
    default_code = "PERSISTENCE_ERROR"


class ConfigurationError(RegistrarException):
    """Raised when configuration is invalid."""
    default_code = "CONFIGURATION_ERROR"
