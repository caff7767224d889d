"""
Core module containing the aggregates, their invariants and the error model.
"""

from .entities import *
from .interfaces import *
from .exceptions import *
from .enums import *

__all__ = [
    # Entities
    "AbstractEntity",
    "Student",
    "Course",
    "Payment",
    "FeeObligation",
    "MarkRecord",
    "calculate_grade",
    "derive_fee_status",
    "mark_natural_key",

    # Interfaces
    "Clock",
    "SystemClock",
    "RecordStore",

    # Enums
    "EntityKind",
    "Department",
    "FeeStatus",
    "FeeType",
    "PaymentMode",
    "ExamType",

    # Exceptions
    "RegistrarException",
    "ValidationError",
    "NotFoundError",
    "DuplicateEntityError",
    "AlreadyEnrolledError",
    "NotEnrolledError",
    "CapacityExceededError",
    "CourseNotEmptyError",
    "InvalidAmountError",
    "OverPaymentError",
    "HasPaymentsError",
    "InvalidRangeError",
    "ConcurrencyError",
    "ConflictError",
    "PersistenceError",
    "ConfigurationError",
]
