"""
Enumerations and constants for the Registrar platform.
"""

from enum import Enum


class EntityKind(Enum):
    """Kinds of aggregates held by the record store."""
    STUDENT = "student"
    COURSE = "course"
    FEE_OBLIGATION = "fee_obligation"
    MARK_RECORD = "mark_record"


class Department(Enum):
    """Academic departments."""
    COMPUTER_SCIENCE = "Computer Science"
    INFORMATION_TECHNOLOGY = "Information Technology"
    ELECTRONICS = "Electronics"
    MECHANICAL = "Mechanical"
    CIVIL = "Civil"
    ELECTRICAL = "Electrical"


class FeeStatus(Enum):
    """Settlement status of a fee obligation."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class FeeType(Enum):
    """Types of fee obligations."""
    TUITION = "tuition"
    EXAMINATION = "examination"
    LIBRARY = "library"
    SPORTS = "sports"
    HOSTEL = "hostel"
    TRANSPORT = "transport"
    OTHER = "other"


class PaymentMode(Enum):
    """Accepted payment modes."""
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    CHEQUE = "cheque"


class ExamType(Enum):
    """Assessment types a mark can be recorded for."""
    INTERNAL = "internal"
    MIDTERM = "midterm"
    ENDTERM = "endterm"
    ASSIGNMENT = "assignment"
    PROJECT = "project"


# Percentage floor -> letter grade, evaluated top-down.
GRADE_BANDS = (
    (90, "O"),
    (80, "A+"),
    (70, "A"),
    (60, "B+"),
    (50, "B"),
    (40, "C"),
    (35, "P"),
)

FAIL_GRADE = "F"
