"""
Core entities for the Registrar platform.

Each aggregate keeps its own invariants: a Course never holds more students
than its capacity, a FeeObligation only ever appends payments, and a
MarkRecord keeps its marks inside ``[0, total_marks]``. Derived values
(seats left, amounts owed, settlement status, percentage, grade) are computed
from the stored fields on every read and are never persisted.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set, Tuple, Type, Union

from .enums import (
    EntityKind, FeeStatus, FeeType, PaymentMode, ExamType, GRADE_BANDS, FAIL_GRADE
)
from .exceptions import (
    ValidationError, AlreadyEnrolledError, NotEnrolledError, CapacityExceededError,
    InvalidAmountError, OverPaymentError, InvalidRangeError
)


ZERO = Decimal("0")
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000000000")

Number = Union[int, float, str, Decimal]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[date, datetime, str]) -> datetime:
    """Normalize a date, datetime or ISO string to an aware UTC datetime.

    Plain dates mean midnight UTC of that day; naive datetimes are taken
    to be UTC already.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationError(f"Not a date: {value!r}")


def to_decimal(value: Number, field_name: str = "amount") -> Decimal:
    """Convert a caller-supplied amount to an exact decimal."""
    if isinstance(value, bool):
        raise InvalidAmountError(f"{field_name} must be a number")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"{field_name} must be a number", details={field_name: str(value)})
    if not amount.is_finite():
        raise InvalidAmountError(f"{field_name} must be finite", details={field_name: str(value)})
    if abs(amount) >= MAX_AMOUNT:
        raise InvalidAmountError(f"{field_name} must be below {MAX_AMOUNT}", details={field_name: str(value)})
    if amount != amount.quantize(CENT):
        raise InvalidAmountError(f"{field_name} cannot have more than two decimal places",
                                 details={field_name: str(value)})
    return amount


def _non_negative(value: Number, field_name: str) -> Decimal:
    amount = to_decimal(value, field_name)
    if amount < ZERO:
        raise InvalidAmountError(f"{field_name} cannot be negative", details={field_name: str(amount)})
    return amount


def coerce_enum(enum_cls, value: Any, field_name: str):
    """Convert a raw value to an enum member, raising ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name}: {value!r} (expected one of: {allowed})",
                              details={field_name: value})


def derive_fee_status(due_amount: Decimal, paid_amount: Decimal,
                      due_date: datetime, now: datetime) -> FeeStatus:
    """Settlement status as a pure function of the balance and the clock.

    A partially paid obligation reports PARTIAL even when it is past due;
    OVERDUE is only reachable while nothing has been paid.
    """
    if due_amount <= ZERO:
        return FeeStatus.PAID
    if paid_amount > ZERO:
        return FeeStatus.PARTIAL
    if as_utc(now) > due_date:
        return FeeStatus.OVERDUE
    return FeeStatus.PENDING


def calculate_grade(percentage: float) -> str:
    """Map a percentage to a letter grade using the fixed banding table."""
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return FAIL_GRADE


def mark_natural_key(student_id: str, course_id: str,
                     exam_type: Union[ExamType, str], term: str) -> str:
    """Composite uniqueness key of a mark record."""
    exam = coerce_enum(ExamType, exam_type, "exam_type").value
    return f"{student_id}|{course_id}|{exam}|{term}"


class AbstractEntity(ABC):
    """Base entity with universal ID, timestamps and a version counter."""

    kind: EntityKind

    def __init__(self, entity_id: Optional[str] = None):
        self._id = entity_id or str(uuid.uuid4())
        self._created_at = utc_now()
        self._updated_at = self._created_at
        self._version = 1

    @property
    def id(self) -> str:
        """Get the entity ID."""
        return self._id

    @property
    def created_at(self) -> datetime:
        """Get creation timestamp."""
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        """Get last update timestamp."""
        return self._updated_at

    @property
    def version(self) -> int:
        """Get current version."""
        return self._version

    @property
    def natural_key(self) -> Optional[str]:
        """Business uniqueness key, if the aggregate has one."""
        return None

    def update(self, **kwargs) -> None:
        """Update entity with new data and bump the version."""
        for key, value in kwargs.items():
            if hasattr(self, f"_{key}"):
                setattr(self, f"_{key}", value)
        self._updated_at = utc_now()
        self._version += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert entity to dictionary."""
        return {
            'id': self._id,
            'kind': self.kind.value,
            'created_at': self._created_at.isoformat(),
            'updated_at': self._updated_at.isoformat(),
            'version': self._version,
        }

    def _restore_base(self, data: Dict[str, Any]) -> None:
        self._id = data['id']
        self._created_at = datetime.fromisoformat(data['created_at'])
        self._updated_at = datetime.fromisoformat(data['updated_at'])
        self._version = data['version']

    @classmethod
    @abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AbstractEntity':
        """Rebuild an entity from its ``to_dict`` form."""
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id}, version={self._version})"


class Student(AbstractEntity):
    """Student identity plus the mirror of the courses they are enrolled in."""

    kind = EntityKind.STUDENT

    def __init__(self, first_name: str, last_name: str, department: str,
                 admission_year: int, student_code: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._first_name = first_name
        self._last_name = last_name
        self._department = department
        self._admission_year = admission_year
        self._student_code = student_code
        self._courses: Set[str] = set()  # Course IDs

    @property
    def first_name(self) -> str:
        return self._first_name

    @property
    def last_name(self) -> str:
        return self._last_name

    @property
    def full_name(self) -> str:
        return f"{self._first_name} {self._last_name}"

    @property
    def department(self) -> str:
        return self._department

    @property
    def admission_year(self) -> int:
        return self._admission_year

    @property
    def student_code(self) -> Optional[str]:
        return self._student_code

    @property
    def natural_key(self) -> Optional[str]:
        return self._student_code

    @property
    def courses(self) -> Set[str]:
        return self._courses.copy()

    def add_course(self, course_id: str) -> None:
        """Record enrollment in a course."""
        self._courses.add(course_id)
        self.update()

    def remove_course(self, course_id: str) -> None:
        """Forget enrollment in a course."""
        self._courses.discard(course_id)
        self.update()

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'first_name': self._first_name,
            'last_name': self._last_name,
            'department': self._department,
            'admission_year': self._admission_year,
            'student_code': self._student_code,
            'courses': sorted(self._courses),
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Student':
        student = cls(
            first_name=data['first_name'],
            last_name=data['last_name'],
            department=data['department'],
            admission_year=data['admission_year'],
            student_code=data.get('student_code'),
        )
        student._courses = set(data.get('courses', []))
        student._restore_base(data)
        return student


class Course(AbstractEntity):
    """Course with a bounded set of enrolled students."""

    kind = EntityKind.COURSE

    def __init__(self, course_code: str, title: str, department: str,
                 credits: int, capacity: int, **kwargs):
        super().__init__(**kwargs)
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise ValidationError("Capacity must be a positive integer", details={'capacity': capacity})
        self._course_code = course_code.strip().upper()
        self._title = title
        self._department = department
        self._credits = credits
        self._capacity = capacity
        self._enrolled: Set[str] = set()  # Student IDs

    @property
    def course_code(self) -> str:
        return self._course_code

    @property
    def natural_key(self) -> Optional[str]:
        return self._course_code

    @property
    def title(self) -> str:
        return self._title

    @property
    def department(self) -> str:
        return self._department

    @property
    def credits(self) -> int:
        return self._credits

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def enrolled(self) -> Set[str]:
        return self._enrolled.copy()

    @property
    def enrollment_count(self) -> int:
        return len(self._enrolled)

    @property
    def available_seats(self) -> int:
        return self._capacity - len(self._enrolled)

    @property
    def is_full(self) -> bool:
        return len(self._enrolled) >= self._capacity

    def is_enrolled(self, student_id: str) -> bool:
        return student_id in self._enrolled

    def enroll_student(self, student_id: str) -> None:
        """Take a seat for a student."""
        if student_id in self._enrolled:
            raise AlreadyEnrolledError(
                f"Student {student_id} is already enrolled in {self._course_code}",
                details={'course_id': self._id, 'student_id': student_id}
            )
        if self.is_full:
            raise CapacityExceededError(
                f"Course {self._course_code} is full ({self._capacity} seats)",
                details={'course_id': self._id, 'capacity': self._capacity}
            )
        self._enrolled.add(student_id)
        self.update()

    def drop_student(self, student_id: str) -> None:
        """Release a student's seat."""
        if student_id not in self._enrolled:
            raise NotEnrolledError(
                f"Student {student_id} is not enrolled in {self._course_code}",
                details={'course_id': self._id, 'student_id': student_id}
            )
        self._enrolled.remove(student_id)
        self.update()

    def revise(self, title: Optional[str] = None, credits: Optional[int] = None,
               capacity: Optional[int] = None) -> None:
        """Change catalogue details; capacity never drops below current enrollment."""
        changes: Dict[str, Any] = {}
        if title is not None:
            if not title.strip():
                raise ValidationError("Title cannot be empty")
            changes['title'] = title
        if credits is not None:
            if isinstance(credits, bool) or not isinstance(credits, int) or credits < 1:
                raise ValidationError("Credits must be a positive integer", details={'credits': credits})
            changes['credits'] = credits
        if capacity is not None:
            if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
                raise ValidationError("Capacity must be a positive integer", details={'capacity': capacity})
            if capacity < len(self._enrolled):
                raise CapacityExceededError(
                    f"Course {self._course_code} has {len(self._enrolled)} students enrolled",
                    details={'course_id': self._id, 'capacity': capacity,
                             'enrollment_count': len(self._enrolled)}
                )
            changes['capacity'] = capacity
        if changes:
            self.update(**changes)

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'course_code': self._course_code,
            'title': self._title,
            'department': self._department,
            'credits': self._credits,
            'capacity': self._capacity,
            'enrolled': sorted(self._enrolled),
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Course':
        course = cls(
            course_code=data['course_code'],
            title=data['title'],
            department=data['department'],
            credits=data['credits'],
            capacity=data['capacity'],
        )
        course._enrolled = set(data.get('enrolled', []))
        course._restore_base(data)
        return course


@dataclass(frozen=True)
class Payment:
    """Immutable entry in an obligation's payment history."""
    amount: Decimal
    mode: PaymentMode
    paid_at: datetime
    reference: Optional[str] = None
    remarks: Optional[str] = None
    received_by: Optional[str] = None
    payment_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'payment_id': self.payment_id,
            'amount': str(self.amount),
            'mode': self.mode.value,
            'paid_at': self.paid_at.isoformat(),
            'reference': self.reference,
            'remarks': self.remarks,
            'received_by': self.received_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            amount=Decimal(data['amount']),
            mode=PaymentMode(data['mode']),
            paid_at=datetime.fromisoformat(data['paid_at']),
            reference=data.get('reference'),
            remarks=data.get('remarks'),
            received_by=data.get('received_by'),
            payment_id=data['payment_id'],
        )


class FeeObligation(AbstractEntity):
    """A fee owed by one student for a term, backed by an append-only ledger."""

    kind = EntityKind.FEE_OBLIGATION

    def __init__(self, student_id: str, term: str, fee_type: Union[FeeType, str],
                 total_amount: Number, due_date: Union[date, datetime, str],
                 discount: Number = 0, late_fee: Number = 0,
                 remarks: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._student_id = student_id
        self._term = term
        self._fee_type = coerce_enum(FeeType, fee_type, "fee_type")
        self._total_amount = _non_negative(total_amount, "total_amount")
        self._discount = _non_negative(discount, "discount")
        self._late_fee = _non_negative(late_fee, "late_fee")
        self._due_date = as_utc(due_date)
        self._remarks = remarks
        self._payment_history: List[Payment] = []

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def term(self) -> str:
        return self._term

    @property
    def fee_type(self) -> FeeType:
        return self._fee_type

    @property
    def total_amount(self) -> Decimal:
        return self._total_amount

    @property
    def discount(self) -> Decimal:
        return self._discount

    @property
    def late_fee(self) -> Decimal:
        return self._late_fee

    @property
    def due_date(self) -> datetime:
        return self._due_date

    @property
    def remarks(self) -> Optional[str]:
        return self._remarks

    @property
    def payment_history(self) -> Tuple[Payment, ...]:
        return tuple(self._payment_history)

    @property
    def paid_amount(self) -> Decimal:
        return sum((payment.amount for payment in self._payment_history), ZERO)

    @property
    def due_amount(self) -> Decimal:
        # Negative means overpaid; never clamped.
        return self._total_amount - self.paid_amount + self._late_fee - self._discount

    def status_at(self, now: datetime) -> FeeStatus:
        return derive_fee_status(self.due_amount, self.paid_amount, self._due_date, now)

    def is_past_due(self, now: datetime) -> bool:
        return as_utc(now) > self._due_date

    def apply_payment(self, payment: Payment) -> None:
        """Append a payment, refusing anything that would overpay."""
        if payment.amount <= ZERO:
            raise InvalidAmountError(
                "Payment amount must be greater than zero",
                details={'amount': str(payment.amount)}
            )
        due = self.due_amount
        if payment.amount > due:
            raise OverPaymentError(
                f"Payment of {payment.amount} exceeds due amount {due}",
                details={'amount': str(payment.amount), 'due_amount': str(due)}
            )
        self._payment_history.append(payment)
        self.update()

    def revise(self, total_amount: Optional[Number] = None,
               due_date: Optional[Union[date, datetime, str]] = None,
               discount: Optional[Number] = None, late_fee: Optional[Number] = None,
               remarks: Optional[str] = None) -> None:
        """Change the editable terms of the obligation; payments are untouched."""
        changes: Dict[str, Any] = {}
        if total_amount is not None:
            changes['total_amount'] = _non_negative(total_amount, "total_amount")
        if discount is not None:
            changes['discount'] = _non_negative(discount, "discount")
        if late_fee is not None:
            changes['late_fee'] = _non_negative(late_fee, "late_fee")
        if due_date is not None:
            changes['due_date'] = as_utc(due_date)
        if remarks is not None:
            changes['remarks'] = remarks
        self.update(**changes)

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'student_id': self._student_id,
            'term': self._term,
            'fee_type': self._fee_type.value,
            'total_amount': str(self._total_amount),
            'discount': str(self._discount),
            'late_fee': str(self._late_fee),
            'due_date': self._due_date.isoformat(),
            'remarks': self._remarks,
            'payment_history': [payment.to_dict() for payment in self._payment_history],
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeeObligation':
        obligation = cls(
            student_id=data['student_id'],
            term=data['term'],
            fee_type=data['fee_type'],
            total_amount=Decimal(data['total_amount']),
            due_date=data['due_date'],
            discount=Decimal(data['discount']),
            late_fee=Decimal(data['late_fee']),
            remarks=data.get('remarks'),
        )
        obligation._payment_history = [Payment.from_dict(p) for p in data.get('payment_history', [])]
        obligation._restore_base(data)
        return obligation


def _validate_marks(marks_obtained: float, total_marks: float) -> None:
    for name, value in (("marks_obtained", marks_obtained), ("total_marks", total_marks)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidRangeError(f"{name} must be a number", details={name: value})
    if total_marks <= 0:
        raise InvalidRangeError("Total marks must be greater than zero",
                                details={'total_marks': total_marks})
    if marks_obtained < 0 or marks_obtained > total_marks:
        raise InvalidRangeError(
            "Marks obtained cannot be negative or greater than total marks",
            details={'marks_obtained': marks_obtained, 'total_marks': total_marks}
        )


class MarkRecord(AbstractEntity):
    """Marks for one (student, course, exam type, term) with a publish flag."""

    kind = EntityKind.MARK_RECORD

    def __init__(self, student_id: str, course_id: str, term: str,
                 exam_type: Union[ExamType, str], marks_obtained: float,
                 total_marks: float, remarks: Optional[str] = None,
                 entered_by: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        _validate_marks(marks_obtained, total_marks)
        self._student_id = student_id
        self._course_id = course_id
        self._term = term
        self._exam_type = coerce_enum(ExamType, exam_type, "exam_type")
        self._marks_obtained = marks_obtained
        self._total_marks = total_marks
        self._remarks = remarks
        self._entered_by = entered_by
        self._published = False
        self._published_at: Optional[datetime] = None
        self._publication_overrides: List[Dict[str, Any]] = []

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def course_id(self) -> str:
        return self._course_id

    @property
    def term(self) -> str:
        return self._term

    @property
    def exam_type(self) -> ExamType:
        return self._exam_type

    @property
    def natural_key(self) -> Optional[str]:
        return mark_natural_key(self._student_id, self._course_id, self._exam_type, self._term)

    @property
    def marks_obtained(self) -> float:
        return self._marks_obtained

    @property
    def total_marks(self) -> float:
        return self._total_marks

    @property
    def percentage(self) -> float:
        return self._marks_obtained * 100 / self._total_marks

    @property
    def grade(self) -> str:
        return calculate_grade(self.percentage)

    @property
    def remarks(self) -> Optional[str]:
        return self._remarks

    @property
    def entered_by(self) -> Optional[str]:
        return self._entered_by

    @property
    def published(self) -> bool:
        return self._published

    @property
    def published_at(self) -> Optional[datetime]:
        return self._published_at

    @property
    def publication_overrides(self) -> List[Dict[str, Any]]:
        return [dict(entry) for entry in self._publication_overrides]

    def revise(self, marks_obtained: float, total_marks: float,
               remarks: Optional[str] = None, entered_by: Optional[str] = None) -> None:
        """Overwrite the marks in place."""
        _validate_marks(marks_obtained, total_marks)
        self.update(marks_obtained=marks_obtained, total_marks=total_marks,
                    remarks=remarks, entered_by=entered_by)

    def publish(self, now: datetime) -> bool:
        """Publish the marks. Returns False when already published."""
        if self._published:
            return False
        self.update(published=True, published_at=as_utc(now))
        return True

    def revoke_publication(self, actor: str, reason: str, now: datetime) -> None:
        """Audited override that takes published marks back down."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to revoke publication")
        if not self._published:
            raise ValidationError("Marks are not published", details={'mark_id': self._id})
        self._publication_overrides.append({
            'actor': actor,
            'reason': reason.strip(),
            'revoked_at': as_utc(now).isoformat(),
            'previously_published_at': self._published_at.isoformat() if self._published_at else None,
        })
        self.update(published=False, published_at=None)

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'student_id': self._student_id,
            'course_id': self._course_id,
            'term': self._term,
            'exam_type': self._exam_type.value,
            'marks_obtained': self._marks_obtained,
            'total_marks': self._total_marks,
            'remarks': self._remarks,
            'entered_by': self._entered_by,
            'published': self._published,
            'published_at': self._published_at.isoformat() if self._published_at else None,
            'publication_overrides': self.publication_overrides,
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MarkRecord':
        record = cls(
            student_id=data['student_id'],
            course_id=data['course_id'],
            term=data['term'],
            exam_type=data['exam_type'],
            marks_obtained=data['marks_obtained'],
            total_marks=data['total_marks'],
            remarks=data.get('remarks'),
            entered_by=data.get('entered_by'),
        )
        record._published = data.get('published', False)
        published_at = data.get('published_at')
        record._published_at = datetime.fromisoformat(published_at) if published_at else None
        record._publication_overrides = list(data.get('publication_overrides', []))
        record._restore_base(data)
        return record


ENTITY_TYPES: Dict[EntityKind, Type[AbstractEntity]] = {
    EntityKind.STUDENT: Student,
    EntityKind.COURSE: Course,
    EntityKind.FEE_OBLIGATION: FeeObligation,
    EntityKind.MARK_RECORD: MarkRecord,
}


def entity_from_dict(data: Dict[str, Any]) -> AbstractEntity:
    """Rebuild an entity from its ``to_dict`` form."""
    return ENTITY_TYPES[EntityKind(data['kind'])].from_dict(data)
