"""
REST API implementation for the Registrar platform using FastAPI.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..core.entities import Course, FeeObligation, MarkRecord, Payment, Student
from ..core.exceptions import RegistrarException
from ..services import (
    ConcurrencyManager, EnrollmentService, FeeLedgerService, GradebookService, RegistryService
)

logger = logging.getLogger(__name__)


ERROR_STATUS = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ALREADY_ENROLLED": status.HTTP_409_CONFLICT,
    "NOT_ENROLLED": status.HTTP_409_CONFLICT,
    "CAPACITY_EXCEEDED": status.HTTP_409_CONFLICT,
    "COURSE_NOT_EMPTY": status.HTTP_409_CONFLICT,
    "HAS_PAYMENTS": status.HTTP_409_CONFLICT,
    "DUPLICATE_ENTITY": status.HTTP_409_CONFLICT,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "STALE_VERSION": status.HTTP_409_CONFLICT,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "OVER_PAYMENT": status.HTTP_400_BAD_REQUEST,
    "INVALID_RANGE": status.HTTP_400_BAD_REQUEST,
}


# Pydantic models for API
class StudentCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    department: str = Field(..., min_length=1)
    admission_year: int


class StudentResponse(BaseModel):
    id: str
    student_code: Optional[str] = None
    first_name: str
    last_name: str
    department: str
    admission_year: int
    courses: List[str] = []
    created_at: datetime
    updated_at: datetime
    version: int


class CourseCreate(BaseModel):
    course_code: str = Field(..., min_length=1, max_length=20)
    title: str = Field(..., min_length=1, max_length=200)
    department: str = Field(..., min_length=1)
    credits: int
    capacity: int


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    credits: Optional[int] = None
    capacity: Optional[int] = None


class CourseResponse(BaseModel):
    id: str
    course_code: str
    title: str
    department: str
    credits: int
    capacity: int
    enrolled: List[str] = []
    enrollment_count: int
    available_seats: int
    is_full: bool
    created_at: datetime
    updated_at: datetime
    version: int


class EnrollmentRequest(BaseModel):
    student_id: str = Field(..., min_length=1)


class FeeCreate(BaseModel):
    student_id: str = Field(..., min_length=1)
    term: str = Field(..., min_length=1)
    fee_type: str
    total_amount: Decimal
    due_date: datetime
    discount: Decimal = Decimal("0")
    late_fee: Decimal = Decimal("0")
    remarks: Optional[str] = None


class FeeUpdate(BaseModel):
    total_amount: Optional[Decimal] = None
    due_date: Optional[datetime] = None
    discount: Optional[Decimal] = None
    late_fee: Optional[Decimal] = None
    remarks: Optional[str] = None


class PaymentCreate(BaseModel):
    amount: Decimal
    mode: str
    reference: Optional[str] = None
    remarks: Optional[str] = None
    received_by: Optional[str] = None


class PaymentResponse(BaseModel):
    payment_id: str
    amount: str
    mode: str
    paid_at: datetime
    reference: Optional[str] = None
    remarks: Optional[str] = None
    received_by: Optional[str] = None


class FeeResponse(BaseModel):
    id: str
    student_id: str
    term: str
    fee_type: str
    total_amount: str
    discount: str
    late_fee: str
    paid_amount: str
    due_amount: str
    status: str
    is_past_due: bool
    due_date: datetime
    remarks: Optional[str] = None
    payment_history: List[PaymentResponse] = []
    created_at: datetime
    updated_at: datetime
    version: int


class FeeSummaryResponse(BaseModel):
    student_id: str
    obligations: List[FeeResponse]
    total_amount: str
    paid_amount: str
    due_amount: str


class MarkCreate(BaseModel):
    student_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)
    term: str = Field(..., min_length=1)
    exam_type: str
    marks_obtained: float
    total_marks: float
    remarks: Optional[str] = None
    entered_by: Optional[str] = None


class RevokeRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    reason: str


class MarkResponse(BaseModel):
    id: str
    student_id: str
    course_id: str
    term: str
    exam_type: str
    marks_obtained: float
    total_marks: float
    percentage: float
    grade: str
    remarks: Optional[str] = None
    entered_by: Optional[str] = None
    published: bool
    published_at: Optional[datetime] = None
    publication_overrides: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: datetime
    version: int


class ReportResponse(BaseModel):
    student_id: str
    terms: Dict[str, Dict[str, Any]]
    overall: Dict[str, Any]
    marks: List[MarkResponse]


class StatisticsResponse(BaseModel):
    success: bool
    message: str
    statistics: Dict[str, Any]


def _stringify_decimals(value: Any) -> Any:
    """Render Decimals as exact strings inside nested dicts."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _stringify_decimals(item) for key, item in value.items()}
    return value


class RegistrarRestAPI:
    """REST API implementation for the Registrar platform.

    Routes are plain ``def`` handlers, so FastAPI runs them in its worker
    thread pool and concurrent requests reach the services concurrently;
    the services serialize per aggregate.
    """

    def __init__(self, registry_service: RegistryService, enrollment_service: EnrollmentService,
                 fee_ledger: FeeLedgerService, gradebook: GradebookService,
                 concurrency_manager: ConcurrencyManager):
        self._registry = registry_service
        self._enrollment_service = enrollment_service
        self._fee_ledger = fee_ledger
        self._gradebook = gradebook
        self._concurrency_manager = concurrency_manager

        # Create FastAPI app
        self.app = FastAPI(
            title="Registrar API",
            description="Enrollment, fee ledger and gradebook records for an institution",
            version="1.0.0",
            docs_url="/docs",
            redoc_url="/redoc"
        )

        # Add CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self.app.add_exception_handler(RegistrarException, self._handle_registrar_error)

        # Setup routes
        self._setup_routes()

    async def _handle_registrar_error(self, request: Request, exc: RegistrarException) -> JSONResponse:
        status_code = ERROR_STATUS.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.warning("%s %s rejected [%s]: %s", request.method, request.url.path,
                           exc.error_code, exc.message)
        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "error_code": exc.error_code,
                "message": exc.message,
                "details": jsonable_encoder(exc.details),
            },
        )

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/", response_model=Dict[str, str])
        def root():
            """Root endpoint."""
            return {
                "message": "Registrar API",
                "version": "1.0.0",
                "docs": "/docs"
            }

        @self.app.get("/health", response_model=Dict[str, str])
        def health_check():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        # Student endpoints
        @self.app.post("/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
        def create_student(student_data: StudentCreate):
            """Register a new student."""
            student = self._registry.register_student(
                first_name=student_data.first_name,
                last_name=student_data.last_name,
                department=student_data.department,
                admission_year=student_data.admission_year,
            )
            logger.info("Registered student %s", student.student_code)
            return self._student_to_response(student)

        @self.app.get("/students", response_model=List[StudentResponse])
        def list_students(department: Optional[str] = Query(None)):
            return [self._student_to_response(s) for s in self._registry.list_students(department)]

        @self.app.get("/students/{student_id}", response_model=StudentResponse)
        def get_student(student_id: str):
            return self._student_to_response(self._registry.get_student(student_id))

        @self.app.get("/students/{student_id}/courses", response_model=List[CourseResponse])
        def get_student_courses(student_id: str):
            return [self._course_to_response(c) for c in self._enrollment_service.student_courses(student_id)]

        @self.app.get("/students/{student_id}/fees", response_model=FeeSummaryResponse)
        def get_student_fees(student_id: str):
            """Fee obligations of a student with totals."""
            summary = self._fee_ledger.student_summary(student_id)
            return FeeSummaryResponse(
                student_id=student_id,
                obligations=[self._fee_to_response(f) for f in summary['obligations']],
                total_amount=str(summary['total_amount']),
                paid_amount=str(summary['paid_amount']),
                due_amount=str(summary['due_amount']),
            )

        @self.app.get("/students/{student_id}/marks", response_model=Dict[str, List[MarkResponse]])
        def get_student_marks(student_id: str):
            """Marks of a student grouped by term."""
            grouped = self._gradebook.marks_for_student(student_id)
            return {term: [self._mark_to_response(m) for m in marks] for term, marks in grouped.items()}

        @self.app.get("/students/{student_id}/report", response_model=ReportResponse)
        def get_student_report(student_id: str):
            report = self._gradebook.student_report(student_id)
            return ReportResponse(
                student_id=student_id,
                terms=report['terms'],
                overall=report['overall'],
                marks=[self._mark_to_response(m) for m in report['marks']],
            )

        # Course endpoints
        @self.app.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
        def create_course(course_data: CourseCreate):
            """Add a course to the catalogue."""
            course = self._registry.register_course(
                course_code=course_data.course_code,
                title=course_data.title,
                department=course_data.department,
                credits=course_data.credits,
                capacity=course_data.capacity,
            )
            logger.info("Registered course %s (capacity %d)", course.course_code, course.capacity)
            return self._course_to_response(course)

        @self.app.get("/courses", response_model=List[CourseResponse])
        def list_courses():
            return [self._course_to_response(c) for c in self._registry.list_courses()]

        @self.app.get("/courses/{course_id}", response_model=CourseResponse)
        def get_course(course_id: str):
            return self._course_to_response(self._enrollment_service.get_course(course_id))

        @self.app.put("/courses/{course_id}", response_model=CourseResponse)
        def update_course(course_id: str, course_data: CourseUpdate):
            """Change a course's title, credits or capacity."""
            course = self._registry.update_course(
                course_id,
                title=course_data.title,
                credits=course_data.credits,
                capacity=course_data.capacity,
            )
            logger.info("Updated course %s (capacity %d)", course.course_code, course.capacity)
            return self._course_to_response(course)

        @self.app.delete("/courses/{course_id}", response_model=Dict[str, Any])
        def retire_course(course_id: str):
            self._registry.retire_course(course_id)
            logger.info("Retired course %s", course_id)
            return {"success": True, "message": "Course deleted"}

        # Enrollment endpoints
        @self.app.post("/courses/{course_id}/enroll", response_model=CourseResponse)
        def enroll_student(course_id: str, enrollment_data: EnrollmentRequest):
            """Enroll a student in a course."""
            course = self._enrollment_service.enroll(course_id, enrollment_data.student_id)
            return self._course_to_response(course)

        @self.app.post("/courses/{course_id}/unenroll", response_model=CourseResponse)
        def unenroll_student(course_id: str, enrollment_data: EnrollmentRequest):
            """Remove a student from a course."""
            course = self._enrollment_service.unenroll(course_id, enrollment_data.student_id)
            return self._course_to_response(course)

        @self.app.get("/courses/{course_id}/marks", response_model=List[MarkResponse])
        def get_course_marks(course_id: str, exam_type: Optional[str] = None):
            return [self._mark_to_response(m) for m in self._gradebook.marks_for_course(course_id, exam_type)]

        # Fee endpoints
        @self.app.post("/fees", response_model=FeeResponse, status_code=status.HTTP_201_CREATED)
        def create_fee(fee_data: FeeCreate):
            """Open a fee obligation for a student."""
            obligation = self._fee_ledger.create_obligation(
                student_id=fee_data.student_id,
                term=fee_data.term,
                fee_type=fee_data.fee_type,
                total_amount=fee_data.total_amount,
                due_date=fee_data.due_date,
                discount=fee_data.discount,
                late_fee=fee_data.late_fee,
                remarks=fee_data.remarks,
            )
            return self._fee_to_response(obligation)

        # Declared before /fees/{obligation_id} so "statistics" is not taken for an ID.
        @self.app.get("/fees/statistics", response_model=StatisticsResponse)
        def get_fee_statistics():
            return StatisticsResponse(
                success=True,
                message="Fee statistics retrieved successfully",
                statistics=_stringify_decimals(self._fee_ledger.statistics())
            )

        @self.app.get("/fees/{obligation_id}", response_model=FeeResponse)
        def get_fee(obligation_id: str):
            return self._fee_to_response(self._fee_ledger.get_obligation(obligation_id))

        @self.app.put("/fees/{obligation_id}", response_model=FeeResponse)
        def update_fee(obligation_id: str, fee_data: FeeUpdate):
            obligation = self._fee_ledger.update_obligation(
                obligation_id,
                total_amount=fee_data.total_amount,
                due_date=fee_data.due_date,
                discount=fee_data.discount,
                late_fee=fee_data.late_fee,
                remarks=fee_data.remarks,
            )
            return self._fee_to_response(obligation)

        @self.app.post("/fees/{obligation_id}/payments", response_model=FeeResponse)
        def add_payment(obligation_id: str, payment_data: PaymentCreate):
            """Record a payment against an obligation."""
            obligation = self._fee_ledger.add_payment(
                obligation_id,
                amount=payment_data.amount,
                mode=payment_data.mode,
                reference=payment_data.reference,
                remarks=payment_data.remarks,
                received_by=payment_data.received_by,
            )
            logger.info("Payment of %s recorded against fee %s", payment_data.amount, obligation_id)
            return self._fee_to_response(obligation)

        @self.app.delete("/fees/{obligation_id}", response_model=Dict[str, Any])
        def delete_fee(obligation_id: str):
            self._fee_ledger.delete_obligation(obligation_id)
            return {"success": True, "message": "Fee record deleted"}

        # Mark endpoints
        @self.app.post("/marks", response_model=MarkResponse, status_code=status.HTTP_201_CREATED)
        def record_mark(mark_data: MarkCreate, response: Response):
            """Enter marks; an existing record for the same key is updated in place."""
            result = self._gradebook.record_mark(
                student_id=mark_data.student_id,
                course_id=mark_data.course_id,
                term=mark_data.term,
                exam_type=mark_data.exam_type,
                marks_obtained=mark_data.marks_obtained,
                total_marks=mark_data.total_marks,
                remarks=mark_data.remarks,
                entered_by=mark_data.entered_by,
            )
            if not result.created:
                response.status_code = status.HTTP_200_OK
            return self._mark_to_response(result.mark)

        @self.app.put("/marks/{mark_id}/publish", response_model=MarkResponse)
        def publish_mark(mark_id: str):
            return self._mark_to_response(self._gradebook.publish(mark_id))

        @self.app.post("/marks/{mark_id}/revoke", response_model=MarkResponse)
        def revoke_mark(mark_id: str, revoke_data: RevokeRequest):
            """Unpublish marks with an audited reason."""
            mark = self._gradebook.revoke_publication(mark_id, revoke_data.actor, revoke_data.reason)
            logger.warning("Publication of mark %s revoked by %s: %s",
                           mark_id, revoke_data.actor, revoke_data.reason)
            return self._mark_to_response(mark)

        @self.app.delete("/marks/{mark_id}", response_model=Dict[str, Any])
        def delete_mark(mark_id: str):
            self._gradebook.delete_mark(mark_id)
            return {"success": True, "message": "Marks deleted"}

        # Statistics endpoints
        @self.app.get("/statistics", response_model=StatisticsResponse)
        def get_statistics():
            """Get system statistics."""
            statistics = {
                "registry": self._registry.get_statistics(),
                "enrollment": self._enrollment_service.get_statistics(),
                "fees": _stringify_decimals(self._fee_ledger.statistics()),
                "gradebook": self._gradebook.get_statistics(),
                "concurrency": self._concurrency_manager.get_statistics(),
            }
            return StatisticsResponse(
                success=True,
                message="Statistics retrieved successfully",
                statistics=statistics
            )

    def _student_to_response(self, student: Student) -> StudentResponse:
        """Convert Student entity to response model."""
        return StudentResponse(
            id=student.id,
            student_code=student.student_code,
            first_name=student.first_name,
            last_name=student.last_name,
            department=student.department,
            admission_year=student.admission_year,
            courses=sorted(student.courses),
            created_at=student.created_at,
            updated_at=student.updated_at,
            version=student.version
        )

    def _course_to_response(self, course: Course) -> CourseResponse:
        """Convert Course entity to response model."""
        return CourseResponse(
            id=course.id,
            course_code=course.course_code,
            title=course.title,
            department=course.department,
            credits=course.credits,
            capacity=course.capacity,
            enrolled=sorted(course.enrolled),
            enrollment_count=course.enrollment_count,
            available_seats=course.available_seats,
            is_full=course.is_full,
            created_at=course.created_at,
            updated_at=course.updated_at,
            version=course.version
        )

    def _payment_to_response(self, payment: Payment) -> PaymentResponse:
        return PaymentResponse(
            payment_id=payment.payment_id,
            amount=str(payment.amount),
            mode=payment.mode.value,
            paid_at=payment.paid_at,
            reference=payment.reference,
            remarks=payment.remarks,
            received_by=payment.received_by
        )

    def _fee_to_response(self, obligation: FeeObligation) -> FeeResponse:
        """Convert FeeObligation entity to response model, deriving status now."""
        now = self._fee_ledger.clock.now()
        return FeeResponse(
            id=obligation.id,
            student_id=obligation.student_id,
            term=obligation.term,
            fee_type=obligation.fee_type.value,
            total_amount=str(obligation.total_amount),
            discount=str(obligation.discount),
            late_fee=str(obligation.late_fee),
            paid_amount=str(obligation.paid_amount),
            due_amount=str(obligation.due_amount),
            status=obligation.status_at(now).value,
            is_past_due=obligation.is_past_due(now),
            due_date=obligation.due_date,
            remarks=obligation.remarks,
            payment_history=[self._payment_to_response(p) for p in obligation.payment_history],
            created_at=obligation.created_at,
            updated_at=obligation.updated_at,
            version=obligation.version
        )

    def _mark_to_response(self, mark: MarkRecord) -> MarkResponse:
        """Convert MarkRecord entity to response model."""
        return MarkResponse(
            id=mark.id,
            student_id=mark.student_id,
            course_id=mark.course_id,
            term=mark.term,
            exam_type=mark.exam_type.value,
            marks_obtained=mark.marks_obtained,
            total_marks=mark.total_marks,
            percentage=round(mark.percentage, 2),
            grade=mark.grade,
            remarks=mark.remarks,
            entered_by=mark.entered_by,
            published=mark.published,
            published_at=mark.published_at,
            publication_overrides=mark.publication_overrides,
            created_at=mark.created_at,
            updated_at=mark.updated_at,
            version=mark.version
        )
