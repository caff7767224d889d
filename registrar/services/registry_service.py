"""
Registry of students and courses.
"""

import threading
from typing import List, Optional, Union

from ..core.entities import Course, Student, coerce_enum
from ..core.enums import Department, EntityKind
from ..core.exceptions import CourseNotEmptyError, NotFoundError, ValidationError
from ..core.interfaces import RecordStore
from ..persistence.repositories import CourseRepository, StudentRepository
from .concurrency_manager import ConcurrencyManager
from .enrollment_service import course_resource


def student_code_for(admission_year: int, department: Department, sequence: int) -> str:
    """Format a student code such as ``STU24COM0001``."""
    year = str(admission_year)[-2:]
    dept_code = department.value[:3].upper()
    return f"STU{year}{dept_code}{sequence:04d}"


class RegistryService:
    """Service for registering students and managing the course catalogue."""

    def __init__(self, store: RecordStore, concurrency_manager: ConcurrencyManager):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._students = StudentRepository(store)
        self._courses = CourseRepository(store)

    def register_student(self, first_name: str, last_name: str,
                         department: Union[Department, str], admission_year: int) -> Student:
        """Register a student and allocate their student code.

        The running number comes from a store sequence per (admission year,
        department), so concurrent registrations never share a code.
        """
        if not first_name or not last_name:
            raise ValidationError("First and last name are required")
        if isinstance(admission_year, bool) or not isinstance(admission_year, int) or admission_year < 1000:
            raise ValidationError("Admission year must be a four-digit year",
                                  details={'admission_year': admission_year})
        dept = coerce_enum(Department, department, "department")

        sequence = self._store.next_sequence(f"student:{admission_year}:{dept.value}")
        student = Student(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            department=dept.value,
            admission_year=admission_year,
            student_code=student_code_for(admission_year, dept, sequence),
        )
        return self._students.add(student)

    def register_course(self, course_code: str, title: str, department: Union[Department, str],
                        credits: int, capacity: int) -> Course:
        """Add a course to the catalogue.

        Raises:
            ValidationError: capacity or credits are not positive integers.
            DuplicateEntityError: the course code is already taken.
        """
        if not course_code or not course_code.strip():
            raise ValidationError("Course code is required")
        if isinstance(credits, bool) or not isinstance(credits, int) or credits < 1:
            raise ValidationError("Credits must be a positive integer", details={'credits': credits})
        dept = coerce_enum(Department, department, "department")
        course = Course(
            course_code=course_code,
            title=title,
            department=dept.value,
            credits=credits,
            capacity=capacity,
        )
        return self._courses.add(course)

    def retire_course(self, course_id: str) -> None:
        """Delete a course nobody is enrolled in.

        Holds the same lock as enrollment, so a seat cannot be taken while the
        course is being removed.
        """
        def attempt() -> None:
            with self._concurrency_manager.lock(course_resource(course_id),
                                                f"registry_service_{threading.get_ident()}"):
                course = self._courses.require(course_id)
                if course.enrollment_count > 0:
                    raise CourseNotEmptyError(
                        f"Course {course.course_code} still has {course.enrollment_count} students",
                        details={'course_id': course_id, 'enrolled': course.enrollment_count}
                    )
                if not self._store.delete(EntityKind.COURSE, course_id, course.version):
                    raise NotFoundError("Course", course_id)

        self._concurrency_manager.execute_with_retry(attempt)

    def update_course(self, course_id: str, title: Optional[str] = None,
                      credits: Optional[int] = None, capacity: Optional[int] = None) -> Course:
        """Revise a course's title, credits or capacity.

        Runs under the enrollment lock, so a capacity cut is checked against
        the seats actually taken.

        Raises:
            ValidationError: a supplied value is not valid.
            CapacityExceededError: the new capacity is below current enrollment.
        """
        def attempt() -> Course:
            with self._concurrency_manager.lock(course_resource(course_id),
                                                f"registry_service_{threading.get_ident()}"):
                course = self._courses.require(course_id)
                version = course.version
                course.revise(title=title, credits=credits, capacity=capacity)
                if course.version != version:
                    self._store.commit([(course, version)])
                return course

        return self._concurrency_manager.execute_with_retry(attempt)

    def get_student(self, student_id: str) -> Student:
        return self._students.require(student_id)

    def find_student_by_code(self, student_code: str) -> Optional[Student]:
        return self._students.find_by_student_code(student_code)

    def find_course_by_code(self, course_code: str) -> Optional[Course]:
        return self._courses.find_by_course_code(course_code)

    def list_students(self, department: Optional[Union[Department, str]] = None) -> List[Student]:
        if department is None:
            return self._students.find_all()
        dept = coerce_enum(Department, department, "department")
        return self._students.find_by_department(dept.value)

    def list_courses(self) -> List[Course]:
        return self._courses.find_all()

    def get_statistics(self):
        return {
            'total_students': self._students.count(),
            'total_courses': self._courses.count(),
        }
