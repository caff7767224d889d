"""
Enrollment service enforcing course capacity.

A course's enrolled set and each student's course mirror change together in a
single conditional commit, so neither side is ever observed without the other.
The capacity check reads the stored course inside the course lock, which makes
check-and-increment one atomic step.
"""

import threading
from typing import Any, Dict, List

from ..core.entities import Course, Student
from ..core.interfaces import RecordStore
from ..persistence.repositories import CourseRepository, StudentRepository
from .concurrency_manager import ConcurrencyManager


def course_resource(course_id: str) -> str:
    return f"course:{course_id}"


def student_resource(student_id: str) -> str:
    return f"student:{student_id}"


class EnrollmentService:
    """Service for enrolling students in courses."""

    def __init__(self, store: RecordStore, concurrency_manager: ConcurrencyManager):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._courses = CourseRepository(store)
        self._students = StudentRepository(store)

    def enroll(self, course_id: str, student_id: str) -> Course:
        """Enroll a student in a course.

        Raises:
            NotFoundError: course or student does not exist.
            AlreadyEnrolledError: the student already holds a seat.
            CapacityExceededError: every seat is taken.
            ConflictError: the update could not be applied after bounded retries.
        """
        def attempt() -> Course:
            with self._lock_pair(course_id, student_id):
                course = self._courses.require(course_id)
                student = self._students.require(student_id)
                course_version, student_version = course.version, student.version

                course.enroll_student(student.id)
                student.add_course(course.id)

                self._store.commit([(course, course_version), (student, student_version)])
                return course

        return self._concurrency_manager.execute_with_retry(attempt)

    def unenroll(self, course_id: str, student_id: str) -> Course:
        """Remove a student from a course.

        Fee and mark records are independent aggregates and are left alone.

        Raises:
            NotFoundError: course or student does not exist.
            NotEnrolledError: the student holds no seat in the course.
            ConflictError: the update could not be applied after bounded retries.
        """
        def attempt() -> Course:
            with self._lock_pair(course_id, student_id):
                course = self._courses.require(course_id)
                student = self._students.require(student_id)
                course_version, student_version = course.version, student.version

                course.drop_student(student.id)
                student.remove_course(course.id)

                self._store.commit([(course, course_version), (student, student_version)])
                return course

        return self._concurrency_manager.execute_with_retry(attempt)

    def _lock_pair(self, course_id: str, student_id: str):
        return self._concurrency_manager.lock_many(
            [course_resource(course_id), student_resource(student_id)],
            f"enrollment_service_{threading.get_ident()}"
        )

    def get_course(self, course_id: str) -> Course:
        return self._courses.require(course_id)

    def course_roster(self, course_id: str) -> List[Student]:
        """Students holding a seat in the course, ordered by student code."""
        course = self._courses.require(course_id)
        students = [self._students.find_by_id(student_id) for student_id in course.enrolled]
        return sorted((s for s in students if s is not None),
                      key=lambda s: s.student_code or s.id)

    def student_courses(self, student_id: str) -> List[Course]:
        """Courses the student is enrolled in, ordered by course code."""
        student = self._students.require(student_id)
        courses = [self._courses.find_by_id(course_id) for course_id in student.courses]
        return sorted((c for c in courses if c is not None), key=lambda c: c.course_code)

    def get_statistics(self) -> Dict[str, Any]:
        """Get enrollment statistics."""
        courses = self._courses.find_all()
        return {
            'total_courses': len(courses),
            'total_seats': sum(c.capacity for c in courses),
            'total_enrollments': sum(c.enrollment_count for c in courses),
            'full_courses': sum(1 for c in courses if c.is_full),
        }
