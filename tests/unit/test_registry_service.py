"""Unit tests for student and course registration."""

import threading

import pytest

from registrar.core.exceptions import (
    CapacityExceededError, CourseNotEmptyError, DuplicateEntityError, NotFoundError, RegistrarException,
    ValidationError,
)
from registrar.services.registry_service import student_code_for
from registrar.core.enums import Department


class TestStudentCodes:

    def test_code_format(self):
        assert student_code_for(2024, Department.COMPUTER_SCIENCE, 7) == "STU24COM0007"

    def test_sequence_per_year_and_department(self, registry):
        first = registry.register_student("A", "One", "Computer Science", 2024)
        second = registry.register_student("B", "Two", "Computer Science", 2024)
        other_dept = registry.register_student("C", "Three", "Electronics", 2024)
        other_year = registry.register_student("D", "Four", "Computer Science", 2023)

        assert first.student_code == "STU24COM0001"
        assert second.student_code == "STU24COM0002"
        assert other_dept.student_code == "STU24ELE0001"
        assert other_year.student_code == "STU23COM0001"

    def test_concurrent_registrations_get_distinct_codes(self, registry):
        barrier = threading.Barrier(10)
        codes = []
        codes_lock = threading.Lock()

        def register(i):
            barrier.wait()
            student = registry.register_student(f"S{i}", "Race", "Civil", 2024)
            with codes_lock:
                codes.append(student.student_code)

        threads = [threading.Thread(target=register, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(codes) == [f"STU24CIV{n:04d}" for n in range(1, 11)]

    def test_lookup_by_code(self, registry, student):
        assert registry.find_student_by_code(student.student_code.lower()).id == student.id

    @pytest.mark.parametrize("department,year", [("Astrology", 2024), ("Civil", 24), ("Civil", True)])
    def test_invalid_student(self, registry, department, year):
        with pytest.raises(ValidationError):
            registry.register_student("A", "B", department, year)

    def test_list_by_department(self, registry, make_students):
        make_students(2)
        make_students(1, department="Civil")
        assert len(registry.list_students("Civil")) == 1
        assert len(registry.list_students()) == 3


class TestCourses:

    def test_duplicate_code_rejected(self, registry, course):
        with pytest.raises(DuplicateEntityError):
            registry.register_course("cs101", "Copy", "Computer Science", 3, 10)

    @pytest.mark.parametrize("credits,capacity", [(3, 0), (3, -1), (0, 10)])
    def test_invalid_course(self, registry, credits, capacity):
        with pytest.raises(ValidationError):
            registry.register_course("BAD1", "Bad", "Computer Science", credits, capacity)

    def test_retire_empty_course(self, registry, course):
        registry.retire_course(course.id)
        assert registry.find_course_by_code("CS101") is None
        # The code is free again.
        registry.register_course("CS101", "Reboot", "Computer Science", 3, 5)

    def test_retire_course_with_students(self, registry, enrollment_service, course, student):
        enrollment_service.enroll(course.id, student.id)
        with pytest.raises(CourseNotEmptyError):
            registry.retire_course(course.id)
        assert enrollment_service.get_course(course.id).enrollment_count == 1

    def test_retire_unknown_course(self, registry):
        with pytest.raises(NotFoundError):
            registry.retire_course("missing")

    def test_statistics(self, registry, course, student):
        assert registry.get_statistics() == {'total_students': 1, 'total_courses': 1}

    def test_list_courses(self, registry, course):
        registry.register_course("MA101", "Calculus", "Computer Science", 3, 10)
        assert sorted(c.course_code for c in registry.list_courses()) == ["CS101", "MA101"]


class TestUpdateCourse:

    def test_update_fields(self, registry, course):
        updated = registry.update_course(course.id, title="Programming I", credits=3, capacity=12)

        assert (updated.title, updated.credits, updated.capacity) == ("Programming I", 3, 12)
        assert updated.version == course.version + 1
        assert registry.find_course_by_code("CS101").capacity == 12

    def test_no_changes_keeps_version(self, registry, course):
        assert registry.update_course(course.id).version == course.version

    def test_shrink_below_enrollment_rejected(self, registry, enrollment_service, course, make_students):
        for s in make_students(3):
            enrollment_service.enroll(course.id, s.id)

        with pytest.raises(CapacityExceededError):
            registry.update_course(course.id, capacity=2)
        assert registry.update_course(course.id, capacity=3).capacity == 3
        assert enrollment_service.get_course(course.id).is_full

    @pytest.mark.parametrize("changes", [{"capacity": 0}, {"capacity": True}, {"credits": 0}, {"title": " "}])
    def test_invalid_values(self, registry, course, changes):
        with pytest.raises(ValidationError):
            registry.update_course(course.id, **changes)
        assert registry.find_course_by_code("CS101").version == course.version

    def test_unknown_course(self, registry):
        with pytest.raises(NotFoundError):
            registry.update_course("missing", capacity=5)

    def test_shrink_racing_enrollment_keeps_bound(self, registry, enrollment_service, course, make_students):
        students = make_students(8)
        for s in students[:2]:
            enrollment_service.enroll(course.id, s.id)
        barrier = threading.Barrier(7)
        outcomes = []
        outcomes_lock = threading.Lock()

        def shrink():
            barrier.wait()
            try:
                registry.update_course(course.id, capacity=3)
                result = "resized"
            except RegistrarException as e:
                result = e.error_code
            with outcomes_lock:
                outcomes.append(result)

        def enroll(student):
            barrier.wait()
            try:
                enrollment_service.enroll(course.id, student.id)
                result = "enrolled"
            except RegistrarException as e:
                result = e.error_code
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=shrink)]
        threads += [threading.Thread(target=enroll, args=(s,)) for s in students[2:]]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored = enrollment_service.get_course(course.id)
        assert stored.enrollment_count <= stored.capacity
        assert stored.enrollment_count == 2 + outcomes.count("enrolled")
        if "resized" in outcomes:
            assert stored.capacity == 3
        else:
            assert outcomes.count("CAPACITY_EXCEEDED") == 1
            assert stored.capacity == 30
