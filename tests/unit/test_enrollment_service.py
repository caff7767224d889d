"""Unit tests for the enrollment service."""

import random
import threading

import pytest

from registrar.core.exceptions import (
    AlreadyEnrolledError, CapacityExceededError, NotEnrolledError, NotFoundError, RegistrarException,
)


class TestEnroll:

    def test_enroll_updates_both_sides(self, enrollment_service, registry, course, student):
        updated = enrollment_service.enroll(course.id, student.id)

        assert updated.is_enrolled(student.id)
        assert updated.enrollment_count == 1
        assert registry.get_student(student.id).courses == {course.id}

    def test_returned_course_is_a_snapshot(self, enrollment_service, course, student):
        updated = enrollment_service.enroll(course.id, student.id)
        updated.drop_student(student.id)

        assert enrollment_service.get_course(course.id).enrollment_count == 1

    def test_unknown_course_or_student(self, enrollment_service, course, student):
        with pytest.raises(NotFoundError):
            enrollment_service.enroll("missing", student.id)
        with pytest.raises(NotFoundError):
            enrollment_service.enroll(course.id, "missing")

    def test_double_enroll_rejected(self, enrollment_service, course, student):
        enrollment_service.enroll(course.id, student.id)
        with pytest.raises(AlreadyEnrolledError):
            enrollment_service.enroll(course.id, student.id)
        assert enrollment_service.get_course(course.id).enrollment_count == 1

    def test_full_course_rejected(self, enrollment_service, registry, make_students):
        small = registry.register_course("CS900", "Seminar", "Computer Science", 2, capacity=1)
        first, second = make_students(2)
        enrollment_service.enroll(small.id, first.id)

        with pytest.raises(CapacityExceededError):
            enrollment_service.enroll(small.id, second.id)
        assert registry.get_student(second.id).courses == set()

    def test_already_enrolled_wins_over_full(self, enrollment_service, registry, student):
        small = registry.register_course("CS900", "Seminar", "Computer Science", 2, capacity=1)
        enrollment_service.enroll(small.id, student.id)
        with pytest.raises(AlreadyEnrolledError):
            enrollment_service.enroll(small.id, student.id)


class TestUnenroll:

    def test_unenroll_frees_seat(self, enrollment_service, registry, course, student):
        enrollment_service.enroll(course.id, student.id)
        updated = enrollment_service.unenroll(course.id, student.id)

        assert updated.enrollment_count == 0
        assert registry.get_student(student.id).courses == set()

    def test_unenroll_not_enrolled(self, enrollment_service, course, student):
        with pytest.raises(NotEnrolledError):
            enrollment_service.unenroll(course.id, student.id)

    def test_fees_and_marks_are_kept(self, enrollment_service, fee_ledger, gradebook, course, student):
        enrollment_service.enroll(course.id, student.id)
        fee = fee_ledger.create_obligation(student.id, "2024-S1", "tuition", "500", "2024-08-01")
        entry = gradebook.record_mark(student.id, course.id, "2024-S1", "midterm", 30, 50)

        enrollment_service.unenroll(course.id, student.id)

        assert fee_ledger.get_obligation(fee.id).total_amount == fee.total_amount
        assert gradebook.get_mark(entry.mark.id).marks_obtained == 30


class TestConcurrentEnrollment:

    @pytest.mark.parametrize("capacity,contenders", [(1, 8), (3, 12)])
    def test_capacity_never_exceeded(self, enrollment_service, registry, make_students,
                                     capacity, contenders):
        course = registry.register_course("CS777", "Race", "Computer Science", 3, capacity=capacity)
        students = make_students(contenders)
        barrier = threading.Barrier(contenders)
        outcomes = []
        outcomes_lock = threading.Lock()

        def contend(student):
            barrier.wait()
            try:
                enrollment_service.enroll(course.id, student.id)
                result = "enrolled"
            except RegistrarException as e:
                result = e.error_code
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=contend, args=(s,)) for s in students]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("enrolled") == capacity
        assert outcomes.count("CAPACITY_EXCEEDED") == contenders - capacity

        stored = enrollment_service.get_course(course.id)
        assert stored.enrollment_count == capacity
        mirrored = [s for s in students if course.id in registry.get_student(s.id).courses]
        assert {s.id for s in mirrored} == stored.enrolled

    def test_one_student_many_courses_concurrently(self, enrollment_service, registry, student):
        courses = [
            registry.register_course(f"PAR{i}", f"Parallel {i}", "Computer Science", 2, capacity=5)
            for i in range(6)
        ]
        barrier = threading.Barrier(len(courses))

        def enroll(course):
            barrier.wait()
            enrollment_service.enroll(course.id, student.id)

        threads = [threading.Thread(target=enroll, args=(c,)) for c in courses]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert registry.get_student(student.id).courses == {c.id for c in courses}

    def test_random_enroll_and_drop_keep_bound_and_mirror(self, enrollment_service, registry, make_students):
        course = registry.register_course("CS555", "Churn", "Computer Science", 3, capacity=2)
        students = make_students(6)
        workers = 8
        barrier = threading.Barrier(workers)
        overfull = []
        unexpected = []
        report_lock = threading.Lock()

        def churn(seed):
            rng = random.Random(seed)
            barrier.wait()
            for _ in range(60):
                student = rng.choice(students)
                try:
                    if rng.random() < 0.6:
                        enrollment_service.enroll(course.id, student.id)
                    else:
                        enrollment_service.unenroll(course.id, student.id)
                except RegistrarException as e:
                    if e.error_code not in ("CAPACITY_EXCEEDED", "ALREADY_ENROLLED", "NOT_ENROLLED"):
                        with report_lock:
                            unexpected.append(e.error_code)
                seen = enrollment_service.get_course(course.id)
                if seen.enrollment_count > seen.capacity:
                    with report_lock:
                        overfull.append(seen.enrollment_count)

        threads = [threading.Thread(target=churn, args=(seed,)) for seed in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overfull == []
        assert unexpected == []
        stored = enrollment_service.get_course(course.id)
        assert stored.enrollment_count <= 2
        mirrored = {s.id for s in students if course.id in registry.get_student(s.id).courses}
        assert mirrored == stored.enrolled


class TestQueries:

    def test_roster_and_student_courses(self, enrollment_service, registry, course, make_students):
        other = registry.register_course("AA100", "Alpha", "Computer Science", 2, capacity=5)
        first, second = make_students(2)
        enrollment_service.enroll(course.id, second.id)
        enrollment_service.enroll(course.id, first.id)
        enrollment_service.enroll(other.id, first.id)

        roster = enrollment_service.course_roster(course.id)
        assert [s.id for s in roster] == [first.id, second.id]
        assert [c.course_code for c in enrollment_service.student_courses(first.id)] == ["AA100", "CS101"]

    def test_statistics(self, enrollment_service, course, student):
        enrollment_service.enroll(course.id, student.id)
        stats = enrollment_service.get_statistics()
        assert stats == {'total_courses': 1, 'total_seats': 30, 'total_enrollments': 1, 'full_courses': 0}
