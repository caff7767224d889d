"""
Gradebook: mark records keyed by (student, course, exam type, term).

Entering marks is an upsert on that natural key. Every change to a record
happens under a lock named after the key, so two concurrent entries for the
same key produce one record, and the store's unique index backs this up across
processes.
"""

import threading
from collections import defaultdict
from typing import Any, Dict, List, NamedTuple, Optional, Union

from ..core.entities import MarkRecord
from ..core.enums import EntityKind, ExamType
from ..core.exceptions import ConcurrencyError, DuplicateEntityError, NotFoundError
from ..core.interfaces import Clock, RecordStore, SystemClock
from ..persistence.repositories import CourseRepository, MarkRecordRepository, StudentRepository
from .concurrency_manager import ConcurrencyManager


def mark_resource(natural_key: str) -> str:
    return f"mark:{natural_key}"


class MarkEntryResult(NamedTuple):
    """Outcome of ``record_mark``: the record and whether it was newly created."""
    mark: MarkRecord
    created: bool


class GradebookService:
    """Service owning mark records and their publish state."""

    def __init__(self, store: RecordStore, concurrency_manager: ConcurrencyManager,
                 clock: Optional[Clock] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._clock = clock or SystemClock()
        self._marks = MarkRecordRepository(store)
        self._students = StudentRepository(store)
        self._courses = CourseRepository(store)

    def record_mark(self, student_id: str, course_id: str, term: str,
                    exam_type: Union[ExamType, str], marks_obtained: float,
                    total_marks: float, remarks: Optional[str] = None,
                    entered_by: Optional[str] = None) -> MarkEntryResult:
        """Insert or overwrite the marks for a (student, course, exam type, term).

        Raises:
            NotFoundError: student or course does not exist.
            InvalidRangeError: marks are negative, above the total, or the total is not positive.
            ConflictError: the update could not be applied after bounded retries.
        """
        self._students.require(student_id)
        self._courses.require(course_id)
        # Validates exam type and marks before taking the lock.
        candidate = MarkRecord(student_id, course_id, term, exam_type,
                               marks_obtained, total_marks, remarks, entered_by)
        key = candidate.natural_key

        def attempt() -> MarkEntryResult:
            with self._lock(key):
                existing = self._store.find_by_natural_key(EntityKind.MARK_RECORD, key)
                if existing is not None:
                    expected = existing.version
                    existing.revise(marks_obtained, total_marks, remarks, entered_by)
                    self._store.commit([(existing, expected)])
                    return MarkEntryResult(existing, False)
                try:
                    self._marks.add(candidate)
                except DuplicateEntityError as e:
                    # Another process inserted the key first; retry as an update.
                    raise ConcurrencyError(e.message, details=e.details) from e
                return MarkEntryResult(candidate, True)

        return self._concurrency_manager.execute_with_retry(attempt)

    def publish(self, mark_id: str) -> MarkRecord:
        """Publish a mark record. Publishing twice keeps the first publish time."""
        def change(mark: MarkRecord) -> bool:
            return mark.publish(self._clock.now())

        return self._mutate(mark_id, change)

    def revoke_publication(self, mark_id: str, actor: str, reason: str) -> MarkRecord:
        """Take published marks back down, recording who did it and why."""
        def change(mark: MarkRecord) -> bool:
            mark.revoke_publication(actor, reason, self._clock.now())
            return True

        return self._mutate(mark_id, change)

    def delete_mark(self, mark_id: str) -> None:
        """Delete a mark record, published or not."""
        snapshot = self._marks.require(mark_id)

        def attempt() -> None:
            with self._lock(snapshot.natural_key):
                mark = self._marks.require(mark_id)
                if not self._store.delete(EntityKind.MARK_RECORD, mark_id, mark.version):
                    raise NotFoundError("Mark record", mark_id)

        self._concurrency_manager.execute_with_retry(attempt)

    def _mutate(self, mark_id: str, change) -> MarkRecord:
        # The natural key never changes, so a snapshot is enough to name the lock.
        snapshot = self._marks.require(mark_id)

        def attempt() -> MarkRecord:
            with self._lock(snapshot.natural_key):
                mark = self._marks.require(mark_id)
                expected = mark.version
                if change(mark):
                    self._store.commit([(mark, expected)])
                return mark

        return self._concurrency_manager.execute_with_retry(attempt)

    def _lock(self, natural_key: str):
        return self._concurrency_manager.lock(
            mark_resource(natural_key), f"gradebook_{threading.get_ident()}"
        )

    def get_mark(self, mark_id: str) -> MarkRecord:
        return self._marks.require(mark_id)

    def marks_for_student(self, student_id: str) -> Dict[str, List[MarkRecord]]:
        """A student's marks grouped by term."""
        self._students.require(student_id)
        grouped: Dict[str, List[MarkRecord]] = defaultdict(list)
        for mark in sorted(self._marks.find_by_student(student_id),
                           key=lambda m: (m.term, m.exam_type.value)):
            grouped[mark.term].append(mark)
        return dict(grouped)

    def marks_for_course(self, course_id: str,
                         exam_type: Optional[Union[ExamType, str]] = None) -> List[MarkRecord]:
        self._courses.require(course_id)
        return self._marks.find_by_course(course_id, exam_type)

    def student_report(self, student_id: str) -> Dict[str, Any]:
        """Term-wise and overall totals for a student."""
        self._students.require(student_id)
        marks = self._marks.find_by_student(student_id)
        credits_by_course: Dict[str, int] = {}

        terms: Dict[str, Dict[str, Any]] = {}
        for mark in marks:
            if mark.course_id not in credits_by_course:
                course = self._courses.find_by_id(mark.course_id)
                credits_by_course[mark.course_id] = course.credits if course else 0
            stats = terms.setdefault(mark.term, {
                'total_marks': 0, 'obtained_marks': 0, 'subjects': 0, 'credits': 0
            })
            stats['total_marks'] += mark.total_marks
            stats['obtained_marks'] += mark.marks_obtained
            stats['subjects'] += 1
            stats['credits'] += credits_by_course[mark.course_id]

        total = sum(stats['total_marks'] for stats in terms.values())
        obtained = sum(stats['obtained_marks'] for stats in terms.values())
        return {
            'student_id': student_id,
            'terms': terms,
            'overall': {
                'total_marks': total,
                'obtained_marks': obtained,
                'total_subjects': len(marks),
                'percentage': round(obtained * 100 / total, 2) if total > 0 else 0.0,
            },
            'marks': marks,
        }

    def get_statistics(self) -> Dict[str, Any]:
        marks = self._marks.find_all()
        return {
            'total_marks': len(marks),
            'published_marks': sum(1 for m in marks if m.published),
        }
