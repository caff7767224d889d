"""
Repository pattern implementations for data access.
"""

from typing import Generic, List, Optional, TypeVar, Union

from ..core.entities import (
    AbstractEntity, Student, Course, FeeObligation, MarkRecord, mark_natural_key, coerce_enum
)
from ..core.enums import EntityKind, ExamType
from ..core.exceptions import NotFoundError
from ..core.interfaces import RecordStore

T = TypeVar('T', bound=AbstractEntity)


class BaseRepository(Generic[T]):
    """Typed read access to one kind of aggregate in a record store."""

    entity_kind: EntityKind
    entity_label: str

    def __init__(self, store: RecordStore):
        self._store = store

    def add(self, entity: T) -> T:
        """Insert a new entity."""
        return self._store.insert(entity)

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        return self._store.get(self.entity_kind, entity_id)

    def require(self, entity_id: str) -> T:
        """Find entity by ID or raise NotFoundError."""
        entity = self.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_label, entity_id)
        return entity

    def find_all(self) -> List[T]:
        """Find all entities, oldest first."""
        return self._store.find(self.entity_kind)

    def count(self) -> int:
        return self._store.count(self.entity_kind)


class StudentRepository(BaseRepository[Student]):
    """Repository for Student entities."""

    entity_kind = EntityKind.STUDENT
    entity_label = "Student"

    def find_by_student_code(self, student_code: str) -> Optional[Student]:
        return self._store.find_by_natural_key(self.entity_kind, student_code.upper())

    def find_by_department(self, department: str) -> List[Student]:
        return self._store.find(self.entity_kind, lambda s: s.department == department)


class CourseRepository(BaseRepository[Course]):
    """Repository for Course entities."""

    entity_kind = EntityKind.COURSE
    entity_label = "Course"

    def find_by_course_code(self, course_code: str) -> Optional[Course]:
        return self._store.find_by_natural_key(self.entity_kind, course_code.strip().upper())


class FeeObligationRepository(BaseRepository[FeeObligation]):
    """Repository for FeeObligation entities."""

    entity_kind = EntityKind.FEE_OBLIGATION
    entity_label = "Fee obligation"

    def find_by_student(self, student_id: str) -> List[FeeObligation]:
        return self._store.find(self.entity_kind, lambda f: f.student_id == student_id)


class MarkRecordRepository(BaseRepository[MarkRecord]):
    """Repository for MarkRecord entities."""

    entity_kind = EntityKind.MARK_RECORD
    entity_label = "Mark record"

    def find_by_natural_key(self, student_id: str, course_id: str,
                            exam_type: Union[ExamType, str], term: str) -> Optional[MarkRecord]:
        key = mark_natural_key(student_id, course_id, exam_type, term)
        return self._store.find_by_natural_key(self.entity_kind, key)

    def find_by_student(self, student_id: str) -> List[MarkRecord]:
        return self._store.find(self.entity_kind, lambda m: m.student_id == student_id)

    def find_by_course(self, course_id: str,
                       exam_type: Optional[Union[ExamType, str]] = None) -> List[MarkRecord]:
        exam = coerce_enum(ExamType, exam_type, "exam_type") if exam_type is not None else None
        return self._store.find(
            self.entity_kind,
            lambda m: m.course_id == course_id and (exam is None or m.exam_type == exam)
        )
