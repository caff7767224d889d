"""
Persistence module for aggregate storage.
"""

from .database import DatabaseManager, SQLiteDatabase, DatabaseFactory
from .record_store import InMemoryRecordStore, SQLiteRecordStore, StoreFactory
from .repositories import (
    BaseRepository, StudentRepository, CourseRepository,
    FeeObligationRepository, MarkRecordRepository
)

__all__ = [
    "DatabaseManager",
    "SQLiteDatabase",
    "DatabaseFactory",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "StoreFactory",
    "BaseRepository",
    "StudentRepository",
    "CourseRepository",
    "FeeObligationRepository",
    "MarkRecordRepository",
]
