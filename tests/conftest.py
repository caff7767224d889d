"""Pytest configuration and shared fixtures.

Every service fixture shares one in-memory store and one concurrency
manager, so a test sees the effects of all services together.
"""

from datetime import datetime, timedelta, timezone

import pytest

from registrar.core.interfaces import Clock
from registrar.persistence import InMemoryRecordStore
from registrar.services import (
    ConcurrencyManager, EnrollmentService, FeeLedgerService, GradebookService, RegistryService
)


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def concurrency_manager() -> ConcurrencyManager:
    return ConcurrencyManager(lock_timeout=2.0, max_retries=3, backoff_factor=0.001)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def registry(store, concurrency_manager) -> RegistryService:
    return RegistryService(store, concurrency_manager)


@pytest.fixture
def enrollment_service(store, concurrency_manager) -> EnrollmentService:
    return EnrollmentService(store, concurrency_manager)


@pytest.fixture
def fee_ledger(store, concurrency_manager, clock) -> FeeLedgerService:
    return FeeLedgerService(store, concurrency_manager, clock)


@pytest.fixture
def gradebook(store, concurrency_manager, clock) -> GradebookService:
    return GradebookService(store, concurrency_manager, clock)


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def student(registry):
    """A registered Computer Science student."""
    return registry.register_student("Alice", "Johnson", "Computer Science", 2024)


@pytest.fixture
def course(registry):
    """A course with plenty of seats."""
    return registry.register_course("CS101", "Introduction to Programming",
                                    "Computer Science", credits=4, capacity=30)


@pytest.fixture
def make_students(registry):
    """Factory registering ``n`` students in one department."""
    def _make(n, department="Computer Science", year=2024):
        return [
            registry.register_student(f"Student{i}", "Test", department, year)
            for i in range(n)
        ]
    return _make
