"""
Core interfaces and abstract base classes for the Registrar platform.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from .enums import EntityKind


class Clock(ABC):
    """Source of the current time for due-date and publish comparisons."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        pass


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class RecordStore(ABC):
    """Persistence collaborator holding every aggregate by kind and ID.

    Reads hand out snapshots; mutating a returned entity has no effect until
    it goes back through ``commit``. Commits are conditional on the version
    the caller read, which makes them the atomic-update primitive the ledger
    services build on.
    """

    @abstractmethod
    def get(self, kind: EntityKind, entity_id: str) -> Optional["AbstractEntity"]:
        """Return a snapshot of the entity, or None if absent."""
        pass

    @abstractmethod
    def find(self, kind: EntityKind,
             predicate: Optional[Callable[["AbstractEntity"], bool]] = None) -> List["AbstractEntity"]:
        """Return snapshots of all entities of a kind matching the predicate."""
        pass

    @abstractmethod
    def find_by_natural_key(self, kind: EntityKind, natural_key: str) -> Optional["AbstractEntity"]:
        """Return the entity holding a business uniqueness key, if any."""
        pass

    @abstractmethod
    def insert(self, entity: "AbstractEntity") -> "AbstractEntity":
        """Store a new entity; fails if its ID or natural key is taken."""
        pass

    @abstractmethod
    def commit(self, changes: Sequence[Tuple["AbstractEntity", int]]) -> None:
        """Atomically replace entities, each only if its stored version is unchanged.

        ``changes`` pairs every modified entity with the version that was read
        before modifying it. Either all are written or none is.
        """
        pass

    @abstractmethod
    def delete(self, kind: EntityKind, entity_id: str,
               expected_version: Optional[int] = None) -> bool:
        """Remove an entity. Returns False if it did not exist."""
        pass

    @abstractmethod
    def next_sequence(self, group: str) -> int:
        """Atomically allocate the next number in a named sequence (1-based)."""
        pass

    @abstractmethod
    def count(self, kind: EntityKind) -> int:
        """Count stored entities of a kind."""
        pass
