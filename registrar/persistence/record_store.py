"""
Record stores: keyed aggregate storage with version-checked commits.

Both stores keep entities as their ``to_dict`` documents and rebuild fresh
objects on every read, so callers always work on snapshots and can only
change stored state through ``insert``, ``commit`` or ``delete``.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.entities import AbstractEntity, entity_from_dict
from ..core.enums import EntityKind
from ..core.exceptions import ConcurrencyError, DuplicateEntityError, ConfigurationError
from ..core.interfaces import RecordStore
from .database import DatabaseManager, DatabaseFactory

logger = logging.getLogger(__name__)


def _stale(entity: AbstractEntity, expected_version: int, found: Optional[int]) -> ConcurrencyError:
    return ConcurrencyError(
        f"{entity.kind.value} {entity.id} changed concurrently "
        f"(expected version {expected_version}, found {found})",
        details={'entity_id': entity.id, 'expected_version': expected_version, 'found_version': found}
    )


class InMemoryRecordStore(RecordStore):
    """Process-local store.

    The internal latch only guards the dictionaries for the duration of a
    single read or commit; it is never held across caller code.
    """

    def __init__(self):
        self._records: Dict[EntityKind, Dict[str, Dict[str, Any]]] = {kind: {} for kind in EntityKind}
        self._natural_keys: Dict[EntityKind, Dict[str, str]] = {kind: {} for kind in EntityKind}
        self._sequences: Dict[str, int] = {}
        self._latch = threading.Lock()

    def get(self, kind: EntityKind, entity_id: str) -> Optional[AbstractEntity]:
        with self._latch:
            document = self._records[kind].get(entity_id)
        return entity_from_dict(document) if document is not None else None

    def find(self, kind: EntityKind,
             predicate: Optional[Callable[[AbstractEntity], bool]] = None) -> List[AbstractEntity]:
        with self._latch:
            documents = list(self._records[kind].values())
        entities = [entity_from_dict(document) for document in documents]
        if predicate is not None:
            entities = [entity for entity in entities if predicate(entity)]
        return sorted(entities, key=lambda entity: entity.created_at)

    def find_by_natural_key(self, kind: EntityKind, natural_key: str) -> Optional[AbstractEntity]:
        with self._latch:
            entity_id = self._natural_keys[kind].get(natural_key)
            document = self._records[kind].get(entity_id) if entity_id else None
        return entity_from_dict(document) if document is not None else None

    def insert(self, entity: AbstractEntity) -> AbstractEntity:
        document = entity.to_dict()
        with self._latch:
            if entity.id in self._records[entity.kind]:
                raise DuplicateEntityError(f"{entity.kind.value} {entity.id} already exists")
            key = entity.natural_key
            if key is not None and key in self._natural_keys[entity.kind]:
                raise DuplicateEntityError(
                    f"{entity.kind.value} with key {key!r} already exists",
                    details={'natural_key': key}
                )
            self._records[entity.kind][entity.id] = document
            if key is not None:
                self._natural_keys[entity.kind][key] = entity.id
        return entity

    def commit(self, changes: Sequence[Tuple[AbstractEntity, int]]) -> None:
        documents = [(entity, expected, entity.to_dict()) for entity, expected in changes]
        with self._latch:
            # Validate everything before writing anything.
            for entity, expected, _ in documents:
                stored = self._records[entity.kind].get(entity.id)
                found = stored['version'] if stored is not None else None
                if found != expected:
                    raise _stale(entity, expected, found)
                key = entity.natural_key
                owner = self._natural_keys[entity.kind].get(key) if key is not None else None
                if owner is not None and owner != entity.id:
                    raise DuplicateEntityError(
                        f"{entity.kind.value} with key {key!r} already exists",
                        details={'natural_key': key}
                    )
            for entity, _, document in documents:
                old_key = entity_from_dict(self._records[entity.kind][entity.id]).natural_key
                if old_key is not None and old_key != entity.natural_key:
                    self._natural_keys[entity.kind].pop(old_key, None)
                self._records[entity.kind][entity.id] = document
                if entity.natural_key is not None:
                    self._natural_keys[entity.kind][entity.natural_key] = entity.id

    def delete(self, kind: EntityKind, entity_id: str,
               expected_version: Optional[int] = None) -> bool:
        with self._latch:
            stored = self._records[kind].get(entity_id)
            if stored is None:
                return False
            if expected_version is not None and stored['version'] != expected_version:
                raise ConcurrencyError(
                    f"{kind.value} {entity_id} changed concurrently",
                    details={'entity_id': entity_id, 'expected_version': expected_version,
                             'found_version': stored['version']}
                )
            key = entity_from_dict(stored).natural_key
            if key is not None:
                self._natural_keys[kind].pop(key, None)
            del self._records[kind][entity_id]
            return True

    def next_sequence(self, group: str) -> int:
        with self._latch:
            value = self._sequences.get(group, 0) + 1
            self._sequences[group] = value
            return value

    def count(self, kind: EntityKind) -> int:
        with self._latch:
            return len(self._records[kind])


class SQLiteRecordStore(RecordStore):
    """Store backed by a ``DatabaseManager``.

    Entities live as JSON documents in a single ``entities`` table. The
    ``(kind, natural_key)`` unique index enforces business keys, and updates
    are ``UPDATE ... WHERE version = ?`` so a concurrent writer in another
    process is detected rather than overwritten.
    """

    SCHEMA = {
        "entities": """
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                natural_key TEXT,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
        """,
        "entities_natural_key": """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_entities_natural_key
            ON entities (kind, natural_key)
        """,
        "entities_kind": """
            CREATE INDEX IF NOT EXISTS ix_entities_kind ON entities (kind, created_at)
        """,
        "sequences": """
            CREATE TABLE IF NOT EXISTS sequences (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """,
    }

    def __init__(self, database: DatabaseManager):
        self._database = database
        self._database.create_tables(self.SCHEMA)
        logger.debug("SQLite record store schema ready")

    def get(self, kind: EntityKind, entity_id: str) -> Optional[AbstractEntity]:
        rows = self._database.execute_query(
            "SELECT data FROM entities WHERE id = ? AND kind = ?", (entity_id, kind.value)
        )
        return entity_from_dict(json.loads(rows[0]["data"])) if rows else None

    def find(self, kind: EntityKind,
             predicate: Optional[Callable[[AbstractEntity], bool]] = None) -> List[AbstractEntity]:
        rows = self._database.execute_query(
            "SELECT data FROM entities WHERE kind = ? ORDER BY created_at", (kind.value,)
        )
        entities = [entity_from_dict(json.loads(row["data"])) for row in rows]
        if predicate is not None:
            entities = [entity for entity in entities if predicate(entity)]
        return entities

    def find_by_natural_key(self, kind: EntityKind, natural_key: str) -> Optional[AbstractEntity]:
        rows = self._database.execute_query(
            "SELECT data FROM entities WHERE kind = ? AND natural_key = ?", (kind.value, natural_key)
        )
        return entity_from_dict(json.loads(rows[0]["data"])) if rows else None

    def insert(self, entity: AbstractEntity) -> AbstractEntity:
        self._database.execute_update(
            """
            INSERT INTO entities (id, kind, natural_key, data, created_at, updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entity.id,
                entity.kind.value,
                entity.natural_key,
                json.dumps(entity.to_dict()),
                entity.created_at.isoformat(),
                entity.updated_at.isoformat(),
                entity.version,
            )
        )
        return entity

    def commit(self, changes: Sequence[Tuple[AbstractEntity, int]]) -> None:
        with self._database.transaction() as cursor:
            for entity, expected in changes:
                cursor.execute(
                    """
                    UPDATE entities
                    SET data = ?, natural_key = ?, updated_at = ?, version = ?
                    WHERE id = ? AND kind = ? AND version = ?
                    """,
                    (
                        json.dumps(entity.to_dict()),
                        entity.natural_key,
                        entity.updated_at.isoformat(),
                        entity.version,
                        entity.id,
                        entity.kind.value,
                        expected,
                    )
                )
                if cursor.rowcount == 0:
                    cursor.execute("SELECT version FROM entities WHERE id = ?", (entity.id,))
                    row = cursor.fetchone()
                    raise _stale(entity, expected, row["version"] if row else None)

    def delete(self, kind: EntityKind, entity_id: str,
               expected_version: Optional[int] = None) -> bool:
        with self._database.transaction() as cursor:
            cursor.execute("SELECT version FROM entities WHERE id = ? AND kind = ?", (entity_id, kind.value))
            row = cursor.fetchone()
            if row is None:
                return False
            if expected_version is not None and row["version"] != expected_version:
                raise ConcurrencyError(
                    f"{kind.value} {entity_id} changed concurrently",
                    details={'entity_id': entity_id, 'expected_version': expected_version,
                             'found_version': row["version"]}
                )
            cursor.execute("DELETE FROM entities WHERE id = ? AND kind = ?", (entity_id, kind.value))
            return True

    def next_sequence(self, group: str) -> int:
        with self._database.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO sequences (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
                """,
                (group,)
            )
            cursor.execute("SELECT value FROM sequences WHERE name = ?", (group,))
            return cursor.fetchone()["value"]

    def count(self, kind: EntityKind) -> int:
        rows = self._database.execute_query(
            "SELECT COUNT(*) AS count FROM entities WHERE kind = ?", (kind.value,)
        )
        return rows[0]["count"]


class StoreFactory:
    """Factory for creating record stores from configuration."""

    @staticmethod
    def create_store(store_type: str, **kwargs) -> RecordStore:
        if store_type.lower() == "memory":
            return InMemoryRecordStore()
        if store_type.lower() == "sqlite":
            return SQLiteRecordStore(DatabaseFactory.create_database("sqlite", **kwargs))
        raise ConfigurationError(f"Unsupported store type: {store_type}")
