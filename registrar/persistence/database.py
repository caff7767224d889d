"""
Database management and connection handling.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..core.exceptions import (
    RegistrarException, PersistenceError, ConfigurationError, DuplicateEntityError
)

logger = logging.getLogger(__name__)


class DatabaseManager(ABC):
    """Abstract base class for database management."""

    @abstractmethod
    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        pass

    @abstractmethod
    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        pass

    @abstractmethod
    def transaction(self) -> Iterator[Any]:
        """Context manager yielding a cursor inside a write transaction."""
        pass

    @abstractmethod
    def create_tables(self, schema: Dict[str, str]) -> None:
        """Create database tables from schema."""
        pass


class SQLiteDatabase(DatabaseManager):
    """SQLite database implementation.

    Every operation opens its own connection, so the manager can be shared
    across request threads. Write transactions start with ``BEGIN IMMEDIATE``
    and therefore take SQLite's write lock up front instead of upgrading to it
    halfway through.
    """

    def __init__(self, database_path: str = "registrar.db", busy_timeout: float = 5.0):
        if database_path == ":memory:":
            raise ConfigurationError(
                "SQLite ':memory:' databases are per-connection; use the memory store instead"
            )
        self._database_path = database_path
        self._busy_timeout = busy_timeout

    @property
    def database_path(self) -> str:
        return self._database_path

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper cleanup."""
        conn = None
        try:
            conn = sqlite3.connect(
                self._database_path,
                timeout=self._busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            yield conn
        except RegistrarException:
            raise
        except sqlite3.IntegrityError as e:
            raise DuplicateEntityError(f"Uniqueness constraint violated: {e}")
        except sqlite3.Error as e:
            logger.error("SQLite error on %s: %s", self._database_path, e)
            raise PersistenceError(f"Database error: {str(e)}")
        finally:
            if conn:
                conn.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        with self._get_connection() as conn:
            cursor = conn.execute(query, params or ())
            return [dict(row) for row in cursor.fetchall()]

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute a single statement in autocommit mode and return affected rows."""
        with self._get_connection() as conn:
            cursor = conn.execute(query, params or ())
            return cursor.rowcount

    @contextmanager
    def transaction(self):
        """Run statements in one write transaction; any exception rolls back."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn.cursor()
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def create_tables(self, schema: Dict[str, str]) -> None:
        """Create database tables from schema."""
        with self.transaction() as cursor:
            for table_name, table_schema in schema.items():
                cursor.execute(table_schema)


class DatabaseFactory:
    """Factory for creating database instances."""

    @staticmethod
    def create_database(database_type: str, **kwargs) -> DatabaseManager:
        """Create a database instance based on type."""
        if database_type.lower() == "sqlite":
            return SQLiteDatabase(**kwargs)
        raise ConfigurationError(f"Unsupported database type: {database_type}")
