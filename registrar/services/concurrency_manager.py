"""
Concurrency management and thread safety components.

Every aggregate is its own unit of mutual exclusion. Locks are created on
demand per resource ID, so operations on different aggregates never wait on
each other, and waiting on the same aggregate is bounded by a timeout.
"""

import threading
import time
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from ..core.exceptions import ConcurrencyError, ConflictError, ValidationError

R = TypeVar('R')


@dataclass
class LockInfo:
    """Information about a held lock."""
    lock_id: str
    resource_id: str
    holder_id: str
    acquired_at: float


class _ResourceLock:
    """A mutex plus the number of threads holding or waiting for it."""

    __slots__ = ("mutex", "users")

    def __init__(self):
        self.mutex = threading.Lock()
        self.users = 0


class ConcurrencyManager:
    """Per-resource pessimistic locks plus bounded optimistic retries."""

    def __init__(self, lock_timeout: float = 5.0, max_retries: int = 3,
                 backoff_factor: float = 0.01):
        if lock_timeout <= 0:
            raise ValidationError("lock_timeout must be positive")
        if max_retries < 0:
            raise ValidationError("max_retries cannot be negative")
        self._lock_timeout = lock_timeout
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._resources: Dict[str, _ResourceLock] = {}
        self._lock_holders: Dict[str, LockInfo] = {}
        # Guards the two tables above, never held while waiting for a resource.
        self._lock = threading.Lock()
        self._stats = {'acquired': 0, 'timeouts': 0, 'retries': 0, 'conflicts': 0}

    @property
    def lock_timeout(self) -> float:
        return self._lock_timeout

    def acquire_lock(self, resource_id: str, holder_id: str,
                     timeout: Optional[float] = None) -> str:
        """Acquire the lock on a resource, waiting at most ``timeout`` seconds."""
        with self._lock:
            entry = self._resources.get(resource_id)
            if entry is None:
                entry = self._resources[resource_id] = _ResourceLock()
            entry.users += 1

        wait = self._lock_timeout if timeout is None else timeout
        if not entry.mutex.acquire(timeout=wait):
            with self._lock:
                self._forget(resource_id, entry)
                self._stats['timeouts'] += 1
            raise ConflictError(
                f"Timed out after {wait}s waiting for lock on {resource_id}",
                details={'resource_id': resource_id, 'holder_id': holder_id}
            )

        lock_id = str(uuid.uuid4())
        with self._lock:
            self._lock_holders[lock_id] = LockInfo(
                lock_id=lock_id,
                resource_id=resource_id,
                holder_id=holder_id,
                acquired_at=time.time()
            )
            self._stats['acquired'] += 1
        return lock_id

    def release_lock(self, lock_id: str) -> bool:
        """Release a lock."""
        with self._lock:
            lock_info = self._lock_holders.pop(lock_id, None)
            if lock_info is None:
                return False
            entry = self._resources[lock_info.resource_id]
            entry.mutex.release()
            self._forget(lock_info.resource_id, entry)
            return True

    def _forget(self, resource_id: str, entry: _ResourceLock) -> None:
        entry.users -= 1
        if entry.users == 0:
            del self._resources[resource_id]

    @contextmanager
    def lock(self, resource_id: str, holder_id: Optional[str] = None,
             timeout: Optional[float] = None):
        """Context manager for acquiring and releasing a lock."""
        lock_id = self.acquire_lock(resource_id, holder_id or _default_holder(), timeout)
        try:
            yield lock_id
        finally:
            self.release_lock(lock_id)

    @contextmanager
    def lock_many(self, resource_ids: Iterable[str], holder_id: Optional[str] = None,
                  timeout: Optional[float] = None):
        """Lock several resources, always in sorted order so two callers cannot deadlock."""
        holder = holder_id or _default_holder()
        with ExitStack() as stack:
            lock_ids = [
                stack.enter_context(self.lock(resource_id, holder, timeout))
                for resource_id in sorted(set(resource_ids))
            ]
            yield lock_ids

    def execute_with_retry(self, func: Callable[[], R], max_retries: Optional[int] = None,
                           backoff_factor: Optional[float] = None) -> R:
        """Run ``func``, retrying when it loses an optimistic version check.

        A lock timeout is not retried. Once retries are exhausted the last
        version conflict is surfaced as a ConflictError.
        """
        retries = self._max_retries if max_retries is None else max_retries
        backoff = self._backoff_factor if backoff_factor is None else backoff_factor
        last_exception: Optional[ConcurrencyError] = None

        for attempt in range(retries + 1):
            try:
                return func()
            except ConflictError:
                raise
            except ConcurrencyError as e:
                last_exception = e
                if attempt < retries:
                    with self._lock:
                        self._stats['retries'] += 1
                    time.sleep(backoff * (2 ** attempt))

        with self._lock:
            self._stats['conflicts'] += 1
        raise ConflictError(
            f"Update lost the race after {retries + 1} attempts: {last_exception.message}",
            details=last_exception.details
        ) from last_exception

    def get_lock_info(self, resource_id: str) -> List[LockInfo]:
        """Get information about locks held on a resource."""
        with self._lock:
            return [info for info in self._lock_holders.values() if info.resource_id == resource_id]

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            stats['held_locks'] = len(self._lock_holders)
            stats['tracked_resources'] = len(self._resources)
            return stats


def _default_holder() -> str:
    return f"thread_{threading.get_ident()}"
