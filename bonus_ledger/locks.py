"""Keyed in-process locks for per-user serialization."""
from contextlib import contextmanager
from typing import Iterator
import logging
import threading

from .exceptions import StorageTimeoutError

logger = logging.getLogger(__name__)


class _NamedLock:
    __slots__ = ("mutex", "holders")

    def __init__(self):
        self.mutex = threading.Lock()
        self.holders = 0  # threads holding or waiting for the mutex


class LockClient:
    """Named mutexes, one per key, alive only while someone holds or waits on them.

    Row locks (SELECT ... FOR UPDATE) serialize same-user mutations on
    PostgreSQL. SQLite ignores them, so mutating ledger operations also hold
    the lock for their user for the whole read-decide-write sequence.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, _NamedLock] = {}

    def _checkout(self, name: str) -> _NamedLock:
        with self._guard:
            named = self._locks.get(name)
            if named is None:
                named = self._locks[name] = _NamedLock()
            named.holders += 1
            return named

    def _checkin(self, name: str, named: _NamedLock) -> None:
        with self._guard:
            named.holders -= 1
            if named.holders == 0:
                del self._locks[name]

    @contextmanager
    def lock(self, name: str, timeout: float = 10) -> Iterator[None]:
        """Hold the named lock, raising StorageTimeoutError if it can't be taken in time."""
        named = self._checkout(name)
        try:
            if not named.mutex.acquire(timeout=timeout):
                logger.warning(f"Timed out after {timeout}s waiting for lock {name}")
                raise StorageTimeoutError(f"timed out waiting for lock {name}")
            try:
                yield
            finally:
                named.mutex.release()
        finally:
            self._checkin(name, named)


lock_client = LockClient()
