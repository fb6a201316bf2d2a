"""
Per-record serialization of client mutations.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.exceptions import ConcurrencyError


@dataclass
class LockInfo:
    """Information about a held record lock."""
    resource_id: str
    holder_id: str
    acquired_at: float
    waiters: int = 0


class _RecordLock:
    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0
        self.info: Optional[LockInfo] = None


class RecordLockManager:
    """Hands out one exclusive lock per record id.

    A second mutation on a record blocks until the first one has settled.
    Locks are created on first use and dropped once nobody holds or waits
    for them.
    """

    def __init__(self):
        self._locks: Dict[str, _RecordLock] = {}
        self._lock = threading.RLock()

    def acquire_lock(self, resource_id: str, holder_id: str, timeout: Optional[float] = None) -> LockInfo:
        """Block until the record lock is free, then take it."""
        with self._lock:
            entry = self._locks.setdefault(resource_id, _RecordLock())
            entry.users += 1

        acquired = entry.lock.acquire(timeout=timeout) if timeout is not None else entry.lock.acquire()
        if not acquired:
            self._drop(resource_id, entry)
            raise ConcurrencyError(f"Timed out waiting for lock on {resource_id}",
                                   details={'resource_id': resource_id})

        with self._lock:
            entry.info = LockInfo(resource_id=resource_id, holder_id=holder_id, acquired_at=time.time())
        return entry.info

    def release_lock(self, resource_id: str) -> bool:
        """Release a lock."""
        with self._lock:
            entry = self._locks.get(resource_id)
            if entry is None or entry.info is None:
                return False
            entry.info = None
        entry.lock.release()
        self._drop(resource_id, entry)
        return True

    def _drop(self, resource_id: str, entry: _RecordLock) -> None:
        with self._lock:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(resource_id) is entry:
                del self._locks[resource_id]

    @contextmanager
    def lock(self, resource_id: str, holder_id: str, timeout: Optional[float] = None):
        """Context manager for acquiring and releasing a record lock."""
        info = self.acquire_lock(resource_id, holder_id, timeout)
        try:
            yield info
        finally:
            self.release_lock(resource_id)

    def is_locked(self, resource_id: str) -> bool:
        with self._lock:
            entry = self._locks.get(resource_id)
            return entry is not None and entry.info is not None

    def get_lock_info(self, resource_id: str) -> Optional[LockInfo]:
        """Get information about the lock on a record, if held."""
        with self._lock:
            entry = self._locks.get(resource_id)
            if entry is None or entry.info is None:
                return None
            return LockInfo(entry.info.resource_id, entry.info.holder_id,
                            entry.info.acquired_at, waiters=entry.users - 1)

    def locked_resources(self) -> List[str]:
        with self._lock:
            return [rid for rid, entry in self._locks.items() if entry.info is not None]
