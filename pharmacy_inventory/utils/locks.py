# pharmacy_inventory/utils/locks.py
import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class KeyedLock:
    """One re-entrant lock per key.

    Holding the lock for a medication id serializes every read-modify-write of
    that medication's stock; different keys never block each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable):
        """Hold the lock for key for the duration of the block."""
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self):
        return len(self._locks)


# Shared by every ledger service in the process
medication_locks = KeyedLock()
