"""Per-key mutual exclusion for single-writer-per-entity updates."""

import threading
from contextlib import contextmanager


class KeyedLocks:
    """Hands out one lock per key; entries are dropped once no thread holds or waits on them.

    Usage:
        locks = KeyedLocks()
        with locks.hold(room_id):
            ...
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self):
        with self._guard:
            return len(self._locks)
