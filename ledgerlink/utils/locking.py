"""Per-key locks used to keep at most one synchronization in flight per connection."""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLock:
    """
    A family of mutexes indexed by key.

    Callers holding different keys never block each other; callers on the same
    key run one after another. Entries are dropped once nobody holds or waits
    on them, so the table does not grow with the number of keys ever seen.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
