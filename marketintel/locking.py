"""Key-scoped locking for shared learned state.

Each shared store (Q-table, interaction matrix, factor snapshot, provider
cache) serializes writers per key: two writes to the same key never
interleave, while writes to different keys proceed concurrently.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLock:
    """A lazily created ``threading.Lock`` per key.

    Locks are reference counted and dropped once no thread holds or waits on
    them, so the registry does not grow with every key ever seen.

    Example:
        >>> locks = KeyedLock()
        >>> with locks("user-42"):
        ...     pass
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @contextmanager
    def __call__(self, key: Hashable) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._registry_lock:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
