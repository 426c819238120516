"""
seedkeeper.engine.locks — Per-Key Mutual Exclusion
===================================================

Presence events, auto-close, manual close, cancel and reversal all mutate
the same session.  Within one process they serialize on a lock keyed by
session id; across processes the ``SELECT … FOR UPDATE`` on the session
row does the same job.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    """A lazily created :class:`threading.Lock` per key.

    Locks are never evicted; the key space (session ids, server ids) is
    small and grows slowly.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


# Process-wide locks shared by every service entry point
SESSION_LOCKS = KeyedLock()
TARGET_LOCKS = KeyedLock()
