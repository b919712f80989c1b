"""
KeyedLockRegistry -- per-key mutual exclusion inside one process.

Responsibility:
    Serializes writers of the same logical key (a stock position, a
    document) while letting writers of different keys run in parallel.
    Complements the database row lock (``SELECT ... FOR UPDATE``): on
    PostgreSQL the row lock alone is sufficient across processes; on SQLite
    (which ignores FOR UPDATE) these locks provide the per-key
    serialization.

Architecture position:
    Kernel > Services -- infrastructure, no database access.

Invariants enforced:
    - Keys are always acquired in sorted order, so two callers locking
      overlapping key sets cannot deadlock each other.
    - Locks are re-entrant per thread: a service that already holds a key
      may call another component that locks the same key.
    - Lock entries are reference counted and dropped when unused; the
      registry does not grow with the number of keys ever seen.

Lock ordering across registries:
    DOCUMENT_LOCKS keys are always acquired before STOCK_LOCKS keys, and
    all keyed locks are acquired before the transaction's first statement.
"""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from supply_kernel.logging_config import get_logger

logger = get_logger("services.keyed_locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLockRegistry:
    """Process-wide registry of re-entrant locks addressed by string key."""

    def __init__(self, name: str):
        self.name = name
        self._mutex = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._local = threading.local()

    def _held_counts(self) -> dict[str, int]:
        counts = getattr(self._local, "counts", None)
        if counts is None:
            counts = {}
            self._local.counts = counts
        return counts

    def _acquire(self, key: str) -> None:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
        entry.lock.acquire()
        counts = self._held_counts()
        counts[key] = counts.get(key, 0) + 1

    def _release(self, key: str) -> None:
        counts = self._held_counts()
        counts[key] -= 1
        if counts[key] == 0:
            del counts[key]
        with self._mutex:
            entry = self._entries[key]
            entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[tuple[str, ...]]:
        """
        Acquire every key (deduplicated, sorted) for the duration of the block.

        Yields the sorted tuple of keys held.
        """
        ordered = tuple(sorted(set(keys)))
        acquired: list[str] = []
        try:
            for key in ordered:
                self._acquire(key)
                acquired.append(key)
            yield ordered
        finally:
            for key in reversed(acquired):
                self._release(key)

    def is_held(self, key: str) -> bool:
        """True if the calling thread currently holds ``key``."""
        return key in self._held_counts()

    def active_keys(self) -> int:
        """Number of keys currently locked or awaited by any thread."""
        with self._mutex:
            return len(self._entries)


DOCUMENT_LOCKS = KeyedLockRegistry("document")
STOCK_LOCKS = KeyedLockRegistry("stock")
