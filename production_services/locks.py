"""
KeyedLockRegistry -- in-process mutual exclusion per job number.

Responsibility:
    Hands out one ``threading.Lock`` per key (the NRC job number) so that
    requests for the same job run one at a time inside this process, while
    requests for different jobs proceed in parallel.

Architecture position:
    Services -- infrastructure used by WorkflowOrchestrator.  The database
    row lock on ``jobs`` covers writers in other processes.

Invariants enforced:
    - The lock is held across the caller's commit: ``hold`` wraps the whole
      read-decide-write-commit sequence.
    - Entries are reference counted and dropped when no holder or waiter
      remains, so the registry does not grow with every job ever seen.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """Per-key locks with reference-counted cleanup."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def active_keys(self) -> frozenset[str]:
        with self._guard:
            return frozenset(self._entries)


# Shared by every orchestrator in the process.
DEFAULT_LOCK_REGISTRY = KeyedLockRegistry()
