"""Per-key re-entrant locks.

Serializes work on one subscription while work on different subscriptions
runs in parallel.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Dict


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLock:
    """threading.RLock per key, kept only while some thread holds or waits for it."""

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for key for the duration of the block."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


_subscription_locks = KeyedLock()


def get_subscription_locks() -> KeyedLock:
    """Process-wide locks keyed by marketplace subscription id."""
    return _subscription_locks
