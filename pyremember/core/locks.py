"""
Advisory locks that serialize dedup-then-insert per user.

Locks are keyed by user_id rather than (user_id, agent_id) because a dedup
check without an agent sees every agent's memories for that user.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class ScopeLockRegistry:
    """In-process registry of per-user locks, dropped once nobody holds them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """Block until the user's lock is free, then hold it for the block."""
        with self._guard:
            entry = self._entries.get(user_id)
            if entry is None:
                entry = self._entries[user_id] = _Entry()
            entry.holders += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[user_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
