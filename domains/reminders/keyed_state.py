"""Per-key state with a lock per key.

Used for escalation state (keyed by reminder) and pending batches (keyed by
owner). Work on one key is serialised; different keys never wait on each other.
A key's lock is dropped once its value is gone and nobody holds or awaits it.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Generic, Optional, TypeVar

V = TypeVar("V")


class KeyedState(Generic[V]):

    def __init__(self):
        self._values: dict[str, V] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key
        self._users: dict[str, int] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def locked(self, key: str):
        """Hold the key's lock for the duration of the block."""
        lock = self._lock_for(key)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                self._discard_lock(key)

    def _discard_lock(self, key: str) -> None:
        if key not in self._values and key not in self._users:
            self._locks.pop(key, None)

    def get(self, key: str) -> Optional[V]:
        return self._values.get(key)

    def set(self, key: str, value: V) -> None:
        self._values[key] = value

    def pop(self, key: str) -> Optional[V]:
        value = self._values.pop(key, None)
        self._discard_lock(key)
        return value

    def lock_count(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
