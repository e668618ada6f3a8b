"""
Per-ID mutual exclusion for the coordinator.

Writers to the same song ID queue behind each other. Readers do not
exclude one another; they only wait for a write already in flight for
their ID. Entries are dropped as soon as nobody holds or waits on them.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLocks:
    """A mapping from ID to an asyncio.Lock, created on demand."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    def _acquire_entry(self, key: str) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        return entry

    def _release_entry(self, key: str, entry: _Entry) -> None:
        entry.users -= 1
        if entry.users == 0 and self._entries.get(key) is entry:
            del self._entries[key]

    @asynccontextmanager
    async def write(self, key: str) -> AsyncIterator[None]:
        """Hold the exclusive lock for `key`; released on every exit path."""
        entry = self._acquire_entry(key)
        try:
            async with entry.lock:
                yield
        finally:
            self._release_entry(key, entry)

    async def wait_for_writer(self, key: str) -> None:
        """Return once no write for `key` is in flight."""
        entry = self._entries.get(key)
        if entry is None or not entry.lock.locked():
            return
        entry.users += 1
        try:
            async with entry.lock:
                pass
        finally:
            self._release_entry(key, entry)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
