"""
In-memory cache of raw song bodies.

Unbounded for the lifetime of the process. Each ID carries a generation
counter bumped by every put() and invalidate(), so a read that started
before a write cannot repopulate the cache with the older body.
"""

from typing import Optional


class DocumentCache:
    """Maps song ID to the most recently read or written body."""

    def __init__(self) -> None:
        self._bodies: dict[str, str] = {}
        self._generations: dict[str, int] = {}

    def get(self, id: str) -> Optional[str]:
        """Cached body, or None on a miss."""
        return self._bodies.get(id)

    def generation(self, id: str) -> int:
        """Current generation for an ID; pass it to fill() after a store read."""
        return self._generations.get(id, 0)

    def put(self, id: str, body: str) -> None:
        """Replace the cached body after a successful write."""
        self._generations[id] = self.generation(id) + 1
        self._bodies[id] = body

    def fill(self, id: str, body: str, generation: int) -> bool:
        """
        Cache a body read from the store, unless a write or delete for the
        same ID happened since `generation` was taken.

        Returns:
            True if the body was cached
        """
        if self.generation(id) != generation:
            return False
        self._bodies[id] = body
        return True

    def invalidate(self, id: str) -> None:
        self._generations[id] = self.generation(id) + 1
        self._bodies.pop(id, None)

    def clear(self) -> None:
        """Drop every cached body (used by a full reindex)."""
        for id in list(self._bodies):
            self.invalidate(id)

    def __contains__(self, id: str) -> bool:
        return id in self._bodies

    def __len__(self) -> int:
        return len(self._bodies)
