"""
Bounded, persisted history of past analyses.

Most-recent-first, at most ``capacity`` items. Persistence is whole-list
replace (read-modify-write); a single session owns the store, so the last
write wins.
"""

import asyncio
import logging
from typing import Dict, List, Protocol

from pipeline.analysis.schema import HistoryItem

logger = logging.getLogger(__name__)


DEFAULT_CAPACITY = 5


class HistoryBackend(Protocol):
    """Key-value-by-id storage for history items. Blocking calls."""

    def read_all(self) -> List[HistoryItem]:
        ...

    def write_all(self, items: List[HistoryItem]) -> None:
        ...


class MemoryHistoryBackend:
    """Process-local backend, used for tests and the ``memory`` setting."""

    def __init__(self):
        self._items: Dict[str, HistoryItem] = {}

    def read_all(self) -> List[HistoryItem]:
        return list(self._items.values())

    def write_all(self, items: List[HistoryItem]) -> None:
        self._items = {item.id: item for item in items}


class HistoryStore:
    """
    Capacity-bounded history over a HistoryBackend.

    Usage:
        store = HistoryStore(MemoryHistoryBackend(), capacity=5)
        items = await store.append(item)
        items = await store.load_all()
    """

    def __init__(self, backend: HistoryBackend, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.backend = backend
        self.capacity = capacity

    def trim(self, items: List[HistoryItem]) -> List[HistoryItem]:
        return list(items)[:self.capacity]

    async def load_all(self) -> List[HistoryItem]:
        """All items, most recent result timestamp first."""
        items = await asyncio.to_thread(self.backend.read_all)
        items.sort(key=lambda item: item.data.timestamp, reverse=True)
        return self.trim(items)

    async def append(self, item: HistoryItem) -> List[HistoryItem]:
        """Put ``item`` in front, evict beyond capacity, persist, return the new list."""
        current = await self.load_all()
        items = self.trim([item] + [existing for existing in current if existing.id != item.id])
        await asyncio.to_thread(self.backend.write_all, items)

        evicted = len(current) + 1 - len(items)
        if evicted > 0:
            logger.debug(f"History full, evicted {evicted} oldest item(s)")
        return items

    async def replace_all(self, items: List[HistoryItem]) -> None:
        """Overwrite persisted history with ``items``."""
        await asyncio.to_thread(self.backend.write_all, self.trim(items))
