"""
In-memory entity stores.

State lives for the lifetime of the process; every component that owns
entities (workflows, conversations, handoff history) is handed its own store
instance so tests can build isolated systems.
"""

import asyncio
from typing import Callable, Dict, Generic, List, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class MemoryStore(Generic[T]):
    """Keyed store guarded by an asyncio lock"""

    def __init__(self, name: str):
        self.name = name
        self._items: Dict[str, T] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, item: T) -> T:
        async with self._lock:
            self._items[key] = item
        return item

    async def get(self, key: str) -> Optional[T]:
        async with self._lock:
            return self._items.get(key)

    async def update(self, key: str, mutate: Callable[[T], None]) -> Optional[T]:
        """
        Apply a mutation to a stored item while holding the lock.

        Returns:
            The updated item, or None if the key is unknown
        """
        async with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            mutate(item)
            return item

    async def values(self) -> List[T]:
        async with self._lock:
            return list(self._items.values())

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._items.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._items)


class AppendOnlyLog(Generic[T]):
    """Append-only sequence guarded by an asyncio lock"""

    def __init__(self, name: str):
        self.name = name
        self._entries: List[T] = []
        self._lock = asyncio.Lock()

    async def append(self, entry: T) -> None:
        async with self._lock:
            self._entries.append(entry)
        logger.debug("log_entry_appended", log=self.name, size=len(self._entries))

    async def entries(self) -> List[T]:
        """Snapshot copy of the log"""
        async with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
