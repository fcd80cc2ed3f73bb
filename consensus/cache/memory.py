"""In-process bounded cache."""

import copy
import logging
from collections import OrderedDict
from typing import Any

from consensus.cache.base import DEFAULT_TTL_SECONDS, CacheAdapter, CacheEntry

logger = logging.getLogger(__name__)


class MemoryCacheAdapter(CacheAdapter):
    """LRU-bounded dict living in the current process.

    Operations never await, so they are atomic with respect to other tasks on
    the same event loop.
    """

    def __init__(self, max_size: int = 1000, default_ttl: int = DEFAULT_TTL_SECONDS) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.max_size = max_size
        self.default_ttl = default_ttl

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        # Copies on the way in and out, matching the serializing adapters
        self._entries[key] = CacheEntry.create(copy.deepcopy(value), self._effective_ttl(ttl_seconds))
        self._entries.move_to_end(key)
        while self.max_size > 0 and len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Memory cache full, evicted %s", evicted[:16])

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry now. Returns the number removed."""
        expired = [k for k, e in self._entries.items() if e.is_expired()]
        for key in expired:
            del self._entries[key]
        return len(expired)
