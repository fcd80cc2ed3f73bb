"""Abstract base for all cache adapters."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float | None = None  # None means no expiry

    @classmethod
    def create(cls, value: Any, ttl_seconds: int | float | None, now: float | None = None) -> "CacheEntry":
        created = time.time() if now is None else now
        expires = created + ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        return cls(value=value, created_at=created, expires_at=expires)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at


class CacheAdapter(ABC):
    """Abstract key-value store with TTL.

    All variants share the same semantics; they differ only in persistence and
    cross-process visibility. Backend failures are raised as StoreUnavailable.
    """

    default_ttl: int = DEFAULT_TTL_SECONDS

    def _effective_ttl(self, ttl_seconds: int | None) -> int:
        return self.default_ttl if ttl_seconds is None else ttl_seconds

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store ``value``. ``ttl_seconds=None`` uses the default TTL; ``<= 0`` never expires."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources. No-op unless the adapter holds connections."""
        return None
