"""Networked cache backed by Redis (redis-py asyncio client)."""

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from consensus.cache.base import DEFAULT_TTL_SECONDS, CacheAdapter
from consensus.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_BACKEND = "redis"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_PREFIX = "consensus:"


class RedisCacheAdapter(CacheAdapter):
    """Shares cache entries across processes through a Redis server.

    The client is created lazily on first use. Keys are namespaced with
    ``prefix`` so ``clear()`` only touches this application's entries. Expiry is
    delegated to Redis (``SET ... EX``).
    """

    def __init__(
        self,
        url: str = DEFAULT_REDIS_URL,
        prefix: str = DEFAULT_PREFIX,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        client: Redis | None = None,
    ) -> None:
        self.url = url
        self.prefix = prefix
        self.default_ttl = default_ttl
        self._client = client

    def _get_client(self) -> Redis:
        if self._client is None:
            self._client = Redis.from_url(self.url, decode_responses=True)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Any | None:
        full_key = self._key(key)
        try:
            raw = await self._get_client().get(full_key)
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(_BACKEND, f"GET failed: {exc}") from exc

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Undecodable Redis value at %s, deleting", full_key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._effective_ttl(ttl_seconds)
        payload = json.dumps(value)
        try:
            if ttl > 0:
                await self._get_client().set(self._key(key), payload, ex=ttl)
            else:
                await self._get_client().set(self._key(key), payload)
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(_BACKEND, f"SET failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._get_client().delete(self._key(key))
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(_BACKEND, f"DEL failed: {exc}") from exc

    async def clear(self) -> None:
        client = self._get_client()
        try:
            keys = [k async for k in client.scan_iter(match=f"{self.prefix}*", count=100)]
            if keys:
                await client.delete(*keys)
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(_BACKEND, f"clear failed: {exc}") from exc
        logger.info("Cleared %d Redis cache keys under %r", len(keys), self.prefix)

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except (RedisError, OSError) as exc:
            logger.error("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(_BACKEND, f"close failed: {exc}") from exc
