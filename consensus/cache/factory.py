"""Resolve a CacheConfig into a concrete adapter, once, at engine construction."""

import logging
from typing import Any

from config.config_loader import CacheConfig
from consensus.cache.base import CacheAdapter
from consensus.cache.file import FileCacheAdapter
from consensus.cache.memory import MemoryCacheAdapter
from consensus.errors import ConfigInvalid

logger = logging.getLogger(__name__)


def _memory(ttl: int, options: dict[str, Any]) -> CacheAdapter:
    return MemoryCacheAdapter(max_size=int(options.get("max_size", 1000)), default_ttl=ttl)


def _file(ttl: int, options: dict[str, Any]) -> CacheAdapter:
    return FileCacheAdapter(
        cache_dir=options.get("cache_dir", ".cache"),
        default_ttl=ttl,
        create_dir=bool(options.get("create_dir", True)),
    )


def _redis(ttl: int, options: dict[str, Any]) -> CacheAdapter:
    # Imported here so the redis client library only loads when selected
    from consensus.cache.redis_adapter import DEFAULT_PREFIX, DEFAULT_REDIS_URL, RedisCacheAdapter

    return RedisCacheAdapter(
        url=options.get("url", DEFAULT_REDIS_URL),
        prefix=options.get("prefix", DEFAULT_PREFIX),
        default_ttl=ttl,
    )


ADAPTER_BUILDERS = {
    "memory": _memory,
    "file": _file,
    "redis": _redis,
    "networked": _redis,
}


def resolve_cache_adapter(config: CacheConfig) -> CacheAdapter:
    """Build the adapter selected by ``config``.

    A ``custom`` kind (or any config carrying ``instance``) returns that
    instance unchanged.
    """
    if config.instance is not None:
        if not isinstance(config.instance, CacheAdapter):
            raise ConfigInvalid(f"Custom cache instance must be a CacheAdapter, got {type(config.instance).__name__}")
        return config.instance

    if config.adapter_kind == "custom":
        raise ConfigInvalid("Cache adapter kind 'custom' requires an adapter instance")

    builder = ADAPTER_BUILDERS.get(config.adapter_kind)
    if builder is None:
        raise ConfigInvalid(
            f"Unsupported cache adapter: {config.adapter_kind!r} "
            f"(expected one of: {', '.join(sorted(ADAPTER_BUILDERS))}, custom)"
        )
    adapter = builder(config.ttl_seconds, dict(config.adapter_options))
    logger.info("Cache adapter: %s (ttl=%ss)", config.adapter_kind, config.ttl_seconds)
    return adapter
