"""Tests for consensus/cache/middleware.py and consensus/cache/factory.py."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import CacheConfig
from consensus.cache.factory import resolve_cache_adapter
from consensus.cache.file import FileCacheAdapter
from consensus.cache.keys import FingerprintInput
from consensus.cache.memory import MemoryCacheAdapter
from consensus.cache.middleware import CachedProvider, CachingMiddleware
from consensus.errors import ConfigInvalid, FingerprintError, StoreUnavailable
from consensus.models import Completion, SamplingParams
from tests.conftest import MockProvider

REQUEST = FingerprintInput(models=["claude"], prompt="What is 4+4?")


class BrokenAdapter(MemoryCacheAdapter):
    """Every operation fails like an unreachable backend."""

    async def get(self, key):
        raise StoreUnavailable("broken", "down")

    async def set(self, key, value, ttl_seconds=None):
        raise StoreUnavailable("broken", "down")

    async def delete(self, key):
        raise StoreUnavailable("broken", "down")


# --- generate ---

async def test_miss_then_hit():
    middleware = CachingMiddleware(MemoryCacheAdapter())
    compute = AsyncMock(return_value={"text": "8"})

    first = await middleware.generate(REQUEST, compute)
    second = await middleware.generate(REQUEST, compute)

    assert first == second == {"text": "8"}
    assert compute.await_count == 1
    stats = middleware.telemetry
    assert (stats.hits, stats.misses, stats.errors) == (1, 1, 0)
    assert stats.time_saved_sec >= 0.0


async def test_bypass_neither_reads_nor_writes():
    adapter = MemoryCacheAdapter()
    await adapter.set(CachingMiddleware(adapter).key_for(REQUEST), "stale")
    middleware = CachingMiddleware(adapter, bypass=True)
    compute = AsyncMock(return_value="fresh")

    assert await middleware.generate(REQUEST, compute) == "fresh"
    assert await adapter.get(middleware.key_for(REQUEST)) == "stale"


async def test_bust_cache_skips_read_but_overwrites():
    adapter = MemoryCacheAdapter()
    key = CachingMiddleware(adapter).key_for(REQUEST)
    await adapter.set(key, "stale")
    middleware = CachingMiddleware(adapter, bust_cache=True)

    assert await middleware.generate(REQUEST, AsyncMock(return_value="fresh")) == "fresh"
    assert await adapter.get(key) == "fresh"


async def test_store_failure_degrades_to_compute(caplog):
    middleware = CachingMiddleware(BrokenAdapter())
    compute = AsyncMock(return_value="8")

    assert await middleware.generate(REQUEST, compute) == "8"
    assert await middleware.generate(REQUEST, compute) == "8"
    assert compute.await_count == 2
    assert middleware.telemetry.errors == 4
    assert any("Cache read failed" in msg for msg in caplog.messages)


async def test_corrupt_entry_is_deleted_and_recomputed():
    adapter = MemoryCacheAdapter()
    middleware = CachingMiddleware(adapter)
    key = middleware.key_for(REQUEST)
    await adapter.set(key, {"text": 42})

    result = await middleware.generate(
        REQUEST,
        AsyncMock(return_value=Completion(text="8")),
        decode=Completion.from_dict,
        encode=Completion.to_dict,
    )

    assert result.text == "8"
    assert await adapter.get(key) == {"text": "8", "token_cost": 0, "model": None}


async def test_unserializable_value_is_not_cached(tmp_path: Path):
    middleware = CachingMiddleware(FileCacheAdapter(cache_dir=tmp_path))
    value = object()

    assert await middleware.generate(REQUEST, AsyncMock(return_value=value)) is value
    assert middleware.telemetry.errors == 1


async def test_fingerprint_error_propagates():
    middleware = CachingMiddleware(MemoryCacheAdapter())
    bad = FingerprintInput(models=["m"], prompt="q", temperature=float("inf"))
    with pytest.raises(FingerprintError):
        await middleware.generate(bad, AsyncMock())


async def test_telemetry_is_per_instance_and_resettable():
    adapter = MemoryCacheAdapter()
    one, two = CachingMiddleware(adapter), CachingMiddleware(adapter)
    await one.generate(REQUEST, AsyncMock(return_value="8"))
    await two.generate(REQUEST, AsyncMock(return_value="8"))

    assert one.telemetry.misses == 1
    assert two.telemetry.hits == 1

    one.reset_telemetry()
    assert one.telemetry.misses == 0


async def test_raw_keys_when_hashing_disabled():
    middleware = CachingMiddleware(MemoryCacheAdapter(), hash_keys=False)
    assert middleware.key_for(REQUEST).startswith("{")


# --- stream ---

async def _chunks(*parts):
    for part in parts:
        yield part


async def test_stream_replays_cached_chunks():
    middleware = CachingMiddleware(MemoryCacheAdapter())
    calls = 0

    def compute_stream():
        nonlocal calls
        calls += 1
        return _chunks("4 + 4 ", "= ", "8")

    first = [c async for c in middleware.stream(REQUEST, compute_stream)]
    second = [c async for c in middleware.stream(REQUEST, compute_stream)]

    assert first == second == ["4 + 4 ", "= ", "8"]
    assert calls == 1


async def test_partially_consumed_stream_is_not_cached():
    middleware = CachingMiddleware(MemoryCacheAdapter())
    stream = middleware.stream(REQUEST, lambda: _chunks("a", "b", "c"))

    assert await stream.__anext__() == "a"
    await stream.aclose()

    assert middleware.telemetry.misses == 0
    replay = [c async for c in middleware.stream(REQUEST, lambda: _chunks("x"))]
    assert replay == ["x"]


async def test_stream_and_generate_do_not_share_entries():
    middleware = CachingMiddleware(MemoryCacheAdapter())
    await middleware.generate(REQUEST, AsyncMock(return_value={"chunks": ["cached"]}))
    streamed = [c async for c in middleware.stream(REQUEST, lambda: _chunks("live"))]
    assert streamed == ["live"]


# --- CachedProvider ---

async def test_cached_provider_hits_after_first_call():
    inner = MockProvider("claude", "FINAL ANSWER: 8")
    provider = CachingMiddleware(MemoryCacheAdapter()).wrap_provider(inner)

    assert isinstance(provider, CachedProvider)
    assert provider.name() == "claude"
    first = await provider.generate("What is 4+4?", SamplingParams(temperature=0.0))
    second = await provider.generate("What is 4+4?", SamplingParams(temperature=0.0))

    assert first == second == Completion(text="FINAL ANSWER: 8", token_cost=10, model="mock-model")
    assert inner.generate.await_count == 1


async def test_cached_provider_keys_on_sampling_params():
    inner = MockProvider("claude", "FINAL ANSWER: 8")
    provider = CachingMiddleware(MemoryCacheAdapter()).wrap_provider(inner)

    await provider.generate("q", SamplingParams(temperature=0.0))
    await provider.generate("q", SamplingParams(temperature=0.9))

    assert inner.generate.await_count == 2


async def test_cached_provider_ignores_call_timeout_in_key():
    inner = MockProvider("claude", "FINAL ANSWER: 8")
    provider = CachingMiddleware(MemoryCacheAdapter()).wrap_provider(inner)

    await provider.generate("q", SamplingParams(max_tokens=64))
    await provider.generate("q", SamplingParams(max_tokens=64, timeout_sec=45))

    assert inner.generate.await_count == 1


async def test_cached_provider_exposes_inner_config(sample_model_config):
    inner = MockProvider("claude")
    inner._config = sample_model_config
    provider = CachingMiddleware(MemoryCacheAdapter()).wrap_provider(inner)
    assert provider._config is sample_model_config


# --- factory ---

def test_factory_builds_memory_by_default():
    assert isinstance(resolve_cache_adapter(CacheConfig(enabled=True)), MemoryCacheAdapter)


def test_factory_builds_file_adapter(tmp_path: Path):
    adapter = resolve_cache_adapter(
        CacheConfig(enabled=True, adapter_kind="file", ttl_seconds=5, adapter_options={"cache_dir": str(tmp_path)})
    )
    assert isinstance(adapter, FileCacheAdapter)
    assert adapter.cache_dir == tmp_path
    assert adapter.default_ttl == 5


@pytest.mark.parametrize("kind", ["redis", "networked"])
def test_factory_builds_redis_adapter(kind):
    from consensus.cache.redis_adapter import RedisCacheAdapter

    adapter = resolve_cache_adapter(
        CacheConfig(enabled=True, adapter_kind=kind, adapter_options={"url": "redis://cache:6379/1", "prefix": "x:"})
    )
    assert isinstance(adapter, RedisCacheAdapter)
    assert adapter.url == "redis://cache:6379/1"
    assert adapter.prefix == "x:"


def test_factory_returns_custom_instance():
    custom = MemoryCacheAdapter()
    assert resolve_cache_adapter(CacheConfig(enabled=True, adapter_kind="custom", instance=custom)) is custom


@pytest.mark.parametrize(
    "config",
    [
        CacheConfig(enabled=True, adapter_kind="custom"),
        CacheConfig(enabled=True, adapter_kind="memcached"),
        CacheConfig(enabled=True, adapter_kind="custom", instance="not an adapter"),
    ],
)
def test_factory_rejects_invalid_configs(config):
    with pytest.raises(ConfigInvalid):
        resolve_cache_adapter(config)
