"""Caching middleware: wraps single model invocations (blocking or streamed) with a cache."""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from typing import Any, TypeVar

from consensus.cache.base import CacheAdapter
from consensus.cache.keys import FingerprintInput, fingerprint
from consensus.errors import StoreUnavailable
from consensus.models import CacheTelemetry, Completion, SamplingParams
from consensus.providers.base import AIProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Payload shape problems that mean "corrupt entry", not "bug in the caller"
_DECODE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


class CachingMiddleware:
    """Cache lookup/populate around a unit of work.

    Store failures never reach the caller: a failed read is a miss, a failed
    write is logged. Identical concurrent requests are not coalesced; the last
    writer wins.
    """

    def __init__(
        self,
        adapter: CacheAdapter,
        ttl_seconds: int | None = None,
        bypass: bool = False,
        bust_cache: bool = False,
        hash_keys: bool = True,
    ) -> None:
        self.adapter = adapter
        self.ttl_seconds = ttl_seconds
        self.bypass = bypass
        self.bust_cache = bust_cache
        self.hash_keys = hash_keys
        self._telemetry = CacheTelemetry()
        self._compute_total_sec = 0.0
        self._compute_count = 0

    @property
    def telemetry(self) -> CacheTelemetry:
        return replace(self._telemetry)

    def reset_telemetry(self) -> None:
        self._telemetry = CacheTelemetry()
        self._compute_total_sec = 0.0
        self._compute_count = 0

    def key_for(self, request: FingerprintInput) -> str:
        return fingerprint(request, digest=self.hash_keys)

    def _record_compute(self, elapsed: float) -> None:
        self._telemetry.misses += 1
        self._compute_total_sec += elapsed
        self._compute_count += 1

    def _record_hit(self, read_latency: float) -> None:
        self._telemetry.hits += 1
        if self._compute_count:
            average = self._compute_total_sec / self._compute_count
            self._telemetry.time_saved_sec += max(0.0, average - read_latency)

    async def _lookup(self, key: str, decode: Callable[[Any], T] | None) -> tuple[bool, Any, float]:
        """Return (hit, value, read_latency). Never raises for store problems."""
        if self.bypass or self.bust_cache:
            return False, None, 0.0
        start = time.monotonic()
        try:
            cached = await self.adapter.get(key)
        except StoreUnavailable as exc:
            self._telemetry.errors += 1
            logger.warning("Cache read failed, computing instead: %s", exc)
            return False, None, 0.0
        elapsed = time.monotonic() - start
        if cached is None:
            return False, None, elapsed
        if decode is None:
            return True, cached, elapsed
        try:
            return True, decode(cached), elapsed
        except _DECODE_ERRORS as exc:
            logger.warning("Corrupt cache entry %s…, deleting: %s", key[:16], exc)
            await self._delete_quietly(key)
            return False, None, elapsed

    async def _store(self, key: str, value: Any) -> None:
        if self.bypass:
            return
        try:
            await self.adapter.set(key, value, self.ttl_seconds)
        except (StoreUnavailable, TypeError, ValueError) as exc:
            self._telemetry.errors += 1
            logger.warning("Cache write failed for %s…: %s", key[:16], exc)

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self.adapter.delete(key)
        except StoreUnavailable as exc:
            self._telemetry.errors += 1
            logger.warning("Could not delete corrupt cache entry: %s", exc)

    async def generate(
        self,
        request: FingerprintInput,
        compute: Callable[[], Awaitable[Any]],
        decode: Callable[[Any], T] | None = None,
        encode: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Return the cached result for ``request`` or compute and cache it.

        ``encode`` turns the computed result into the stored payload and
        ``decode`` reverses it on a hit; a payload ``decode`` rejects is deleted
        and recomputed. FingerprintError propagates to the caller.
        """
        key = self.key_for(request)
        hit, value, read_latency = await self._lookup(key, decode)
        if hit:
            self._record_hit(read_latency)
            logger.debug("Cache hit %s…", key[:16])
            return value

        start = time.monotonic()
        result = await compute()
        self._record_compute(time.monotonic() - start)
        logger.debug("Cache miss %s…", key[:16])

        await self._store(key, encode(result) if encode is not None else result)
        return result

    async def stream(
        self,
        request: FingerprintInput,
        compute_stream: Callable[[], AsyncIterator[str]],
    ) -> AsyncIterator[str]:
        """Cached variant of a streamed call.

        A hit replays the stored chunks. A miss forwards live chunks while
        buffering them; the payload is cached only once the stream has been
        consumed to the end.
        """
        request = replace(request, extra={**request.extra, "streaming": True})
        key = self.key_for(request)
        hit, chunks, read_latency = await self._lookup(key, _decode_chunks)
        if hit:
            self._record_hit(read_latency)
            for chunk in chunks:
                yield chunk
            return

        buffered: list[str] = []
        start = time.monotonic()
        async for chunk in compute_stream():
            buffered.append(chunk)
            yield chunk
        self._record_compute(time.monotonic() - start)
        await self._store(key, {"chunks": buffered})

    def wrap_provider(self, provider: AIProvider) -> "CachedProvider":
        return CachedProvider(provider, self)


def _decode_chunks(payload: Any) -> list[str]:
    chunks = payload["chunks"]
    if not isinstance(chunks, list) or not all(isinstance(c, str) for c in chunks):
        raise TypeError("cached stream payload must be a list of strings")
    return chunks


class CachedProvider(AIProvider):
    """Provider wrapper that routes every call through a CachingMiddleware."""

    def __init__(self, inner: AIProvider, middleware: CachingMiddleware) -> None:
        self.inner = inner
        self.middleware = middleware

    def name(self) -> str:
        return self.inner.name()

    def model_string(self) -> str:
        return self.inner.model_string()

    @property
    def _config(self):
        # Lets the debate loop's timeout retry reach the wrapped provider's settings
        return getattr(self.inner, "_config", None)

    def _request(self, prompt: str, params: SamplingParams) -> FingerprintInput:
        return FingerprintInput(
            models=[self.inner.model_string()],
            prompt=prompt,
            system_prompt=params.system_prompt,
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            extra={"provider": self.inner.name()},
        )

    async def generate(self, prompt: str, params: SamplingParams) -> Completion:
        return await self.middleware.generate(
            self._request(prompt, params),
            lambda: self.inner.generate(prompt, params),
            decode=Completion.from_dict,
            encode=Completion.to_dict,
        )

    async def stream(self, prompt: str, params: SamplingParams) -> AsyncIterator[str]:
        async for chunk in self.middleware.stream(
            self._request(prompt, params),
            lambda: self.inner.stream(prompt, params),
        ):
            yield chunk
