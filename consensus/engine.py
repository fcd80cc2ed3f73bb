"""ConsensusEngine: the programmatic entry point tying providers, cache and debate together."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from config.config_loader import ConsensusConfig
from consensus.cache.base import CacheAdapter
from consensus.cache.factory import resolve_cache_adapter
from consensus.cache.middleware import CachingMiddleware
from consensus.debate import DebateManager
from consensus.errors import ConfigInvalid, DebateTimeout, StoreUnavailable
from consensus.methods import ConsensusMethod, get_consensus_method
from consensus.models import (
    CacheTelemetry,
    ConsensusResult,
    DebateSession,
    Round,
    SamplingParams,
)
from consensus.providers.base import AIProvider
from consensus.providers.registry import build_providers

logger = logging.getLogger(__name__)


class ConsensusEngine:
    """Runs single-shot or multi-round consensus over a panel of agents.

    Example:
        engine = ConsensusEngine(config)
        result = await engine.run_debate("What is 4+4?")
        print(result.answer)
    """

    def __init__(self, config: ConsensusConfig, providers: dict[str, AIProvider] | None = None) -> None:
        if not config.models:
            raise ConfigInvalid("At least one model is required")
        if len(set(config.models)) != len(config.models):
            raise ConfigInvalid(f"Duplicate model names: {config.models}")
        if config.max_rounds < 1:
            raise ConfigInvalid(f"max_rounds must be >= 1, got {config.max_rounds}")
        if not 1 <= config.min_rounds <= config.max_rounds:
            raise ConfigInvalid(
                f"min_rounds must be between 1 and max_rounds ({config.max_rounds}), got {config.min_rounds}"
            )
        if config.round_timeout_sec is not None and config.round_timeout_sec <= 0:
            raise ConfigInvalid(f"round_timeout_sec must be positive, got {config.round_timeout_sec}")

        self.config = config
        self.method: ConsensusMethod = get_consensus_method(config.consensus_method, config.threshold)

        if providers is None:
            providers = build_providers(config.model_configs, config.models)
        missing = [name for name in config.models if name not in providers]
        if missing:
            raise ConfigInvalid(f"No provider available for model(s): {', '.join(missing)}")

        self.cache: CacheAdapter | None = None
        self.middleware: CachingMiddleware | None = None
        if config.cache.enabled:
            self.cache = resolve_cache_adapter(config.cache)
            self.middleware = CachingMiddleware(
                self.cache,
                ttl_seconds=config.cache.ttl_seconds,
                bypass=config.cache.bypass,
                bust_cache=config.cache.bust_cache,
                hash_keys=config.cache.hash_keys,
            )

        self.agents: list[AIProvider] = []
        for name in config.models:
            provider = providers[name]
            self.agents.append(self.middleware.wrap_provider(provider) if self.middleware else provider)

        self._debate = DebateManager(
            agents=self.agents,
            method=self.method,
            prompts=config.prompts,
            max_rounds=config.max_rounds,
            min_rounds=config.min_rounds,
            round_timeout_sec=config.round_timeout_sec,
            agent_params=self._agent_params(),
            use_specialized_prompts=config.use_specialized_prompts,
            use_final_template=config.use_final_template,
            reveal_identities=config.reveal_identities,
        )

    def _agent_params(self) -> dict[str, SamplingParams]:
        params: dict[str, SamplingParams] = {}
        for name in self.config.models:
            model_cfg = self.config.model_configs.get(name)
            if model_cfg is None:
                params[name] = SamplingParams()
                continue
            params[name] = SamplingParams(
                temperature=model_cfg.temperature,
                max_tokens=model_cfg.max_tokens,
                system_prompt=model_cfg.system_prompt,
            )
        return params

    async def run(self, query: str) -> ConsensusResult:
        """Ask every agent once and report the method's verdict without debate."""
        start = time.monotonic()
        session = await self._debate.run(query, force_verdict=False, max_rounds=1)
        return self._build_result(session, time.monotonic() - start)

    async def run_debate(
        self,
        query: str,
        timeout: float | None = None,
        on_round_complete: Callable[[Round], None] | None = None,
    ) -> ConsensusResult:
        """Run the full debate protocol.

        Raises:
            DebateTimeout: ``timeout`` expired; the exception carries the partial session.
            AllAgentsFailed: Every agent failed in some round.
        """
        start = time.monotonic()
        session = DebateSession(query=query)
        try:
            await asyncio.wait_for(
                self._debate.run(query, session=session, on_round_complete=on_round_complete),
                timeout=timeout,
            )
        except TimeoutError as exc:
            logger.warning("Debate timed out after %ss with %d sealed rounds", timeout, len(session.rounds))
            raise DebateTimeout(timeout, session) from exc
        return self._build_result(session, time.monotonic() - start)

    def _build_result(self, session: DebateSession, duration: float) -> ConsensusResult:
        verdict = session.verdict
        output = self.config.output
        result = ConsensusResult(
            answer=verdict.answer if verdict else "",
            models=list(self.config.models),
            reached=verdict.reached if verdict else False,
            organic=session.organic,
            rounds=len(session.rounds),
            consensus_method=self.method.name,
            total_tokens=session.total_tokens,
            duration_sec=duration,
            supporting_confidence=verdict.supporting_confidence if verdict else None,
        )
        if output.include_history:
            result.history = list(session.rounds)
        if output.include_metadata:
            result.metadata = self._metadata(session)
        if self.middleware is not None:
            result.cache_stats = self.middleware.telemetry
        return result

    def _metadata(self, session: DebateSession) -> dict[str, Any]:
        last = session.last_round
        verdict = session.verdict
        return {
            "query_type": session.query_type,
            "consensus_reached": session.organic,
            "forced": bool(verdict and verdict.reached and not session.organic),
            "agreement": [
                {"round": s.round_index, "score": round(s.score, 4), "trend": s.trend} for s in session.snapshots
            ],
            "confidence_scores": {r.agent_id: r.confidence for r in last.responses} if last else {},
            "failures": {
                rnd.index: {f.agent_id: f.message for f in rnd.failures} for rnd in session.rounds if rnd.failures
            },
        }

    # --- cache passthrough ---

    def _require_cache(self) -> CacheAdapter:
        if self.cache is None:
            raise ConfigInvalid("Caching is not enabled for this engine")
        return self.cache

    async def cache_get(self, key: str) -> Any | None:
        return await self._require_cache().get(key)

    async def cache_set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._require_cache().set(key, value, ttl_seconds)

    async def cache_delete(self, key: str) -> None:
        await self._require_cache().delete(key)

    async def cache_clear(self) -> None:
        await self._require_cache().clear()

    @property
    def cache_stats(self) -> CacheTelemetry | None:
        return self.middleware.telemetry if self.middleware is not None else None

    async def aclose(self) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.close()
        except StoreUnavailable as exc:
            logger.warning("Error closing cache adapter: %s", exc)
