"""Load settings.yaml into typed dataclasses and apply environment overrides."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from consensus import templates

if TYPE_CHECKING:
    from consensus.cache.base import CacheAdapter

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_TRUTHY = {"1", "true", "yes", "on"}
_ADAPTER_KINDS = {"memory", "file", "redis", "networked", "custom"}


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None
    temperature: float | None = None
    system_prompt: str | None = None


@dataclass
class PromptsConfig:
    initial: str = templates.INITIAL
    debate: str = templates.DEBATE
    final: str = templates.FINAL
    guidance: dict[str, str] = field(default_factory=lambda: dict(templates.GUIDANCE))
    personas: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = False
    adapter_kind: str = "memory"
    ttl_seconds: int = 3600
    adapter_options: Mapping[str, Any] = field(default_factory=dict)
    instance: "CacheAdapter | None" = None
    bypass: bool = False
    bust_cache: bool = False
    hash_keys: bool = True


@dataclass
class OutputConfig:
    include_history: bool = False
    include_metadata: bool = True
    output_dir: Path = Path("./output")


@dataclass
class ConsensusConfig:
    models: list[str]
    consensus_method: str = "majority"
    threshold: float | None = None
    max_rounds: int = 3
    min_rounds: int = 1
    round_timeout_sec: float | None = None
    use_specialized_prompts: bool = True
    use_final_template: bool = True
    reveal_identities: bool = True
    cache: CacheConfig = field(default_factory=CacheConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    model_configs: dict[str, ModelConfig] = field(default_factory=dict)


@dataclass
class AppConfig:
    consensus: ConsensusConfig
    models: dict[str, ModelConfig]
    available_providers: set[str] = field(default_factory=set)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def apply_env_overrides(cache: CacheConfig, environ: Mapping[str, str] | None = None) -> CacheConfig:
    """Return a copy of ``cache`` with ENABLE_CACHE / CACHE_* / REDIS_* overrides applied."""
    env = os.environ if environ is None else environ
    changes: dict[str, Any] = {}

    if env.get("ENABLE_CACHE", "").strip():
        changes["enabled"] = _as_bool(env["ENABLE_CACHE"])

    adapter = env.get("CACHE_ADAPTER", "").strip().lower()
    if adapter:
        if adapter not in _ADAPTER_KINDS:
            logger.warning("Ignoring unknown CACHE_ADAPTER=%s", adapter)
        else:
            changes["adapter_kind"] = adapter

    ttl_raw = (env.get("CACHE_TTL") or env.get("CACHE_TTL_SECONDS") or "").strip()
    if ttl_raw:
        try:
            changes["ttl_seconds"] = int(ttl_raw)
        except ValueError:
            logger.warning("Ignoring non-integer CACHE_TTL=%s", ttl_raw)

    options = dict(cache.adapter_options)
    for env_name, option in (("CACHE_DIR", "cache_dir"), ("REDIS_URL", "url"), ("REDIS_PREFIX", "prefix")):
        value = env.get(env_name, "").strip()
        if value:
            options[option] = value
    if options != dict(cache.adapter_options):
        changes["adapter_options"] = options

    return replace(cache, **changes) if changes else cache


def load_config(settings_path: Path = _SETTINGS_PATH, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    env = os.environ if environ is None else environ

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in (raw.get("models") or {}).items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            temperature=model_raw.get("temperature"),
            system_prompt=model_raw.get("system_prompt"),
        )
        models[provider_name] = model_cfg

        api_key = env.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s (set %s in .env)",
                provider_name,
                model_raw["api_key_env"],
            )

    prompts_raw = raw.get("prompts") or {}
    guidance = dict(templates.GUIDANCE)
    guidance.update({k: str(v) for k, v in (prompts_raw.get("guidance") or {}).items()})
    prompts = PromptsConfig(
        initial=prompts_raw.get("initial", templates.INITIAL),
        debate=prompts_raw.get("debate", templates.DEBATE),
        final=prompts_raw.get("final", templates.FINAL),
        guidance=guidance,
        personas={k: str(v) for k, v in (raw.get("personas") or {}).items()},
    )

    cache_raw = raw.get("cache") or {}
    cache = CacheConfig(
        enabled=_as_bool(cache_raw.get("enabled", False)),
        adapter_kind=str(cache_raw.get("adapter", "memory")).lower(),
        ttl_seconds=int(cache_raw.get("ttl_seconds", 3600)),
        adapter_options=dict(cache_raw.get("adapter_options") or {}),
        bypass=_as_bool(cache_raw.get("bypass", False)),
        bust_cache=_as_bool(cache_raw.get("bust_cache", False)),
        hash_keys=_as_bool(cache_raw.get("hash_keys", True)),
    )
    cache = apply_env_overrides(cache, env)

    output_raw = raw.get("output") or {}
    output = OutputConfig(
        include_history=_as_bool(output_raw.get("include_history", False)),
        include_metadata=_as_bool(output_raw.get("include_metadata", True)),
        output_dir=Path(output_raw.get("output_dir", "./output")),
    )

    consensus_raw = raw.get("consensus") or {}
    threshold = consensus_raw.get("threshold")
    round_timeout = consensus_raw.get("round_timeout_sec")
    consensus = ConsensusConfig(
        models=list(consensus_raw.get("models") or []),
        consensus_method=str(consensus_raw.get("method", "majority")),
        threshold=float(threshold) if threshold is not None else None,
        max_rounds=int(consensus_raw.get("max_rounds", 3)),
        min_rounds=int(consensus_raw.get("min_rounds", 1)),
        round_timeout_sec=float(round_timeout) if round_timeout is not None else None,
        use_specialized_prompts=_as_bool(consensus_raw.get("use_specialized_prompts", True)),
        use_final_template=_as_bool(consensus_raw.get("use_final_template", True)),
        reveal_identities=_as_bool(consensus_raw.get("reveal_identities", True)),
        cache=cache,
        output=output,
        prompts=prompts,
        model_configs=models,
    )

    return AppConfig(
        consensus=consensus,
        models=models,
        available_providers=available_providers,
    )
