"""Integration tests: real API calls, no mocks. Requires .env with 2+ API keys."""

import os
from dataclasses import replace
from pathlib import Path

import pytest
from dotenv import load_dotenv

load_dotenv()

# Skip entire module if fewer than 2 API keys are set
_AVAILABLE_KEYS = [
    k for k in ["ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY", "XAI_API_KEY", "DEEPSEEK_API_KEY"]
    if os.environ.get(k, "").strip()
]
pytestmark = pytest.mark.integration

if len(_AVAILABLE_KEYS) < 2:
    pytestmark = pytest.mark.skip(reason=f"Need 2+ API keys, found {len(_AVAILABLE_KEYS)}")


async def test_full_debate_pipeline(tmp_path: Path):
    """Run a real debate with available providers, verify the arithmetic answer."""
    from config.config_loader import CacheConfig, load_config
    from consensus.engine import ConsensusEngine
    from consensus.output import save_to_file
    from consensus.providers.registry import build_providers

    config = load_config()
    providers = build_providers(config.models, sorted(config.available_providers))
    assert len(providers) >= 2, f"Need 2+ providers, got {len(providers)}"

    consensus_config = replace(
        config.consensus,
        models=sorted(providers),
        max_rounds=2,
        cache=CacheConfig(enabled=True),
    )
    engine = ConsensusEngine(consensus_config, providers=providers)

    result = await engine.run_debate("What is 4+4?", timeout=600)

    assert result.rounds >= 1
    assert result.reached is True
    assert "8" in result.answer
    assert result.total_tokens > 0

    # Second run is served from the cache
    again = await engine.run_debate("What is 4+4?", timeout=600)
    assert again.cache_stats.hits >= len(providers)
    await engine.aclose()

    saved = save_to_file("What is 4+4?", result, tmp_path / "output")
    content = saved.read_text(encoding="utf-8")
    assert "# Consensus: What is 4+4?" in content
    assert "**Models:**" in content
