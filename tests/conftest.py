"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import ConsensusConfig, ModelConfig, OutputConfig, PromptsConfig
from consensus.models import AgentResponse, Completion, Round, SamplingParams
from consensus.providers.base import AIProvider


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        initial="{persona}\n{guidance}\nAnswer this question: {query}",
        debate="{persona}\nRound {round}. Question: {query}\n\nOthers said:\n{previous_responses}\n\nCritique:",
        final="{persona}\nFinal round {round}. Question: {query}\n\n{previous_responses}\n\nCommit:",
        guidance={"factual": "Be exact.", "abstract": "Be thoughtful.", "unknown": "Be brief."},
        personas={"mock": "Be a mock architect."},
    )


@pytest.fixture
def sample_consensus_config(sample_prompts_config: PromptsConfig, tmp_path: Path) -> ConsensusConfig:
    return ConsensusConfig(
        models=["a", "b", "c"],
        consensus_method="majority",
        max_rounds=3,
        prompts=sample_prompts_config,
        output=OutputConfig(include_history=True, include_metadata=True, output_dir=tmp_path / "output"),
    )


@pytest.fixture
def sample_response() -> AgentResponse:
    return AgentResponse(
        agent_id="claude",
        text="Use YAML for human-editable config.\nFINAL ANSWER: YAML\nCONFIDENCE: 0.8",
        confidence=0.8,
        token_cost=42,
        model="claude-sonnet-4-20250514",
        latency_sec=1.5,
    )


@pytest.fixture
def sample_round(sample_response: AgentResponse) -> Round:
    return Round(index=1, phase="initial", responses=[sample_response])


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_text: str = "Mock response") -> None:
        self._name = provider_name
        self._response_text = response_text
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=Completion(text=response_text, token_cost=10, model="mock-model")
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, prompt: str, params: SamplingParams) -> Completion:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return Completion(text=self._response_text, token_cost=10, model="mock-model")


class ScriptedProvider(AIProvider):
    """Replies with the next scripted answer per call and records every prompt.

    The last reply repeats once the script is exhausted.
    """

    def __init__(self, provider_name: str, replies: list[str], token_cost: int = 5) -> None:
        self._name = provider_name
        self._replies = list(replies)
        self._token_cost = token_cost
        self.prompts: list[str] = []

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return f"{self._name}-model"

    async def generate(self, prompt: str, params: SamplingParams) -> Completion:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self._replies)) - 1
        return Completion(text=self._replies[index], token_cost=self._token_cost, model=self.model_string())


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def two_mock_providers() -> list[MockProvider]:
    return [MockProvider("provider_a", "FINAL ANSWER: A"), MockProvider("provider_b", "FINAL ANSWER: B")]


@pytest.fixture
def agreeing_providers() -> dict[str, ScriptedProvider]:
    return {name: ScriptedProvider(name, ["4 + 4 = 8\nFINAL ANSWER: 8"]) for name in ("a", "b", "c")}


@pytest.fixture
def disagreeing_providers() -> dict[str, ScriptedProvider]:
    return {
        "a": ScriptedProvider("a", ["FINAL ANSWER: to love"]),
        "b": ScriptedProvider("b", ["FINAL ANSWER: to learn"]),
        "c": ScriptedProvider("c", ["FINAL ANSWER: 42"]),
    }
