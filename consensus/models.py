"""Dataclasses for the consensus pipeline. No logic beyond small helpers, no deps."""

from dataclasses import dataclass, field
from typing import Any, Literal

QueryType = Literal["factual", "abstract", "unknown"]
Phase = Literal["initial", "debate", "final"]
SessionState = Literal["initial", "debate", "final", "terminated"]
Trend = Literal["increasing", "decreasing", "stable", "unknown"]


@dataclass(frozen=True)
class SamplingParams:
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    # Per-call override of the provider timeout; not part of the cache key
    timeout_sec: float | None = None


@dataclass
class Completion:
    text: str
    token_cost: int = 0
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "token_cost": self.token_cost, "model": self.model}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Completion":
        text = raw["text"]
        if not isinstance(text, str):
            raise TypeError(f"cached text must be str, got {type(text).__name__}")
        return cls(text=text, token_cost=int(raw.get("token_cost") or 0), model=raw.get("model"))


@dataclass(frozen=True)
class AgentResponse:
    agent_id: str
    text: str
    confidence: float | None = None
    token_cost: int = 0
    model: str | None = None
    latency_sec: float = 0.0


@dataclass
class Round:
    index: int
    phase: Phase
    responses: list[AgentResponse] = field(default_factory=list)
    failures: list = field(default_factory=list)  # list[AgentFailure]

    @property
    def token_cost(self) -> int:
        return sum(r.token_cost for r in self.responses)


@dataclass(frozen=True)
class AgreementSnapshot:
    round_index: int
    score: float
    trend: Trend


@dataclass(frozen=True)
class ConsensusVerdict:
    reached: bool
    answer: str
    supporting_confidence: float | None = None


@dataclass
class DebateSession:
    query: str
    query_type: QueryType = "unknown"
    rounds: list[Round] = field(default_factory=list)
    snapshots: list[AgreementSnapshot] = field(default_factory=list)
    state: SessionState = "initial"
    verdict: ConsensusVerdict | None = None
    organic: bool = False

    @property
    def last_round(self) -> Round | None:
        return self.rounds[-1] if self.rounds else None

    @property
    def total_tokens(self) -> int:
        return sum(r.token_cost for r in self.rounds)


@dataclass
class CacheTelemetry:
    hits: int = 0
    misses: int = 0
    errors: int = 0
    time_saved_sec: float = 0.0


@dataclass
class ConsensusResult:
    answer: str
    models: list[str]
    reached: bool          # reporting value; forced True when the round limit ends the debate
    organic: bool          # True only when the consensus method itself reported agreement
    rounds: int
    consensus_method: str
    total_tokens: int
    duration_sec: float
    supporting_confidence: float | None = None
    history: list[Round] | None = None
    metadata: dict[str, Any] | None = None
    cache_stats: CacheTelemetry | None = None
