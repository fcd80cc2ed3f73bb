"""Debate orchestration: concurrent agent calls, critique rounds, termination policy."""

import asyncio
import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from itertools import combinations

from config.config_loader import PromptsConfig
from consensus.errors import AgentFailure, AllAgentsFailed, ConfigInvalid, FingerprintError
from consensus.methods import ConsensusMethod, extract_answer, normalize_answer
from consensus.models import (
    AgentResponse,
    AgreementSnapshot,
    DebateSession,
    Phase,
    Round,
    SamplingParams,
    Trend,
)
from consensus.providers.base import AIProvider, ProviderError
from consensus.templates import detect_query_type

logger = logging.getLogger(__name__)

# Quality gate: warn when fewer than this many agents respond in Round 1
_MIN_QUALITY_RESPONSES = 3

# Agreement deltas within this band count as "stable"
TREND_THRESHOLD = 0.05

_CONFIDENCE_RE = re.compile(r"confidence\s*[:=]\s*([01](?:\.\d+)?|\.\d+)", re.IGNORECASE)
_WORD_RE = re.compile(r"\w+")


def extract_confidence(text: str) -> float | None:
    """Return the last ``CONFIDENCE: x`` value in ``text``, clamped to [0, 1]."""
    matches = _CONFIDENCE_RE.findall(text)
    if not matches:
        return None
    return min(max(float(matches[-1]), 0.0), 1.0)


def _similarity(a: AgentResponse, b: AgentResponse) -> float:
    left, right = normalize_answer(a.text), normalize_answer(b.text)
    if left == right:
        return 1.0
    left_words, right_words = set(_WORD_RE.findall(left)), set(_WORD_RE.findall(right))
    if not left_words or not right_words:
        return 0.0
    return len(left_words & right_words) / len(left_words | right_words)


def agreement_score(responses: Sequence[AgentResponse]) -> float:
    """Mean pairwise similarity of the agents' answers, in [0, 1]."""
    if len(responses) < 2:
        return 1.0 if responses else 0.0
    pairs = list(combinations(responses, 2))
    return sum(_similarity(a, b) for a, b in pairs) / len(pairs)


def classify_trend(previous: float | None, current: float) -> Trend:
    if previous is None:
        return "unknown"
    delta = current - previous
    if delta > TREND_THRESHOLD:
        return "increasing"
    if delta < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


def _format_previous(responses: Sequence[AgentResponse], reveal_identities: bool) -> str:
    """Render the previous round for the next prompt, in agent order."""
    parts: list[str] = []
    for i, r in enumerate(responses):
        if reveal_identities:
            parts.append(f"RESPONSE {i + 1} ({r.agent_id}):\n{r.text}")
        else:
            parts.append(f"--- Proposal {chr(ord('A') + i)} ---\n{r.text}")
    return "\n\n".join(parts)


async def _call_agent(
    agent: AIProvider,
    prompt: str,
    params: SamplingParams,
    round_index: int,
) -> AgentResponse | AgentFailure:
    """Call a single agent, retrying once on timeout with 1.5x the timeout.

    Returns AgentFailure on permanent failure. Only cancellation and
    FingerprintError (a caller error, not an agent fault) propagate.
    """
    start = time.monotonic()
    try:
        completion = await agent.generate(prompt, params)
    except FingerprintError:
        raise
    except ProviderError as exc:
        if "timed out" not in str(exc).lower():
            logger.warning("Agent %s failed in round %d: %s", agent.name(), round_index, exc)
            return AgentFailure(agent.name(), round_index, str(exc))

        # Retry once with 1.5x timeout, passed per call so the shared provider config is untouched
        retry_params = params
        base_timeout = params.timeout_sec or getattr(getattr(agent, "_config", None), "timeout_sec", None)
        if base_timeout:
            retry_params = replace(params, timeout_sec=base_timeout * 1.5)
            logger.warning(
                "Agent %s timed out in round %d, retrying with %gs (1.5x)",
                agent.name(), round_index, retry_params.timeout_sec,
            )
        else:
            logger.warning("Agent %s timed out in round %d, retrying", agent.name(), round_index)
        try:
            completion = await agent.generate(prompt, retry_params)
        except FingerprintError:
            raise
        except Exception as retry_exc:
            logger.warning(
                "Agent %s failed after retry in round %d: %s", agent.name(), round_index, retry_exc,
            )
            return AgentFailure(agent.name(), round_index, f"failed after retry: {retry_exc}")
    except Exception as exc:
        logger.warning("Agent %s unexpected failure in round %d: %s", agent.name(), round_index, exc)
        return AgentFailure(agent.name(), round_index, f"Unexpected error: {exc}")

    if not completion.text or not completion.text.strip():
        logger.warning("Agent %s returned empty text in round %d", agent.name(), round_index)
        return AgentFailure(agent.name(), round_index, "empty response")

    return AgentResponse(
        agent_id=agent.name(),
        text=completion.text,
        confidence=extract_confidence(completion.text),
        token_cost=max(0, int(completion.token_cost or 0)),
        model=completion.model or agent.model_string(),
        latency_sec=time.monotonic() - start,
    )


class DebateManager:
    """Drives the rounds of one debate session.

    States run ``initial -> debate* -> final -> terminated``. Every round fans
    out to all agents concurrently and waits for all of them (or the round
    timeout) before the consensus method is consulted.
    """

    def __init__(
        self,
        agents: Sequence[AIProvider],
        method: ConsensusMethod,
        prompts: PromptsConfig | None = None,
        max_rounds: int = 3,
        min_rounds: int = 1,
        round_timeout_sec: float | None = None,
        agent_params: dict[str, SamplingParams] | None = None,
        use_specialized_prompts: bool = True,
        use_final_template: bool = True,
        reveal_identities: bool = True,
    ) -> None:
        if not agents:
            raise ConfigInvalid("At least one agent is required")
        if max_rounds < 1:
            raise ConfigInvalid(f"max_rounds must be >= 1, got {max_rounds}")
        if not 1 <= min_rounds <= max_rounds:
            raise ConfigInvalid(f"min_rounds must be between 1 and max_rounds ({max_rounds}), got {min_rounds}")
        names = [a.name() for a in agents]
        if len(set(names)) != len(names):
            raise ConfigInvalid(f"Agent names must be unique: {names}")

        self.agents = list(agents)
        self.method = method
        self.prompts = prompts or PromptsConfig()
        self.max_rounds = max_rounds
        self.min_rounds = min_rounds
        self.round_timeout_sec = round_timeout_sec
        self.agent_params = agent_params or {}
        self.use_specialized_prompts = use_specialized_prompts
        self.use_final_template = use_final_template
        self.reveal_identities = reveal_identities

    def _phase_for(self, index: int, limit: int) -> Phase:
        if index == 1:
            return "initial"
        if index == limit and self.use_final_template:
            return "final"
        return "debate"

    def build_prompts(self, session: DebateSession, index: int, phase: Phase) -> dict[str, str]:
        """Return the prompt for every agent in round ``index``."""
        guidance = self.prompts.guidance.get(session.query_type, self.prompts.guidance.get("unknown", ""))
        if phase == "initial":
            template, previous = self.prompts.initial, ""
        else:
            template = self.prompts.final if phase == "final" else self.prompts.debate
            previous = _format_previous(session.rounds[-1].responses, self.reveal_identities)

        return {
            agent.name(): template.format(
                persona=self.prompts.personas.get(agent.name(), ""),
                query=session.query,
                guidance=guidance,
                round=index,
                previous_responses=previous,
            ).strip()
            for agent in self.agents
        }

    async def _run_round(self, index: int, phase: Phase, prompts: dict[str, str]) -> Round:
        logger.info("Starting round %d (%s) with %d agents", index, phase, len(self.agents))

        tasks = {
            agent.name(): asyncio.create_task(
                _call_agent(agent, prompts[agent.name()], self.agent_params.get(agent.name(), SamplingParams()), index)
            )
            for agent in self.agents
        }
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=self.round_timeout_sec)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        rnd = Round(index=index, phase=phase)
        for agent_id, task in tasks.items():
            if task in pending:
                logger.warning("Agent %s missed the %ss deadline in round %d", agent_id, self.round_timeout_sec, index)
                rnd.failures.append(
                    AgentFailure(agent_id, index, f"no response within round timeout of {self.round_timeout_sec}s")
                )
                continue
            result = task.result()
            if isinstance(result, AgentResponse):
                rnd.responses.append(result)
            else:
                rnd.failures.append(result)
        return rnd

    async def run(
        self,
        query: str,
        session: DebateSession | None = None,
        on_round_complete: Callable[[Round], None] | None = None,
        force_verdict: bool = True,
        max_rounds: int | None = None,
    ) -> DebateSession:
        """Run the debate for ``query`` until consensus or the round limit.

        Args:
            query: The question being debated.
            session: Optional caller-owned session; sealed rounds remain on it if
                the run is cancelled or fails part-way.
            on_round_complete: Optional callback invoked after each round is sealed.
            force_verdict: When the round limit ends the debate without agreement,
                report the last round's verdict as reached (session.organic stays False).
            max_rounds: Override for this run only (e.g. 1 for single-shot mode).

        Returns:
            The terminated DebateSession.

        Raises:
            AllAgentsFailed: If every agent fails in a round.
        """
        limit = max_rounds if max_rounds is not None else self.max_rounds
        if limit < 1:
            raise ConfigInvalid(f"max_rounds must be >= 1, got {limit}")

        if session is None:
            session = DebateSession(query=query)
        session.query = query
        session.query_type = detect_query_type(query) if self.use_specialized_prompts else "unknown"
        logger.debug("Query type: %s", session.query_type)

        for index in range(1, limit + 1):
            phase = self._phase_for(index, limit)
            session.state = phase
            rnd = await self._run_round(index, phase, self.build_prompts(session, index, phase))

            if not rnd.responses:
                session.state = "terminated"
                raise AllAgentsFailed(index, rnd.failures, session)

            # Quality gate: warn when Round 1 has low participation on a large panel
            if index == 1 and len(self.agents) >= _MIN_QUALITY_RESPONSES and len(rnd.responses) < _MIN_QUALITY_RESPONSES:
                logger.warning(
                    "WARNING: Only %d/%d agents responded in Round 1. Debate quality is degraded.",
                    len(rnd.responses),
                    len(self.agents),
                )

            previous_score = session.snapshots[-1].score if session.snapshots else None
            score = agreement_score(rnd.responses)
            session.rounds.append(rnd)
            session.snapshots.append(
                AgreementSnapshot(round_index=index, score=score, trend=classify_trend(previous_score, score))
            )

            verdict = self.method.evaluate(rnd.responses)
            logger.info(
                "Round %d complete: %d/%d agents responded, agreement %.2f, consensus %s",
                index, len(rnd.responses), len(self.agents), score, "reached" if verdict.reached else "not reached",
            )

            if on_round_complete:
                on_round_complete(rnd)

            if verdict.reached and index >= self.min_rounds:
                session.verdict = verdict
                session.organic = True
                break

            if index == limit:
                session.organic = verdict.reached
                if force_verdict and not verdict.reached:
                    logger.info("Round limit %d hit without consensus, forcing verdict", limit)
                    verdict = replace(verdict, reached=True)
                session.verdict = verdict

        session.state = "terminated"
        return session


def final_answers(session: DebateSession) -> dict[str, str]:
    """Each agent's extracted answer from the last sealed round."""
    last = session.last_round
    if last is None:
        return {}
    return {r.agent_id: extract_answer(r.text) for r in last.responses}
