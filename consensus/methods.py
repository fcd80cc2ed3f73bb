"""Consensus methods: pure functions from a round's responses to a verdict."""

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from consensus.errors import ConfigInvalid
from consensus.models import AgentResponse, ConsensusVerdict

_FINAL_ANSWER_RE = re.compile(r"final answer\s*:", re.IGNORECASE)
_CONFIDENCE_LINE_RE = re.compile(r"^\s*confidence\s*:.*$", re.IGNORECASE | re.MULTILINE)
_WHITESPACE_RE = re.compile(r"\s+")

# Weight given to a response that reports no confidence in the weighted method
_DEFAULT_WEIGHT = 0.5


def extract_answer(text: str) -> str:
    """Return the text after the last ``FINAL ANSWER:`` marker, or the whole text."""
    markers = list(_FINAL_ANSWER_RE.finditer(text))
    answer = text[markers[-1].end():] if markers else text
    return _CONFIDENCE_LINE_RE.sub("", answer).strip()


def normalize_answer(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", extract_answer(text)).strip().casefold()


@dataclass
class AnswerGroup:
    key: str
    members: list[AgentResponse]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def mean_confidence(self) -> float:
        scores = [m.confidence for m in self.members if m.confidence is not None]
        return sum(scores) / len(scores) if scores else 0.0

    @property
    def first_agent(self) -> str:
        return min(m.agent_id for m in self.members)

    @property
    def answer(self) -> str:
        return extract_answer(self.members[0].text)

    def supporting_confidence(self, total: int) -> float:
        scores = [m.confidence for m in self.members if m.confidence is not None]
        if scores:
            return sum(scores) / len(scores)
        return self.size / total if total else 0.0


def group_responses(responses: Sequence[AgentResponse]) -> list[AnswerGroup]:
    """Group responses by normalized answer, keeping first-seen order."""
    groups: dict[str, AnswerGroup] = {}
    for response in responses:
        key = normalize_answer(response.text)
        groups.setdefault(key, AnswerGroup(key=key, members=[])).members.append(response)
    return list(groups.values())


def rank_groups(groups: list[AnswerGroup]) -> list[AnswerGroup]:
    """Largest group first; ties by higher mean confidence, then lexically smallest agent id."""
    return sorted(groups, key=lambda g: (-g.size, -g.mean_confidence, g.first_agent))


class ConsensusMethod(ABC):
    """Shared contract so the debate loop does not care which method is installed."""

    name: str = ""

    @abstractmethod
    def evaluate(self, responses: Sequence[AgentResponse]) -> ConsensusVerdict:
        ...


class MajorityMethod(ConsensusMethod):
    """Largest answer group wins when it outnumbers all others combined.

    With ``threshold`` set, reaching that fraction of the responses also counts.
    """

    name = "majority"

    def __init__(self, threshold: float | None = None) -> None:
        if threshold is not None and not 0 < threshold <= 1:
            raise ConfigInvalid(f"Consensus threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold

    def _reached(self, winner: AnswerGroup, total: int) -> bool:
        if winner.size > total - winner.size:
            return True
        return self.threshold is not None and winner.size / total >= self.threshold

    def evaluate(self, responses: Sequence[AgentResponse]) -> ConsensusVerdict:
        if not responses:
            return ConsensusVerdict(reached=False, answer="")
        winner = rank_groups(group_responses(responses))[0]
        total = len(responses)
        return ConsensusVerdict(
            reached=self._reached(winner, total),
            answer=winner.answer,
            supporting_confidence=winner.supporting_confidence(total),
        )


class SupermajorityMethod(MajorityMethod):
    name = "supermajority"

    def __init__(self, threshold: float | None = None) -> None:
        super().__init__(threshold if threshold is not None else 0.75)

    def _reached(self, winner: AnswerGroup, total: int) -> bool:
        return winner.size / total >= self.threshold


class UnanimousMethod(MajorityMethod):
    name = "unanimous"

    def _reached(self, winner: AnswerGroup, total: int) -> bool:
        return winner.size == total


class WeightedMethod(ConsensusMethod):
    """Groups vote with the sum of their members' confidences."""

    name = "weighted"

    def __init__(self, threshold: float | None = None) -> None:
        self.threshold = 0.5 if threshold is None else threshold

    def evaluate(self, responses: Sequence[AgentResponse]) -> ConsensusVerdict:
        if not responses:
            return ConsensusVerdict(reached=False, answer="")

        def weight(group: AnswerGroup) -> float:
            return sum(_DEFAULT_WEIGHT if m.confidence is None else m.confidence for m in group.members)

        groups = group_responses(responses)
        winner = sorted(groups, key=lambda g: (-weight(g), -g.size, g.first_agent))[0]
        total_weight = sum(weight(g) for g in groups)
        share = weight(winner) / total_weight if total_weight else 0.0
        return ConsensusVerdict(
            reached=share > self.threshold,
            answer=winner.answer,
            supporting_confidence=winner.supporting_confidence(len(responses)),
        )


CONSENSUS_METHODS: dict[str, type[ConsensusMethod]] = {
    "majority": MajorityMethod,
    "supermajority": SupermajorityMethod,
    "unanimous": UnanimousMethod,
    "weighted": WeightedMethod,
}


def get_consensus_method(name: str, threshold: float | None = None) -> ConsensusMethod:
    method_cls = CONSENSUS_METHODS.get(name)
    if method_cls is None:
        raise ConfigInvalid(
            f"Unknown consensus method: {name!r} (expected one of: {', '.join(sorted(CONSENSUS_METHODS))})"
        )
    return method_cls(threshold)
