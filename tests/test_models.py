"""Tests for consensus/models.py dataclasses and consensus/errors.py."""

import pytest

from consensus.errors import AgentFailure, AllAgentsFailed, ConsensusError, DebateTimeout, StoreUnavailable
from consensus.models import AgentResponse, Completion, DebateSession, Round


def test_completion_round_trip():
    completion = Completion(text="FINAL ANSWER: 8", token_cost=12, model="gpt-4o")
    assert Completion.from_dict(completion.to_dict()) == completion


def test_completion_from_dict_defaults():
    assert Completion.from_dict({"text": "hi"}) == Completion(text="hi", token_cost=0, model=None)


def test_completion_from_dict_rejects_non_text():
    with pytest.raises(TypeError):
        Completion.from_dict({"text": ["not", "text"]})
    with pytest.raises(KeyError):
        Completion.from_dict({"token_cost": 1})


def test_round_default_responses():
    rnd = Round(index=1, phase="initial")
    assert rnd.responses == []
    assert rnd.failures == []
    assert rnd.token_cost == 0


def test_round_token_cost_sums_responses(sample_response):
    rnd = Round(index=1, phase="initial", responses=[sample_response, sample_response])
    assert rnd.token_cost == 84


def test_session_totals(sample_round):
    session = DebateSession(query="YAML or JSON?", rounds=[sample_round, sample_round])
    assert session.last_round is sample_round
    assert session.total_tokens == 84
    assert session.state == "initial"
    assert session.query_type == "unknown"


def test_empty_session():
    session = DebateSession(query="q")
    assert session.last_round is None
    assert session.total_tokens == 0


def test_agent_response_is_immutable(sample_response: AgentResponse):
    with pytest.raises(AttributeError):
        sample_response.text = "changed"  # type: ignore[misc]


def test_errors_share_a_root():
    for exc in (
        StoreUnavailable("redis", "down"),
        AgentFailure("claude", 2, "timed out"),
        AllAgentsFailed(1, []),
        DebateTimeout(5.0),
    ):
        assert isinstance(exc, ConsensusError)


def test_error_messages_carry_context():
    failure = AgentFailure("claude", 2, "timed out")
    assert str(failure) == "[claude] round 2: timed out"
    assert "[redis]" in str(StoreUnavailable("redis", "down"))
    assert "(claude)" in str(AllAgentsFailed(2, [failure]))
    assert "0 sealed rounds" in str(DebateTimeout(5.0))
