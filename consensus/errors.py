"""Exception taxonomy shared by the cache layer, the debate loop and the engine."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from consensus.models import DebateSession


class ConsensusError(Exception):
    """Base class for every error raised by this package."""


class ConfigInvalid(ConsensusError):
    """Raised at construction time when the configuration cannot work."""


class FingerprintError(ConsensusError):
    """Raised when request parameters cannot be serialized into a cache key."""


class StoreUnavailable(ConsensusError):
    """Raised by a cache adapter when its backend cannot be reached.

    Callers treat this as a cache miss.
    """

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class AgentFailure(ConsensusError):
    """One agent failed to answer within a round. Recorded, never raised by the debate loop."""

    def __init__(self, agent_id: str, round_index: int, message: str) -> None:
        self.agent_id = agent_id
        self.round_index = round_index
        self.message = message
        super().__init__(f"[{agent_id}] round {round_index}: {message}")


class AllAgentsFailed(ConsensusError):
    """Every agent failed in the same round; the session cannot continue."""

    def __init__(
        self,
        round_index: int,
        failures: list[AgentFailure],
        session: "DebateSession | None" = None,
    ) -> None:
        self.round_index = round_index
        self.failures = failures
        self.session = session
        agents = ", ".join(f.agent_id for f in failures) or "none"
        super().__init__(f"All agents failed in round {round_index} ({agents})")


class DebateTimeout(ConsensusError):
    """The caller-supplied deadline expired; sealed rounds stay on ``session``."""

    def __init__(self, timeout_sec: float, session: "DebateSession | None" = None) -> None:
        self.timeout_sec = timeout_sec
        self.session = session
        sealed = len(session.rounds) if session is not None else 0
        super().__init__(f"Debate timed out after {timeout_sec}s ({sealed} sealed rounds)")
