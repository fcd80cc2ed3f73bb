"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from consensus.models import Completion, SamplingParams


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, params: SamplingParams) -> Completion:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send.
            params: Sampling parameters; unset fields fall back to provider config.

        Returns:
            Completion with the response text and token cost.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...

    async def stream(self, prompt: str, params: SamplingParams) -> AsyncIterator[str]:
        """Yield the response as text chunks.

        Providers without native streaming emit the whole completion as one chunk.
        """
        completion = await self.generate(prompt, params)
        yield completion.text
