"""OpenAI provider using openai SDK with native async.

Also serves OpenAI-compatible vendors (xAI Grok, DeepSeek) through ``base_url``.
"""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from consensus.models import Completion, SamplingParams
from consensus.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _request_kwargs(self, prompt: str, params: SamplingParams) -> dict:
        messages = []
        system = params.system_prompt or self._config.system_prompt
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "max_tokens": params.max_tokens or self._config.max_tokens,
        }
        temperature = params.temperature if params.temperature is not None else self._config.temperature
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    async def generate(self, prompt: str, params: SamplingParams) -> Completion:
        start = time.monotonic()
        timeout = params.timeout_sec or self._config.timeout_sec
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**self._request_kwargs(prompt, params)),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        token_count = response.usage.total_tokens if response.usage else 0

        logger.info("%s: %.2fs, %s tokens", self._config.name, latency, token_count)

        return Completion(text=choice.message.content, token_cost=token_count, model=self._config.model)

    async def stream(self, prompt: str, params: SamplingParams) -> AsyncIterator[str]:
        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(prompt, params), stream=True
            )
            async for chunk in response:
                delta = chunk.choices[0].delta.content if chunk.choices else None
                if delta:
                    yield delta
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming call failed: {exc}") from exc


class OpenAICompatibleProvider(OpenAIProvider):
    """Vendors exposing the OpenAI chat API at their own base_url (xAI, DeepSeek)."""

    def __init__(self, config: ModelConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, f"base_url is required for {config.sdk} provider")
        super().__init__(config)
