"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from consensus.models import Completion, SamplingParams
from consensus.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _request_kwargs(self, prompt: str, params: SamplingParams) -> dict:
        kwargs: dict = {
            "model": self._config.model,
            "max_tokens": params.max_tokens or self._config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        temperature = params.temperature if params.temperature is not None else self._config.temperature
        if temperature is not None:
            kwargs["temperature"] = temperature
        system = params.system_prompt or self._config.system_prompt
        if system:
            kwargs["system"] = system
        return kwargs

    async def generate(self, prompt: str, params: SamplingParams) -> Completion:
        start = time.monotonic()
        timeout = params.timeout_sec or self._config.timeout_sec
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**self._request_kwargs(prompt, params)),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        token_count = 0
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic: %.2fs, %s tokens", latency, token_count)

        return Completion(text="\n".join(text_blocks), token_cost=token_count, model=self._config.model)

    async def stream(self, prompt: str, params: SamplingParams) -> AsyncIterator[str]:
        try:
            async with self._client.messages.stream(**self._request_kwargs(prompt, params)) as stream:
                async for text in stream.text_stream:
                    yield text
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming call failed: {exc}") from exc
