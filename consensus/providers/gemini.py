"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from consensus.models import Completion, SamplingParams
from consensus.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _generation_config(self, params: SamplingParams) -> genai_types.GenerateContentConfig:
        temperature = params.temperature if params.temperature is not None else self._config.temperature
        return genai_types.GenerateContentConfig(
            max_output_tokens=params.max_tokens or self._config.max_tokens,
            temperature=temperature,
            system_instruction=params.system_prompt or self._config.system_prompt,
        )

    async def generate(self, prompt: str, params: SamplingParams) -> Completion:
        start = time.monotonic()
        timeout = params.timeout_sec or self._config.timeout_sec
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=prompt,
                    config=self._generation_config(params),
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        token_count = 0
        if response.usage_metadata and response.usage_metadata.total_token_count:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini: %.2fs, %s tokens", latency, token_count)

        return Completion(text=response.text, token_cost=token_count, model=self._config.model)

    async def stream(self, prompt: str, params: SamplingParams) -> AsyncIterator[str]:
        try:
            chunks = await self._client.aio.models.generate_content_stream(
                model=self._config.model,
                contents=prompt,
                config=self._generation_config(params),
            )
            async for chunk in chunks:
                if chunk.text:
                    yield chunk.text
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming call failed: {exc}") from exc
