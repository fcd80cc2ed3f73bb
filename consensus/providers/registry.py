"""Map ``sdk`` names from settings.yaml to provider classes and build instances."""

import logging

from config.config_loader import ModelConfig
from consensus.providers.anthropic import AnthropicProvider
from consensus.providers.base import AIProvider
from consensus.providers.gemini import GeminiProvider
from consensus.providers.openai_provider import OpenAICompatibleProvider, OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google-genai": GeminiProvider,
    "openai-compatible": OpenAICompatibleProvider,
}


def build_providers(model_configs: dict[str, ModelConfig], names: list[str] | None = None) -> dict[str, AIProvider]:
    """Instantiate providers for ``names`` (all configured models when None).

    Models whose SDK is unknown or whose client cannot be created are skipped
    with a warning; callers decide whether the remaining panel is enough.
    """
    providers: dict[str, AIProvider] = {}
    for name in names if names is not None else list(model_configs):
        model_cfg = model_configs.get(name)
        if model_cfg is None:
            logger.warning("Model '%s' not configured, skipping", name)
            continue
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider SDK '%s' for '%s' unknown, skipping", model_cfg.sdk, name)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers
