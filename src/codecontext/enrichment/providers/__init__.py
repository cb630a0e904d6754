"""Text-completion providers used by the enricher.

Usage:
    from codecontext.enrichment.providers import create_provider

    provider = create_provider("openai", api_key="sk-...", model="gpt-4o-mini")
    response = provider.complete(system_prompt, user_prompt, max_tokens=300)
"""

import logging
from typing import Literal

from codecontext.enrichment.providers.base import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

ProviderType = Literal["openai", "anthropic"]

SUPPORTED_PROVIDERS = ("openai", "anthropic")


def create_provider(
    provider_type: str,
    api_key: str,
    model: str | None = None,
) -> LLMProvider:
    """
    Build a provider.

    SDK modules are imported only for the provider actually used.

    Raises:
        ValueError: If the provider is unknown or the API key is empty
    """
    if provider_type not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unknown provider type: {provider_type}. "
            f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    if not api_key:
        raise ValueError(f"API key is required for {provider_type} provider")

    if provider_type == "openai":
        from codecontext.enrichment.providers.openai_provider import OpenAIProvider

        return OpenAIProvider(api_key=api_key, model=model or "gpt-4o-mini")

    from codecontext.enrichment.providers.anthropic_provider import AnthropicProvider

    return AnthropicProvider(api_key=api_key, model=model or "claude-sonnet-4-5-20250514")


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderType",
    "SUPPORTED_PROVIDERS",
    "create_provider",
]
