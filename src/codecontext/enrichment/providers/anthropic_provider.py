"""Anthropic completion provider."""

import logging
import time

import anthropic
from anthropic import Anthropic

from codecontext.enrichment.providers.base import LLMProvider, LLMResponse, translate_error

logger = logging.getLogger(__name__)


# USD per 1M tokens
ANTHROPIC_PRICING = {
    "claude-sonnet-4-5-20250514": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "default": {"input": 3.00, "output": 15.00},
}


class AnthropicProvider(LLMProvider):
    """Messages API provider."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5-20250514"):
        if not api_key:
            raise ValueError("Anthropic API key is required")

        self.client = Anthropic(api_key=api_key)
        self._model = model
        logger.info(f"Anthropic provider ready (model={model})")

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
    ) -> LLMResponse:
        started = time.time()
        try:
            response = self.client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APIError as e:
            raise translate_error(e, self.provider_name) from e

        # Only text blocks carry output
        content = "".join(
            block.text for block in response.content if hasattr(block, "text")
        )
        usage = response.usage
        return LLMResponse(
            content=content,
            prompt_tokens=usage.input_tokens if usage else 0,
            completion_tokens=usage.output_tokens if usage else 0,
            finish_reason=response.stop_reason or "unknown",
            model=response.model,
            duration_ms=(time.time() - started) * 1000,
        )

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        pricing = ANTHROPIC_PRICING.get(self._model)
        if pricing is None:
            # Versioned model names share the family's pricing
            family = self._model.rsplit("-", 1)[0]
            pricing = next(
                (
                    value
                    for key, value in ANTHROPIC_PRICING.items()
                    if key != "default" and key.startswith(family)
                ),
                ANTHROPIC_PRICING["default"],
            )
        return (
            prompt_tokens * pricing["input"] + completion_tokens * pricing["output"]
        ) / 1_000_000
