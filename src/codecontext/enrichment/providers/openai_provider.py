"""OpenAI completion provider."""

import logging
import time

import openai
from openai import OpenAI

from codecontext.enrichment.providers.base import LLMProvider, LLMResponse, translate_error

logger = logging.getLogger(__name__)


# USD per 1M tokens
OPENAI_PRICING = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "default": {"input": 0.15, "output": 0.60},
}


class OpenAIProvider(LLMProvider):
    """Chat Completions API provider."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        if not api_key:
            raise ValueError("OpenAI API key is required")

        self.client = OpenAI(api_key=api_key)
        self._model = model
        logger.info(f"OpenAI provider ready (model={model})")

    @property
    def provider_name(self) -> str:
        return "openai"

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
            response = self.client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APIError as e:
            raise translate_error(e, self.provider_name) from e

        usage = response.usage
        choice = response.choices[0]
        return LLMResponse(
            content=choice.message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason or "unknown",
            model=response.model,
            duration_ms=(time.time() - started) * 1000,
        )

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        pricing = OPENAI_PRICING.get(self._model, OPENAI_PRICING["default"])
        return (
            prompt_tokens * pricing["input"] + completion_tokens * pricing["output"]
        ) / 1_000_000
