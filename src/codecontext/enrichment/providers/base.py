"""Base interface and error translation for text-completion providers."""

import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from codecontext.exceptions import ProviderError, RateLimitError
from codecontext.utils.timeutil import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60
MIN_RETRY_AFTER_SECONDS = 1
MAX_RETRY_AFTER_SECONDS = 3600

RATE_LIMIT_MESSAGE = re.compile(
    r"rate.?limit|quota exceeded|too many requests|resource.?exhausted",
    re.IGNORECASE,
)


@dataclass
class LLMResponse:
    """Completion returned by a provider.

    Attributes:
        content: Generated text
        prompt_tokens: Tokens in the prompt
        completion_tokens: Tokens in the completion
        finish_reason: Why generation stopped (stop, length, ...)
        model: Model that served the request
        duration_ms: Wall time of the API call
    """

    content: str
    prompt_tokens: int
    completion_tokens: int
    finish_reason: str
    model: str
    duration_ms: float

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMProvider(ABC):
    """A text-completion API used for enrichment.

    Implementations translate SDK failures into ``RateLimitError`` or
    ``ProviderError`` so callers never see SDK exception types.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Generate a completion.

        Raises:
            RateLimitError: Provider throttled the request
            ProviderError: Any other provider failure
        """
        ...

    @abstractmethod
    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Cost in USD of the given token usage."""
        ...


def parse_retry_after(headers: Any) -> Optional[int]:
    """
    Read a Retry-After header.

    Accepts delay seconds or an HTTP date. The result is clamped to
    [MIN_RETRY_AFTER_SECONDS, MAX_RETRY_AFTER_SECONDS]; None when absent
    or unparseable.
    """
    if headers is None:
        return None
    try:
        value = headers.get("retry-after")
    except AttributeError:
        return None
    if value is None or str(value).strip() == "":
        return None

    value = str(value).strip()
    try:
        seconds = float(value)
    except ValueError:
        when = parse_timestamp(value)
        if when is None:
            return None
        seconds = (when - utcnow()).total_seconds()

    return int(
        min(max(math.ceil(seconds), MIN_RETRY_AFTER_SECONDS), MAX_RETRY_AFTER_SECONDS)
    )


def is_rate_limit_error(error: BaseException) -> bool:
    """True for HTTP 429 errors and errors whose message says they were throttled."""
    if getattr(error, "status_code", None) == 429:
        return True
    return bool(RATE_LIMIT_MESSAGE.search(str(error)))


def translate_error(error: BaseException, provider_name: str) -> Exception:
    """Map an SDK exception to RateLimitError or ProviderError."""
    if is_rate_limit_error(error):
        response = getattr(error, "response", None)
        retry_after = parse_retry_after(getattr(response, "headers", None))
        return RateLimitError(
            f"{provider_name} rate limit: {error}",
            retry_after_seconds=retry_after or DEFAULT_RETRY_AFTER_SECONDS,
        )
    return ProviderError(f"{provider_name} request failed: {error}")
