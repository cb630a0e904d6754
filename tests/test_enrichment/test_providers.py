"""Tests for completion provider implementations."""

from datetime import timedelta
from unittest.mock import Mock, patch

import anthropic
import httpx
import openai
import pytest

from codecontext.enrichment.providers import (
    LLMResponse,
    SUPPORTED_PROVIDERS,
    create_provider,
)
from codecontext.enrichment.providers.anthropic_provider import AnthropicProvider
from codecontext.enrichment.providers.base import (
    DEFAULT_RETRY_AFTER_SECONDS,
    MAX_RETRY_AFTER_SECONDS,
    is_rate_limit_error,
    parse_retry_after,
    translate_error,
)
from codecontext.enrichment.providers.openai_provider import OpenAIProvider
from codecontext.exceptions import ProviderError, RateLimitError
from codecontext.utils.timeutil import utcnow

REQUEST = httpx.Request("POST", "https://api.example.test/v1/complete")


def status_response(status_code: int, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status_code, request=REQUEST, headers=headers or {})


class TestLLMResponse:
    def test_total_tokens(self):
        response = LLMResponse(
            content="{}",
            prompt_tokens=100,
            completion_tokens=50,
            finish_reason="stop",
            model="gpt-4o-mini",
            duration_ms=12.5,
        )
        assert response.total_tokens == 150


class TestProviderFactory:
    """Tests for create_provider."""

    def test_supported_providers(self):
        assert SUPPORTED_PROVIDERS == ("openai", "anthropic")

    @patch("codecontext.enrichment.providers.openai_provider.OpenAI")
    def test_create_openai_provider(self, mock_openai_class: Mock):
        """Test creating OpenAI provider."""
        provider = create_provider("openai", api_key="sk-test-key", model="gpt-4o")

        assert isinstance(provider, OpenAIProvider)
        assert provider.provider_name == "openai"
        assert provider.model_name == "gpt-4o"
        mock_openai_class.assert_called_once_with(api_key="sk-test-key")

    @patch("codecontext.enrichment.providers.anthropic_provider.Anthropic")
    def test_create_anthropic_provider_default_model(self, mock_anthropic_class: Mock):
        provider = create_provider("anthropic", api_key="sk-ant-test")

        assert isinstance(provider, AnthropicProvider)
        assert provider.model_name == "claude-sonnet-4-5-20250514"

    def test_invalid_type(self):
        with pytest.raises(ValueError, match="Unknown provider type"):
            create_provider("invalid", api_key="test-key")

    def test_missing_api_key(self):
        with pytest.raises(ValueError, match="API key is required"):
            create_provider("openai", api_key="")


class TestOpenAIProvider:
    """Tests for OpenAIProvider.complete."""

    @patch("codecontext.enrichment.providers.openai_provider.OpenAI")
    def test_complete(self, mock_openai_class: Mock):
        mock_client = Mock()
        mock_openai_class.return_value = mock_client
        mock_response = Mock()
        mock_response.choices = [Mock(message=Mock(content='{"summary": "x"}'), finish_reason="stop")]
        mock_response.usage = Mock(prompt_tokens=120, completion_tokens=30)
        mock_response.model = "gpt-4o-mini"
        mock_client.chat.completions.create.return_value = mock_response

        provider = OpenAIProvider(api_key="sk-test")
        response = provider.complete("system", "user", max_tokens=200)

        assert response.content == '{"summary": "x"}'
        assert response.prompt_tokens == 120
        assert response.completion_tokens == 30
        assert response.finish_reason == "stop"
        call_kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert call_kwargs["max_tokens"] == 200
        assert call_kwargs["messages"][0] == {"role": "system", "content": "system"}

    @patch("codecontext.enrichment.providers.openai_provider.OpenAI")
    def test_rate_limit_is_translated(self, mock_openai_class: Mock):
        mock_client = Mock()
        mock_openai_class.return_value = mock_client
        mock_client.chat.completions.create.side_effect = openai.RateLimitError(
            "Rate limit reached",
            response=status_response(429, {"retry-after": "30"}),
            body=None,
        )

        provider = OpenAIProvider(api_key="sk-test")
        with pytest.raises(RateLimitError) as exc_info:
            provider.complete("system", "user")

        assert exc_info.value.retry_after_seconds == 30

    @patch("codecontext.enrichment.providers.openai_provider.OpenAI")
    def test_other_errors_become_provider_errors(self, mock_openai_class: Mock):
        mock_client = Mock()
        mock_openai_class.return_value = mock_client
        mock_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=REQUEST
        )

        provider = OpenAIProvider(api_key="sk-test")
        with pytest.raises(ProviderError, match="openai request failed"):
            provider.complete("system", "user")

    def test_calculate_cost(self):
        with patch("codecontext.enrichment.providers.openai_provider.OpenAI"):
            provider = OpenAIProvider(api_key="sk-test", model="gpt-4o")
        assert provider.calculate_cost(1_000_000, 1_000_000) == pytest.approx(12.50)

    def test_initialization_requires_key(self):
        with pytest.raises(ValueError):
            OpenAIProvider(api_key="")


class TestAnthropicProvider:
    """Tests for AnthropicProvider.complete."""

    @patch("codecontext.enrichment.providers.anthropic_provider.Anthropic")
    def test_complete_joins_text_blocks(self, mock_anthropic_class: Mock):
        mock_client = Mock()
        mock_anthropic_class.return_value = mock_client
        mock_response = Mock()
        mock_response.content = [Mock(text='{"summary": '), Mock(text='"x"}'), Mock(spec=[])]
        mock_response.usage = Mock(input_tokens=80, output_tokens=20)
        mock_response.stop_reason = "end_turn"
        mock_response.model = "claude-3-5-haiku-20241022"
        mock_client.messages.create.return_value = mock_response

        provider = AnthropicProvider(api_key="sk-ant", model="claude-3-5-haiku-20241022")
        response = provider.complete("system", "user", max_tokens=100)

        assert response.content == '{"summary": "x"}'
        assert response.total_tokens == 100
        assert response.finish_reason == "end_turn"
        assert mock_client.messages.create.call_args.kwargs["system"] == "system"

    @patch("codecontext.enrichment.providers.anthropic_provider.Anthropic")
    def test_rate_limit_without_header_uses_default(self, mock_anthropic_class: Mock):
        mock_client = Mock()
        mock_anthropic_class.return_value = mock_client
        mock_client.messages.create.side_effect = anthropic.RateLimitError(
            "Too many requests", response=status_response(429), body=None
        )

        provider = AnthropicProvider(api_key="sk-ant")
        with pytest.raises(RateLimitError) as exc_info:
            provider.complete("system", "user")

        assert exc_info.value.retry_after_seconds == DEFAULT_RETRY_AFTER_SECONDS

    @patch("codecontext.enrichment.providers.anthropic_provider.Anthropic")
    def test_server_error_becomes_provider_error(self, mock_anthropic_class: Mock):
        mock_client = Mock()
        mock_anthropic_class.return_value = mock_client
        mock_client.messages.create.side_effect = anthropic.InternalServerError(
            "Overloaded", response=status_response(500), body=None
        )

        provider = AnthropicProvider(api_key="sk-ant")
        with pytest.raises(ProviderError):
            provider.complete("system", "user")

    def test_versioned_model_uses_family_pricing(self):
        with patch("codecontext.enrichment.providers.anthropic_provider.Anthropic"):
            provider = AnthropicProvider(api_key="sk-ant", model="claude-3-5-haiku-20250101")
        assert provider.calculate_cost(1_000_000, 0) == pytest.approx(0.80)


class TestRetryAfter:
    """Tests for Retry-After parsing."""

    def test_seconds(self):
        assert parse_retry_after({"retry-after": "12"}) == 12

    def test_fractional_seconds_round_up(self):
        assert parse_retry_after({"retry-after": "0.2"}) == 1

    def test_clamped_to_maximum(self):
        assert parse_retry_after({"retry-after": "99999"}) == MAX_RETRY_AFTER_SECONDS

    def test_http_date(self):
        when = (utcnow() + timedelta(seconds=120)).strftime("%a, %d %b %Y %H:%M:%S GMT")
        assert 100 <= parse_retry_after({"retry-after": when}) <= 120

    @pytest.mark.parametrize("headers", [None, {}, {"retry-after": ""}, {"retry-after": "soon"}])
    def test_missing_or_invalid(self, headers):
        assert parse_retry_after(headers) is None


class TestErrorTranslation:
    def test_message_based_rate_limit_detection(self):
        assert is_rate_limit_error(Exception("Resource exhausted: quota"))
        assert is_rate_limit_error(Exception("You hit the rate-limit"))
        assert not is_rate_limit_error(Exception("invalid api key"))

    def test_translate_plain_exception(self):
        error = translate_error(Exception("too many requests"), "openai")
        assert isinstance(error, RateLimitError)
        assert error.retry_after_seconds == DEFAULT_RETRY_AFTER_SECONDS

        error = translate_error(Exception("boom"), "openai")
        assert isinstance(error, ProviderError)
