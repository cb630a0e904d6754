"""
Enrichment of entities, documents and conversations with AI summaries.

``Enricher`` is the contract the background worker depends on;
``LLMEnricher`` fulfils it with a text-completion provider.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from codecontext.enrichment.parser import (
    EnrichmentParseError,
    parse_enrichment_response,
    parse_topics_response,
)
from codecontext.enrichment.providers.base import LLMProvider
from codecontext.exceptions import ProviderError
from codecontext.models.db import TargetEntityType
from codecontext.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 12_000
MAX_TRANSCRIPT_CHARS = 16_000
PREVIEW_CHARS = 500


CODE_ENTITY_PROMPT = """You are an expert code analyst. Below is a code snippet from a {language} file ({file_path}).
The snippet is a {entity_type}{name_clause}.

1. Write a concise technical summary (1-2 sentences) of what this code does and its role.
2. List 3-5 technical keywords that describe it.

Code:
```
{content}
```

Respond in exactly this format:
Summary: <summary>
Keywords: <keyword1>, <keyword2>, <keyword3>"""


DOCUMENT_PROMPT = """You are an expert technical writer. Below is a project document ({file_path}).

1. Write a concise summary (2-3 sentences) of its purpose and main points.
2. List 3-5 keywords that describe its subject.

Document:
---
{content}
---

Respond in exactly this format:
Summary: <summary>
Keywords: <keyword1>, <keyword2>, <keyword3>"""


TOPICS_PROMPT = """Below is a numbered transcript of a conversation between a developer and an AI coding assistant.
Identify up to 3 distinct topics discussed, in order.

Transcript:
{transcript}

For each topic respond with a block in exactly this format:
Topic 1:
Summary: <one or two sentence summary>
Keywords: <keyword1>, <keyword2>, <keyword3>
Purpose Tag: <e.g. Debugging Issue, New Feature Planning, Code Refactoring, General Question>
Range: <first message number>-<last message number>"""


SYSTEM_PROMPT = (
    "You summarize source code, documentation and developer conversations "
    "for a code search index. Be precise and terse."
)


@dataclass
class EnrichmentTarget:
    """What to enrich: a code entity or a project document."""

    target_id: str
    target_type: TargetEntityType
    content: str
    file_path: str
    language: Optional[str] = None
    entity_type: Optional[str] = None
    name: Optional[str] = None


@dataclass
class EnrichmentResult:
    summary: str
    keywords: list[str] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class TranscriptMessage:
    message_id: str
    role: str
    content: str
    timestamp: Optional[datetime] = None


@dataclass
class TopicDraft:
    """A generated topic, not yet stored."""

    summary: str
    keywords: list[str] = field(default_factory=list)
    purpose_tag: Optional[str] = None
    start_message_id: Optional[str] = None
    end_message_id: Optional[str] = None
    start_timestamp: Optional[datetime] = None
    end_timestamp: Optional[datetime] = None


class Enricher(ABC):
    """Produces summaries, keywords and topics.

    Implementations raise ``RateLimitError`` when throttled and
    ``ProviderError`` for every other failure.
    """

    @abstractmethod
    def enrich(self, target: EnrichmentTarget, budget_hint: int) -> EnrichmentResult:
        ...

    @abstractmethod
    def generate_topics(
        self, conversation_id: str, messages: list[TranscriptMessage]
    ) -> list[TopicDraft]:
        ...


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


class LLMEnricher(Enricher):
    """Enricher backed by an LLM provider."""

    def __init__(
        self,
        provider: LLMProvider,
        temperature: float = 0.2,
        llm_logger: Optional[logging.Logger] = None,
    ):
        self.provider = provider
        self.temperature = temperature
        self.llm_logger = llm_logger or logging.getLogger("codecontext.llm")

    def enrich(self, target: EnrichmentTarget, budget_hint: int) -> EnrichmentResult:
        """
        Summarize one code entity or document.

        Raises:
            RateLimitError: Provider throttled the request
            ProviderError: Provider failed or returned an unusable response
        """
        prompt = self._build_prompt(target)
        text = self._complete(prompt, budget_hint, target.target_id)

        parsed = parse_enrichment_response(text)
        if isinstance(parsed, EnrichmentParseError):
            raise ProviderError(
                f"Unusable enrichment response for {target.target_id}: {parsed.reason}"
            )
        if parsed.used_fallback:
            logger.info(f"Used fallback parsing for {target.target_type.value} {target.target_id}")
        return EnrichmentResult(
            summary=parsed.summary,
            keywords=parsed.keywords,
            used_fallback=parsed.used_fallback,
        )

    def generate_topics(
        self, conversation_id: str, messages: list[TranscriptMessage]
    ) -> list[TopicDraft]:
        """
        Segment a conversation transcript into topics.

        Returns:
            Up to three topics in conversation order (empty for an empty
            transcript)

        Raises:
            RateLimitError: Provider throttled the request
            ProviderError: Provider failed or returned an unusable response
        """
        if not messages:
            return []

        transcript = "\n".join(
            f"{i}. [{m.role}] {' '.join(m.content.split())}"
            for i, m in enumerate(messages, start=1)
        )
        prompt = TOPICS_PROMPT.format(transcript=_truncate(transcript, MAX_TRANSCRIPT_CHARS))
        text = self._complete(prompt, 800, conversation_id)

        parsed = parse_topics_response(text)
        if isinstance(parsed, EnrichmentParseError):
            raise ProviderError(
                f"Unusable topics response for {conversation_id}: {parsed.reason}"
            )

        drafts = []
        for topic in parsed:
            start = _message_at(messages, topic.start_index) or messages[0]
            end = _message_at(messages, topic.end_index) or messages[-1]
            drafts.append(
                TopicDraft(
                    summary=topic.summary,
                    keywords=topic.keywords,
                    purpose_tag=topic.purpose_tag,
                    start_message_id=start.message_id,
                    end_message_id=end.message_id,
                    start_timestamp=start.timestamp,
                    end_timestamp=end.timestamp,
                )
            )
        return drafts

    def _build_prompt(self, target: EnrichmentTarget) -> str:
        content = _truncate(target.content, MAX_CONTENT_CHARS)
        if target.target_type == TargetEntityType.PROJECT_DOCUMENT:
            return DOCUMENT_PROMPT.format(file_path=target.file_path, content=content)
        return CODE_ENTITY_PROMPT.format(
            language=target.language or "source",
            file_path=target.file_path,
            entity_type=target.entity_type or "code block",
            name_clause=f" named {target.name}" if target.name else "",
            content=content,
        )

    def _complete(self, prompt: str, max_tokens: int, subject_id: str) -> str:
        request_id = f"{subject_id}_{int(time.time() * 1000)}"
        self.llm_logger.info(
            "REQUEST: "
            + json.dumps(
                {
                    "request_id": request_id,
                    "timestamp": utcnow().isoformat(),
                    "provider": self.provider.provider_name,
                    "model": self.provider.model_name,
                    "max_tokens": max_tokens,
                    "prompt_length": len(prompt),
                    "prompt_preview": prompt[:PREVIEW_CHARS],
                }
            )
        )
        try:
            response = self.provider.complete(
                SYSTEM_PROMPT,
                prompt,
                max_tokens=max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            self.llm_logger.error(
                "ERROR: "
                + json.dumps(
                    {
                        "request_id": request_id,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    }
                )
            )
            raise

        self.llm_logger.info(
            "RESPONSE: "
            + json.dumps(
                {
                    "request_id": request_id,
                    "model": response.model,
                    "finish_reason": response.finish_reason,
                    "duration_ms": round(response.duration_ms, 2),
                    "tokens": {
                        "prompt": response.prompt_tokens,
                        "completion": response.completion_tokens,
                    },
                    "cost_usd": round(
                        self.provider.calculate_cost(
                            response.prompt_tokens, response.completion_tokens
                        ),
                        6,
                    ),
                    "content_preview": response.content[:200],
                }
            )
        )
        return response.content


def _message_at(
    messages: list[TranscriptMessage], index: Optional[int]
) -> Optional[TranscriptMessage]:
    if index is None or index < 1 or index > len(messages):
        return None
    return messages[index - 1]
