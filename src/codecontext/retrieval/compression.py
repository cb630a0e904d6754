"""
Token budget compression.

Walks ranked candidates greedily and keeps as many as fit the token budget,
truncating raw text and code to make the last ones fit.
"""

import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Optional

from codecontext.exceptions import ValidationError
from codecontext.models.db import AiStatus
from codecontext.retrieval.candidates import (
    CODE_SOURCE_TYPES,
    CONVERSATION_MESSAGE,
    CONVERSATION_TOPIC,
    GIT_COMMIT,
    GIT_COMMIT_FILE_CHANGE,
    PROJECT_DOCUMENT_FTS,
    PROJECT_DOCUMENT_KEYWORD,
    CandidateSnippet,
)

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MIN_REMAINING_TOKENS = 10  # Selection stops once the budget drops to this
MIN_TRUNCATED_TOKENS = 50
TRUNCATION_BUDGET_RATIO = 0.8
FUNCTION_BODY_PREVIEW_LINES = 3
TRUNCATION_MARKER = "# ... (code truncated) ..."
BODY_TRUNCATION_MARKER = "    // ... (body truncated) ..."

TEXT_SOURCE_TYPES = frozenset(
    {
        PROJECT_DOCUMENT_FTS,
        PROJECT_DOCUMENT_KEYWORD,
        CONVERSATION_MESSAGE,
        CONVERSATION_TOPIC,
        GIT_COMMIT,
        GIT_COMMIT_FILE_CHANGE,
    }
)

FUNCTION_TYPES = frozenset({"function_declaration", "method_definition", "function", "method"})
CLASS_TYPES = frozenset({"class_declaration", "class"})
TYPE_DEFINITION_TYPES = frozenset({"interface_declaration", "type_definition", "interface", "type"})

_MEMBER_SIGNATURE = re.compile(
    r"^\s*(?:(?:public|private|protected|static|async|readonly|abstract|override|def|function|get|set)\s+)*"
    r"[A-Za-z_$][\w$]*\s*(?:<[^>]*>)?\s*\("
)


def estimate_tokens(text: Optional[str]) -> int:
    """Approximate token count: one token per four characters of stripped text."""
    if not text:
        return 0
    stripped = text.strip()
    if not stripped:
        return 0
    return math.ceil(len(stripped) / CHARS_PER_TOKEN)


@dataclass
class CompressionSummary:
    """Statistics of one compression pass."""

    snippets_found_before_compression: int = 0
    snippets_returned_after_compression: int = 0
    estimated_tokens_in: int = 0
    estimated_tokens_out: int = 0
    token_budget_given: int = 0
    token_budget_remaining: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "snippets_found_before_compression": self.snippets_found_before_compression,
            "snippets_returned_after_compression": self.snippets_returned_after_compression,
            "estimated_tokens_in": self.estimated_tokens_in,
            "estimated_tokens_out": self.estimated_tokens_out,
            "token_budget_given": self.token_budget_given,
            "token_budget_remaining": self.token_budget_remaining,
        }


@dataclass
class CompressionResult:
    snippets: list[CandidateSnippet] = field(default_factory=list)
    summary: CompressionSummary = field(default_factory=CompressionSummary)


class TokenBudgetCompressor:
    """
    Greedy budget packer for ranked candidates.

    Candidates are taken in order. One that does not fit is truncated when
    it is raw (not AI-summarized) text or code; AI summaries are kept whole
    or skipped.
    """

    def compress(
        self, ranked: list[CandidateSnippet], token_budget: int
    ) -> CompressionResult:
        """
        Select candidates within ``token_budget``.

        Args:
            ranked: Candidates, best first
            token_budget: Positive token limit

        Returns:
            CompressionResult with the kept snippets and statistics

        Raises:
            ValidationError: If token_budget is not a positive integer
        """
        if (
            not isinstance(token_budget, int)
            or isinstance(token_budget, bool)
            or token_budget <= 0
        ):
            raise ValidationError(
                f"token_budget must be a positive integer, got {token_budget!r}",
                code="INVALID_TOKEN_BUDGET",
            )

        summary = CompressionSummary(
            snippets_found_before_compression=len(ranked),
            estimated_tokens_in=sum(estimate_tokens(c.content) for c in ranked),
            token_budget_given=token_budget,
        )

        selected: list[CandidateSnippet] = []
        remaining = token_budget

        for candidate in ranked:
            if remaining <= MIN_REMAINING_TOKENS:
                break
            if not candidate.content or not candidate.content.strip():
                continue

            tokens = estimate_tokens(candidate.content)
            if tokens <= remaining:
                selected.append(candidate)
                remaining -= tokens
                continue

            truncated = self._truncate_to_fit(candidate, remaining)
            if truncated is not None:
                selected.append(truncated)
                remaining -= estimate_tokens(truncated.content)

        if not selected:
            fallback = next(
                (c for c in ranked if c.content and c.content.strip()), None
            )
            if fallback is not None:
                # Oversized top candidate is returned whole; remaining goes negative
                selected.append(fallback)
                remaining = token_budget - estimate_tokens(fallback.content)
                logger.debug(
                    f"No candidate fits {token_budget} tokens; "
                    f"returning top candidate {fallback.id} untruncated"
                )

        summary.snippets_returned_after_compression = len(selected)
        summary.estimated_tokens_out = sum(estimate_tokens(c.content) for c in selected)
        summary.token_budget_remaining = remaining
        return CompressionResult(snippets=selected, summary=summary)

    def _truncate_to_fit(
        self, candidate: CandidateSnippet, remaining: int
    ) -> Optional[CandidateSnippet]:
        if candidate.ai_status == AiStatus.COMPLETED.value:
            return None

        target = max(math.floor(remaining * TRUNCATION_BUDGET_RATIO), MIN_TRUNCATED_TOKENS)
        if target > remaining:
            return None

        if candidate.source_type in TEXT_SOURCE_TYPES:
            content, strategy = truncate_text(candidate.content, target), "text"
        elif candidate.source_type in CODE_SOURCE_TYPES:
            content, strategy = truncate_code(candidate.content, candidate.entity_type, target)
        else:
            return None

        new_tokens = estimate_tokens(content)
        if new_tokens < MIN_TRUNCATED_TOKENS or new_tokens > remaining:
            return None

        metadata = dict(candidate.metadata)
        metadata.update(
            {
                "truncated": True,
                "truncation_strategy": strategy,
                "original_length": len(candidate.content),
                "truncated_length": len(content),
                "original_tokens": estimate_tokens(candidate.content),
                "truncated_tokens": new_tokens,
            }
        )
        return replace(candidate, content=content, metadata=metadata)


def truncate_text(text: str, target_tokens: int) -> str:
    """Cut text to roughly ``target_tokens`` and mark the cut."""
    max_chars = target_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 3, 0)].rstrip() + "..."


def truncate_code(
    code: str, entity_type: Optional[str], target_tokens: int
) -> tuple[str, str]:
    """
    Shorten code while keeping its outline.

    Returns:
        (truncated code, strategy name)
    """
    entity_type = (entity_type or "").lower()
    lines = code.splitlines()

    if entity_type in FUNCTION_TYPES:
        result = _truncate_function(lines, target_tokens)
        if result is not None:
            return result, "function_signature"
    elif entity_type in CLASS_TYPES:
        result = _truncate_class(lines, target_tokens)
        if result is not None:
            return result, "class_outline"
    elif entity_type in TYPE_DEFINITION_TYPES:
        if estimate_tokens(code) <= target_tokens:
            return code, "type_definition"
        keep = max(target_tokens // 10, 1)
        return "\n".join(lines[:keep] + [TRUNCATION_MARKER]), "type_definition"

    return _truncate_lines(lines, target_tokens), "line_based"


def _signature_end(lines: list[str]) -> int:
    """Index of the line that ends the signature (opening brace or colon)."""
    for i, line in enumerate(lines):
        stripped = line.rstrip()
        if stripped.endswith("{") or stripped.endswith(":") or "=>" in stripped:
            return i
    return 0


def _truncate_function(lines: list[str], target_tokens: int) -> Optional[str]:
    if not lines:
        return None
    end = _signature_end(lines)
    signature = lines[: end + 1]

    with_preview = signature + lines[end + 1 : end + 1 + FUNCTION_BODY_PREVIEW_LINES]
    if len(with_preview) < len(lines):
        with_preview = with_preview + [BODY_TRUNCATION_MARKER]
    candidate = "\n".join(with_preview)
    if estimate_tokens(candidate) <= target_tokens:
        return candidate

    signature_only = "\n".join(signature + [BODY_TRUNCATION_MARKER])
    if estimate_tokens(signature_only) <= target_tokens:
        return signature_only
    return None


def _truncate_class(lines: list[str], target_tokens: int) -> Optional[str]:
    if not lines:
        return None
    end = _signature_end(lines)
    outline = lines[: end + 1]
    for line in lines[end + 1 :]:
        if _MEMBER_SIGNATURE.match(line):
            outline.append(line.rstrip().rstrip("{").rstrip() + " ...")
    outline.append(TRUNCATION_MARKER)
    result = "\n".join(outline)
    if estimate_tokens(result) <= target_tokens:
        return result
    return None


def _truncate_lines(lines: list[str], target_tokens: int) -> str:
    keep = max(target_tokens // 10, 1)
    kept = lines[:keep]
    # Long lines can still overflow; trim the tail until it fits
    while kept and estimate_tokens("\n".join(kept + [TRUNCATION_MARKER])) > target_tokens:
        kept = kept[:-1]
    if not kept and lines:
        max_chars = max(target_tokens * CHARS_PER_TOKEN - len(TRUNCATION_MARKER) - 1, 0)
        kept = [lines[0][:max_chars]]
    return "\n".join(kept + [TRUNCATION_MARKER])
