"""
Retrieval pipeline: generate, rank, compress.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

from codecontext.retrieval.candidates import (
    CandidateGenerator,
    CandidateSnippet,
    RetrievalParameters,
)
from codecontext.retrieval.compression import TokenBudgetCompressor
from codecontext.retrieval.ranker import RelevanceRanker
from codecontext.retrieval.terms import get_search_terms, is_git_history_query

logger = logging.getLogger(__name__)


@dataclass
class RetrievalOutcome:
    """Budget-constrained snippets plus statistics for one query."""

    snippets: list[CandidateSnippet] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)


class RetrievalService:
    """Runs the retrieval pipeline for a query."""

    def __init__(
        self,
        generator: CandidateGenerator,
        ranker: RelevanceRanker,
        compressor: Optional[TokenBudgetCompressor] = None,
    ):
        self.generator = generator
        self.ranker = ranker
        self.compressor = compressor or TokenBudgetCompressor()

    def get_relevant_context(
        self,
        query: str,
        conversation_id: Optional[str],
        token_budget: int,
        parameters: Optional[RetrievalParameters] = None,
        focus: Optional[str] = None,
    ) -> RetrievalOutcome:
        """
        Assemble ranked context for a query within a token budget.

        Args:
            query: Free-text query
            conversation_id: Active conversation
            token_budget: Positive token limit
            parameters: Source/expansion restrictions
            focus: Current focus identifier, boosted by the ranker

        Returns:
            RetrievalOutcome

        Raises:
            ValidationError: If token_budget is invalid
        """
        started = time.monotonic()
        terms = get_search_terms(query)
        git_query = is_git_history_query(query, terms)
        if git_query:
            logger.debug(f"Query looks like a commit history question: {query!r}")

        candidates = self.generator.generate(query, conversation_id, parameters)
        ranked = self.ranker.rank(candidates, focus=focus)
        compressed = self.compressor.compress(ranked, token_budget)

        summary = compressed.summary.to_dict()
        summary.update(
            {
                "search_terms": terms,
                "candidates_by_source": dict(Counter(c.source_type for c in candidates)),
                "unique_candidates_after_ranking": len(ranked),
                "is_git_history_query": git_query,
                "focus": focus,
                "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
            }
        )
        logger.info(
            f"Retrieved {len(compressed.snippets)}/{len(ranked)} snippets "
            f"({summary['estimated_tokens_out']}/{token_budget} tokens) "
            f"for conversation {conversation_id}"
        )
        return RetrievalOutcome(snippets=compressed.snippets, summary=summary)
