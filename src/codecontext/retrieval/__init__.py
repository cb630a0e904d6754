"""
Context retrieval: candidate generation, relevance ranking and token budget
compression.
"""

from codecontext.retrieval.candidates import (
    CandidateGenerator,
    CandidateSnippet,
    RelationshipContext,
    RetrievalParameters,
)
from codecontext.retrieval.compression import (
    CompressionResult,
    CompressionSummary,
    TokenBudgetCompressor,
    estimate_tokens,
)
from codecontext.retrieval.ranker import RankingWeights, RelevanceRanker
from codecontext.retrieval.relationships import RelationshipRecord, RelationshipRepository
from codecontext.retrieval.service import RetrievalOutcome, RetrievalService
from codecontext.retrieval.summaries import ProjectSummaries

__all__ = [
    "CandidateGenerator",
    "CandidateSnippet",
    "CompressionResult",
    "CompressionSummary",
    "ProjectSummaries",
    "RankingWeights",
    "RelationshipContext",
    "RelationshipRecord",
    "RelationshipRepository",
    "RelevanceRanker",
    "RetrievalOutcome",
    "RetrievalParameters",
    "RetrievalService",
    "TokenBudgetCompressor",
    "estimate_tokens",
]
