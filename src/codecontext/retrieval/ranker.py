"""
Relevance ranking of context candidates.

Scores are rebuilt from each candidate's initial score with configured
weights and boosts, duplicates across sources are merged, and the result is
sorted best first.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from codecontext.config import (
    DEFAULT_AI_STATUS_WEIGHTS,
    DEFAULT_RELATIONSHIP_TYPE_WEIGHTS,
    DEFAULT_SOURCE_TYPE_WEIGHTS,
    HIGH_PRIORITY_RELATIONSHIP_TYPES,
    Settings,
)
from codecontext.retrieval.candidates import CandidateSnippet
from codecontext.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

MAX_CONSOLIDATED_SCORE = 2.0

# Gap kept between an expansion and the direct hit it was expanded from
SEED_SCORE_MARGIN = 0.001


@dataclass
class RankingWeights:
    """All tunables of the ranking formula."""

    source_type_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_TYPE_WEIGHTS)
    )
    ai_status_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_AI_STATUS_WEIGHTS)
    )
    relationship_type_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_RELATIONSHIP_TYPE_WEIGHTS)
    )
    high_priority_relationship_types: frozenset[str] = frozenset(
        HIGH_PRIORITY_RELATIONSHIP_TYPES
    )
    relationship_boost: float = 0.1
    high_priority_relationship_boost: float = 0.05
    recency_max_boost: float = 0.2
    recency_min_age_hours: float = 1.0
    recency_max_age_hours: float = 168.0
    decay_rate_hours: float = 24.0
    focus_boost: float = 0.15

    @classmethod
    def from_settings(cls, config: Settings) -> "RankingWeights":
        return cls(
            source_type_weights=dict(config.source_type_weights),
            ai_status_weights=dict(config.ai_status_weights),
            relationship_type_weights=dict(config.relationship_type_weights),
            relationship_boost=config.relationship_boost,
            high_priority_relationship_boost=config.high_priority_relationship_boost,
            recency_max_boost=config.recency_max_boost,
            recency_min_age_hours=config.recency_min_age_hours,
            recency_max_age_hours=config.recency_max_age_hours,
            decay_rate_hours=config.context_decay_rate_hours,
            focus_boost=config.focus_boost,
        )


class RelevanceRanker:
    """
    Consolidates candidate scores and orders candidates.

    Example:
        >>> ranker = RelevanceRanker(RankingWeights.from_settings(settings))
        >>> ranked = ranker.rank(candidates, focus="src/auth.py")
    """

    def __init__(self, weights: Optional[RankingWeights] = None):
        self.weights = weights or RankingWeights()

    def rank(
        self,
        candidates: list[CandidateSnippet],
        focus: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[CandidateSnippet]:
        """
        Score, deduplicate and sort candidates.

        Args:
            candidates: Candidates from the generator (not modified)
            focus: Identifier of the current focus (entity id or file path)
            now: Reference time for recency (defaults to current UTC time)

        Returns:
            Unique candidates sorted by consolidated_score descending, then
            newer timestamp, then id ascending
        """
        if not candidates:
            return []

        now = now or utcnow()
        scored = [self._score(candidate, focus, now) for candidate in candidates]
        merged = self._merge_duplicates(scored)
        self._cap_expansions_below_seeds(merged)

        ranked = sorted(merged, key=self._sort_key)
        logger.debug(
            f"Ranked {len(candidates)} candidates into {len(ranked)} unique snippets"
        )
        return ranked

    def _score(
        self, candidate: CandidateSnippet, focus: Optional[str], now: datetime
    ) -> CandidateSnippet:
        w = self.weights
        score = max(0.0, min(1.0, candidate.initial_score))
        score *= w.source_type_weights.get(candidate.source_type, 1.0)

        if candidate.ai_status:
            score *= w.ai_status_weights.get(candidate.ai_status, 1.0)

        context = candidate.relationship_context
        if context is not None:
            score *= w.relationship_type_weights.get(context.relationship_type, 1.0)
            score += w.relationship_boost
            if context.relationship_type in w.high_priority_relationship_types:
                score += w.high_priority_relationship_boost

        score += self.recency_boost(candidate.timestamp, now)

        if focus and focus in (candidate.id, candidate.file_path):
            score += w.focus_boost

        return _copy_with(
            candidate,
            consolidated_score=max(0.0, min(MAX_CONSOLIDATED_SCORE, score)),
        )

    def recency_boost(self, timestamp: Optional[datetime], now: Optional[datetime] = None) -> float:
        """
        Boost for recently touched candidates.

        Full boost up to ``recency_min_age_hours``, exponential decay after,
        nothing beyond ``recency_max_age_hours``.
        """
        if timestamp is None:
            return 0.0
        w = self.weights
        age_hours = max(((now or utcnow()) - timestamp).total_seconds() / 3600, 0.0)
        if age_hours <= w.recency_min_age_hours:
            return w.recency_max_boost
        if age_hours > w.recency_max_age_hours:
            return 0.0
        return w.recency_max_boost * math.exp(-age_hours / w.decay_rate_hours)

    def _merge_duplicates(
        self, candidates: list[CandidateSnippet]
    ) -> list[CandidateSnippet]:
        merged: dict[tuple[str, str], CandidateSnippet] = {}
        for candidate in candidates:
            existing = merged.get(candidate.key)
            if existing is None:
                merged[candidate.key] = candidate
                continue

            sources = list(existing.sources)
            for source in candidate.sources:
                if source not in sources:
                    sources.append(source)

            if candidate.consolidated_score > existing.consolidated_score:
                merged[candidate.key] = _copy_with(candidate, sources=sources)
            else:
                existing.sources = sources
        return list(merged.values())

    def _cap_expansions_below_seeds(self, candidates: list[CandidateSnippet]) -> None:
        seed_scores = {
            candidate.id: candidate.consolidated_score
            for candidate in candidates
            if candidate.kind == "code_entity" and not candidate.is_relationship_derived
        }
        for candidate in candidates:
            context = candidate.relationship_context
            if context is None:
                continue
            seed_score = seed_scores.get(context.related_to_seed_entity_id)
            if seed_score is None:
                continue
            ceiling = max(seed_score - SEED_SCORE_MARGIN, 0.0)
            if candidate.consolidated_score > ceiling:
                candidate.consolidated_score = ceiling

    @staticmethod
    def _sort_key(candidate: CandidateSnippet) -> tuple:
        timestamp = candidate.timestamp.timestamp() if candidate.timestamp else float("-inf")
        return (-candidate.consolidated_score, -timestamp, candidate.id)


def _copy_with(candidate: CandidateSnippet, **changes) -> CandidateSnippet:
    return replace(candidate, **changes)
