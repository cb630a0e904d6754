"""
Topic segmentation of conversations.

A conversation is split into topics whenever the keywords of new messages
stop overlapping with the keywords of the open topic.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from codecontext.retrieval.terms import get_search_terms

logger = logging.getLogger(__name__)

MAX_TOPIC_KEYWORDS = 20


@dataclass
class ShiftDecision:
    is_shift: bool
    overlap: float


class TopicSegmenter:
    """Keyword-overlap topic shift detector."""

    def __init__(self, threshold: float = 0.2, keywords_per_message_batch: int = 10):
        self.threshold = threshold
        self.keywords_per_message_batch = keywords_per_message_batch

    def extract_keywords(self, texts: Iterable[str]) -> list[str]:
        """Most frequent search terms across the texts, most frequent first."""
        counts: Counter[str] = Counter()
        for text in texts:
            counts.update(get_search_terms(text))
        return [term for term, _ in counts.most_common(self.keywords_per_message_batch)]

    def detect_shift(
        self, topic_keywords: Iterable[str], new_keywords: Iterable[str]
    ) -> ShiftDecision:
        """
        Compare new keywords against the open topic.

        Overlap is the share of the smaller keyword set found in the other
        one. An empty side never counts as a shift.
        """
        current = set(topic_keywords)
        incoming = set(new_keywords)
        if not current or not incoming:
            return ShiftDecision(is_shift=False, overlap=1.0)

        overlap = len(current & incoming) / min(len(current), len(incoming))
        decision = ShiftDecision(is_shift=overlap < self.threshold, overlap=overlap)
        if decision.is_shift:
            logger.debug(f"Topic shift: keyword overlap {overlap:.2f} < {self.threshold}")
        return decision

    @staticmethod
    def merge_keywords(existing: list[str], new: list[str]) -> list[str]:
        """Append unseen keywords, keeping at most the newest MAX_TOPIC_KEYWORDS."""
        merged = list(existing)
        for keyword in new:
            if keyword not in merged:
                merged.append(keyword)
        return merged[-MAX_TOPIC_KEYWORDS:]
