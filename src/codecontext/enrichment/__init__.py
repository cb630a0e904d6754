"""
Background AI enrichment: job queue, worker, enricher and write-back.
"""

from codecontext.enrichment.enricher import (
    Enricher,
    EnrichmentResult,
    EnrichmentTarget,
    LLMEnricher,
    TopicDraft,
    TranscriptMessage,
)
from codecontext.enrichment.job_queue import EnrichmentJobQueue, QueueStats
from codecontext.enrichment.store import EnrichmentStore
from codecontext.enrichment.worker import EnrichmentWorker

__all__ = [
    "Enricher",
    "EnrichmentJobQueue",
    "EnrichmentResult",
    "EnrichmentStore",
    "EnrichmentTarget",
    "EnrichmentWorker",
    "LLMEnricher",
    "QueueStats",
    "TopicDraft",
    "TranscriptMessage",
]
