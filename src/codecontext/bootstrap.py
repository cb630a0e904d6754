"""
Process wiring for codecontext.

``build_services`` creates the knowledge store and every component that
uses it, once per process, and hands them out as a ``Services`` bundle.
Nothing in the package reaches for a global store or queue; components get
what they need through their constructors.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from codecontext.config import Settings, settings
from codecontext.continuity import ContextContinuityManager, IntentClassifier, TopicSegmenter
from codecontext.db.connection import Database
from codecontext.enrichment import (
    Enricher,
    EnrichmentJobQueue,
    EnrichmentStore,
    EnrichmentWorker,
    LLMEnricher,
)
from codecontext.enrichment.providers import create_provider
from codecontext.logging_config import get_llm_logger
from codecontext.retrieval import (
    CandidateGenerator,
    ProjectSummaries,
    RankingWeights,
    RelevanceRanker,
    RetrievalService,
    TokenBudgetCompressor,
)

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_TIMEOUT_SECONDS = 30.0


@dataclass
class Services:
    """Everything a running process needs, created once at startup."""

    config: Settings
    database: Database
    job_queue: EnrichmentJobQueue
    enrichment_store: EnrichmentStore
    worker: EnrichmentWorker
    retrieval: RetrievalService
    summaries: ProjectSummaries
    continuity: ContextContinuityManager

    def close(self, drain_timeout: Optional[float] = DEFAULT_DRAIN_TIMEOUT_SECONDS) -> None:
        """Stop the worker, wait for in-flight jobs and close the store."""
        if self.worker.is_running:
            self.worker.stop()
            self.worker.drain(timeout=drain_timeout)
        self.database.close()


def build_enricher(config: Settings) -> Optional[Enricher]:
    """
    Create the LLM enricher for the configured provider.

    Returns:
        None when no API key is configured (jobs then stay queued)
    """
    if not config.ai_api_key:
        logger.info(f"No API key for {config.ai_provider}; background enrichment disabled")
        return None
    provider = create_provider(config.ai_provider, config.ai_api_key, config.ai_model)
    return LLMEnricher(provider, llm_logger=get_llm_logger(config))


def build_services(
    config: Optional[Settings] = None,
    database: Optional[Database] = None,
    enricher: Optional[Enricher] = None,
    init_schema: bool = True,
) -> Services:
    """
    Wire up a process.

    Args:
        config: Settings (defaults to the environment-loaded settings)
        database: Existing store to use instead of opening ``database_url``
        enricher: Enricher to use instead of building one from config
        init_schema: Create tables and FTS indexes if missing
    """
    config = config or settings
    database = database or Database(config.database_url, echo=config.database_echo)
    if init_schema:
        database.init_schema()

    job_queue = EnrichmentJobQueue(database, default_max_attempts=config.max_ai_job_attempts)
    store = EnrichmentStore(database)
    worker = EnrichmentWorker(
        job_queue,
        store,
        enricher=enricher if enricher is not None else build_enricher(config),
        polling_interval=config.ai_job_polling_interval_ms / 1000,
        concurrency=config.ai_job_concurrency,
        batch_size=config.ai_job_batch_size,
        delay_ms=config.ai_job_delay_ms,
        default_budget_hint=config.ai_max_output_tokens,
        rate_limit_pause_seconds=config.rate_limit_pause_seconds,
        stale_job_timeout_minutes=config.stale_job_timeout_minutes,
        purge_finished_days=config.purge_finished_jobs_days,
    )

    retrieval = RetrievalService(
        CandidateGenerator(
            database, max_seed_entities=config.max_seed_entities_for_expansion
        ),
        RelevanceRanker(RankingWeights.from_settings(config)),
        TokenBudgetCompressor(),
    )
    continuity = ContextContinuityManager(
        database,
        job_queue=job_queue,
        intent_classifier=IntentClassifier(),
        segmenter=TopicSegmenter(threshold=config.topic_shift_threshold),
        recent_item_window_seconds=config.recent_item_window_seconds,
        max_conversations=config.max_tracked_conversations,
    )

    logger.debug(f"Services ready for {config.database_url}")
    return Services(
        config=config,
        database=database,
        job_queue=job_queue,
        enrichment_store=store,
        worker=worker,
        retrieval=retrieval,
        summaries=ProjectSummaries(database),
        continuity=continuity,
    )
