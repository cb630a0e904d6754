"""
Background worker for enrichment jobs.

One daemon thread polls the job queue. Each tick fetches at most
``concurrency`` eligible jobs, runs them on a thread pool and waits for all
of them before the next tick. Rate-limited task types are paused instead of
being charged an attempt.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from sqlalchemy.exc import OperationalError

from codecontext.enrichment.enricher import Enricher
from codecontext.enrichment.job_queue import EnrichmentJobQueue
from codecontext.enrichment.store import EnrichmentStore
from codecontext.exceptions import InvalidJobTransition, ProviderError, RateLimitError
from codecontext.models.db import AiStatus, BackgroundJob, JobStatus, TargetEntityType, TaskType
from codecontext.models.metadata import parse_job_payload

logger = logging.getLogger(__name__)

DB_UNAVAILABLE_BACKOFF_SECONDS = 5.0


class UnrecoverableJobError(Exception):
    """A job that can never succeed (unknown task, missing target, bad payload)."""


class EnrichmentWorker:
    """
    Schedules enrichment jobs from the queue.

    Example:
        >>> worker = EnrichmentWorker(queue, store, enricher=LLMEnricher(provider))
        >>> worker.start()
        >>> worker.stop()
        >>> worker.drain(timeout=30)
    """

    def __init__(
        self,
        queue: EnrichmentJobQueue,
        store: EnrichmentStore,
        enricher: Optional[Enricher] = None,
        polling_interval: float = 5.0,
        concurrency: int = 2,
        batch_size: int = 5,
        delay_ms: int = 500,
        default_budget_hint: int = 1000,
        rate_limit_pause_seconds: int = 60,
        stale_job_timeout_minutes: int = 30,
        purge_finished_days: int = 7,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.store = store
        self._enricher = enricher
        self.polling_interval = polling_interval
        self.concurrency = max(concurrency, 1)
        self.batch_size = max(batch_size, 1)
        self.delay_ms = delay_ms
        self.default_budget_hint = default_budget_hint
        self.rate_limit_pause_seconds = rate_limit_pause_seconds
        self.stale_job_timeout_minutes = stale_job_timeout_minutes
        self.purge_finished_days = purge_finished_days
        self._clock = clock

        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        # Stopped loops still finishing their last tick
        self._stopping_threads: list[threading.Thread] = []
        self._paused_until: dict[str, float] = {}

        self._jobs_processed = 0
        self._jobs_succeeded = 0
        self._jobs_failed = 0
        self._jobs_rate_limited = 0
        self._ticks = 0
        self._last_job_time: Optional[float] = None
        self._missing_enricher_logged = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_enrichment_service(self, enricher: Optional[Enricher]) -> None:
        """Swap the enricher; takes effect from the next tick."""
        self._enricher = enricher
        self._missing_enricher_logged = False

    @property
    def enricher(self) -> Optional[Enricher]:
        return self._enricher

    def start(
        self,
        polling_interval: Optional[float] = None,
        concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> threading.Thread:
        """
        Start the polling thread.

        Calling start while the worker is running changes nothing and
        returns the running thread. After stop a new loop is started, even
        if the stopped one is still finishing its last tick.
        """
        with self._lifecycle_lock:
            if self._thread is not None and self._thread.is_alive():
                if not self._stop_event.is_set():
                    logger.debug("Enrichment worker already running")
                    return self._thread
                self._stopping_threads.append(self._thread)
            self._stopping_threads = [t for t in self._stopping_threads if t.is_alive()]

            if polling_interval is not None:
                self.polling_interval = polling_interval
            if concurrency is not None:
                self.concurrency = max(concurrency, 1)
            if batch_size is not None:
                self.batch_size = max(batch_size, 1)

            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                daemon=True,
                name="enrichment-worker",
            )
            self._thread.start()

        logger.info(
            f"Started enrichment worker (interval={self.polling_interval}s, "
            f"concurrency={self.concurrency}, batch={self.batch_size})"
        )
        return self._thread

    def stop(self) -> None:
        """Signal the loop to stop and return immediately.

        Jobs already running finish; no new tick starts.
        """
        logger.info("Enrichment worker stop requested")
        self._stop_event.set()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the loop and its in-flight jobs to finish.

        Returns:
            True if the worker is fully stopped
        """
        threads = list(self._stopping_threads)
        if self._thread is not None:
            threads.append(self._thread)
        if not threads:
            return True

        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            thread.join(timeout=remaining)
            if thread.is_alive():
                logger.warning(f"Enrichment worker did not stop within {timeout}s")
                return False
        return True

    @property
    def thread(self) -> Optional[threading.Thread]:
        return self._thread

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "running": self.is_running,
                "ticks": self._ticks,
                "jobs_processed": self._jobs_processed,
                "jobs_succeeded": self._jobs_succeeded,
                "jobs_failed": self._jobs_failed,
                "jobs_rate_limited": self._jobs_rate_limited,
                "last_job_time": self._last_job_time,
                "paused_task_types": sorted(self.paused_task_types()),
                "concurrency": self.concurrency,
                "enricher_configured": self._enricher is not None,
            }

    def paused_task_types(self) -> set[str]:
        now = self._clock()
        return {task for task, until in self._paused_until.items() if until > now}

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(self, stop_event: threading.Event) -> None:
        self._cleanup()

        while not stop_event.is_set():
            try:
                processed = self.run_once()
            except OperationalError as e:
                logger.warning(f"Enrichment worker DB unavailable: {e}")
                stop_event.wait(DB_UNAVAILABLE_BACKOFF_SECONDS)
                continue
            except Exception as e:
                logger.error(f"Error in enrichment worker loop: {e}", exc_info=True)
                processed = 0

            if processed:
                stop_event.wait(self.delay_ms / 1000)
            else:
                stop_event.wait(self.polling_interval)

        logger.info(
            f"Enrichment worker stopped. Processed: {self._jobs_processed}, "
            f"Succeeded: {self._jobs_succeeded}, Failed: {self._jobs_failed}"
        )

    def run_once(self) -> int:
        """
        Run one tick.

        Returns:
            Number of jobs dispatched (0 when idle, skipped or unconfigured)
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous enrichment tick still running, skipping")
            return 0
        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def _tick(self) -> int:
        if self._enricher is None:
            if not self._missing_enricher_logged:
                logger.warning("No enrichment service configured, jobs stay queued")
                self._missing_enricher_logged = True
            return 0

        with self._stats_lock:
            self._ticks += 1

        limit = min(self.batch_size, self.concurrency)
        jobs = self.queue.fetch_pending(limit, exclude_task_types=self.paused_task_types())
        if not jobs:
            return 0

        dispatched = 0
        delay = self.delay_ms / 1000
        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="enrichment-job"
        ) as pool:
            for i, job in enumerate(jobs):
                if i > 0 and delay > 0 and self._stop_event.wait(delay):
                    break
                pool.submit(self._process_job, job)
                dispatched += 1
        return dispatched

    def _process_job(self, job: BackgroundJob) -> None:
        try:
            self._handle(job)
        except Exception as e:
            logger.error(f"Unhandled error finishing job {job.job_id}: {e}", exc_info=True)

    def _handle(self, job: BackgroundJob) -> None:
        try:
            claimed = self.queue.claim(job)
        except InvalidJobTransition as e:
            logger.debug(f"Skipping job {job.job_id}: {e}")
            return
        if claimed is None:
            logger.debug(f"Job {job.job_id} was cancelled before it started")
            return

        with self._stats_lock:
            self._jobs_processed += 1
        logger.info(
            f"Processing {claimed.task_type} job {claimed.job_id} "
            f"for {claimed.target_entity_type} {claimed.target_entity_id}"
        )

        try:
            summary = self._execute(claimed)
        except RateLimitError as e:
            pause = e.retry_after_seconds or self.rate_limit_pause_seconds
            self._paused_until[claimed.task_type] = self._clock() + pause
            self.queue.release_rate_limited(claimed.job_id, str(e))
            with self._stats_lock:
                self._jobs_rate_limited += 1
            logger.warning(f"Rate limited on {claimed.task_type}; pausing {pause}s")
            return
        except UnrecoverableJobError as e:
            self.queue.fail_permanently(claimed.job_id, str(e))
            with self._stats_lock:
                self._jobs_failed += 1
            return
        except Exception as e:
            status = self.queue.record_failure(claimed.job_id, str(e))
            if status == JobStatus.FAILED:
                self._mark_target_failed(claimed)
                with self._stats_lock:
                    self._jobs_failed += 1
            return

        self.queue.complete(claimed.job_id, summary)
        with self._stats_lock:
            self._jobs_succeeded += 1
            self._last_job_time = time.time()

    def _execute(self, job: BackgroundJob) -> str:
        """Run one claimed job and write its results; returns a result summary."""
        try:
            task = TaskType(job.task_type)
            target_type = TargetEntityType(job.target_entity_type)
        except ValueError as e:
            raise UnrecoverableJobError(f"Unknown job kind: {e}") from e
        try:
            payload = parse_job_payload(job.payload)
        except ValueError as e:
            raise UnrecoverableJobError(str(e)) from e

        enricher = self._enricher
        if enricher is None:
            raise ProviderError("No enrichment service configured")

        if task == TaskType.GENERATE_TOPICS:
            messages = self.store.load_transcript(job.target_entity_id, payload.message_limit)
            if not messages:
                raise UnrecoverableJobError(
                    f"Conversation {job.target_entity_id} has no messages"
                )
            drafts = enricher.generate_topics(job.target_entity_id, messages)
            stored = self.store.save_topics(job.target_entity_id, drafts)
            return f"{stored} topics generated"

        target = self.store.load_target(target_type, job.target_entity_id)
        if target is None:
            raise UnrecoverableJobError(
                f"{target_type.value} {job.target_entity_id} not found"
            )
        if not target.content.strip():
            self.store.set_ai_status(target_type, target.target_id, AiStatus.SKIPPED)
            return "skipped: no content"

        result = enricher.enrich(target, payload.budget_hint or self.default_budget_hint)
        self.store.save_enrichment(target, result)
        return f"summary {len(result.summary)} chars, {len(result.keywords)} keywords"

    def _mark_target_failed(self, job: BackgroundJob) -> None:
        try:
            target_type = TargetEntityType(job.target_entity_type)
        except ValueError:
            return
        if target_type == TargetEntityType.CONVERSATION:
            return
        self.store.set_ai_status(target_type, job.target_entity_id, AiStatus.FAILED)

    def _cleanup(self) -> None:
        try:
            self.queue.reset_stale_jobs(self.stale_job_timeout_minutes)
            self.queue.purge_finished(self.purge_finished_days)
        except OperationalError as e:
            logger.warning(f"Enrichment worker cleanup skipped (DB unavailable): {e}")
        except Exception as e:
            logger.error(f"Error during enrichment worker cleanup: {e}")
