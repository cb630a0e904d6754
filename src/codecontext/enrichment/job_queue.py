"""
Background enrichment job queue.

Jobs live in the ``background_ai_jobs`` table. Every status change goes
through the JobStatus transition table; each operation runs in its own
short-lived session so the queue can be shared by worker threads.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional, Union

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from codecontext.db.connection import Database
from codecontext.exceptions import InvalidJobTransition, ValidationError
from codecontext.models.db import BackgroundJob, JobStatus, TargetEntityType, TaskType
from codecontext.models.metadata import JobPayload, dump_metadata
from codecontext.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

# Which targets each task type applies to
TASK_TARGETS = {
    TaskType.ENRICH_ENTITY_SUMMARY_KEYWORDS: frozenset(
        {TargetEntityType.CODE_ENTITY, TargetEntityType.PROJECT_DOCUMENT}
    ),
    TaskType.GENERATE_TOPICS: frozenset({TargetEntityType.CONVERSATION}),
}

MAX_ERROR_MESSAGE_CHARS = 2000


@dataclass
class QueueStats:
    """Job counts by status."""

    pending: int = 0
    processing: int = 0
    retry_ai: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0

    @property
    def active(self) -> int:
        """Jobs that still need work."""
        return self.pending + self.processing + self.retry_ai

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "retry_ai": self.retry_ai,
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
            "active": self.active,
        }


def _transition(job: BackgroundJob, target: JobStatus) -> None:
    current = job.job_status
    if not current.can_transition_to(target):
        raise InvalidJobTransition(job.job_id, current.value, target.value)
    job.status = target.value
    job.updated_at = utcnow()


def _truncate_error(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    return error[:MAX_ERROR_MESSAGE_CHARS]


class EnrichmentJobQueue:
    """
    Persistent queue of enrichment jobs.

    Example:
        >>> queue = EnrichmentJobQueue(database, default_max_attempts=3)
        >>> job = queue.enqueue(entity_id, "code_entity", "enrich_entity_summary_keywords")
        >>> for job in queue.fetch_pending(limit=2):
        ...     queue.claim(job)
    """

    def __init__(self, database: Database, default_max_attempts: int = 3):
        self.database = database
        self.default_max_attempts = default_max_attempts

    def enqueue(
        self,
        target_entity_id: str,
        target_entity_type: Union[TargetEntityType, str],
        task_type: Union[TaskType, str],
        payload: Optional[JobPayload] = None,
        max_attempts: Optional[int] = None,
    ) -> BackgroundJob:
        """
        Queue a job.

        An identical job still waiting to run (pending or retry_ai) is
        returned instead of creating a duplicate.

        Raises:
            ValidationError: If the target id is empty, the type/task is
                unknown, or the task does not apply to the target type
        """
        if not target_entity_id:
            raise ValidationError("target_entity_id is required", code="MISSING_TARGET")
        try:
            target_type = TargetEntityType(target_entity_type)
            task = TaskType(task_type)
        except ValueError as e:
            raise ValidationError(str(e), code="INVALID_JOB") from e
        if target_type not in TASK_TARGETS[task]:
            raise ValidationError(
                f"Task {task.value} does not apply to {target_type.value}",
                code="INVALID_JOB",
            )
        attempts_allowed = max_attempts if max_attempts is not None else self.default_max_attempts
        if attempts_allowed < 1:
            raise ValidationError("max_attempts must be at least 1", code="INVALID_JOB")

        with self.database.session() as session:
            existing = (
                session.query(BackgroundJob)
                .filter(
                    BackgroundJob.target_entity_id == target_entity_id,
                    BackgroundJob.task_type == task.value,
                    BackgroundJob.status.in_(
                        [JobStatus.PENDING.value, JobStatus.RETRY_AI.value]
                    ),
                )
                .first()
            )
            if existing:
                logger.debug(
                    f"Job already queued for {target_type.value} {target_entity_id}: "
                    f"{existing.job_id}"
                )
                return existing

            job = BackgroundJob(
                target_entity_id=target_entity_id,
                target_entity_type=target_type.value,
                task_type=task.value,
                status=JobStatus.PENDING.value,
                payload=dump_metadata(payload),
                attempts=0,
                max_attempts=attempts_allowed,
            )
            session.add(job)
            session.flush()

        logger.debug(f"Enqueued {task.value} job {job.job_id} for {target_entity_id}")
        return job

    def cancel_for_entity(self, entity_id: str) -> int:
        """
        Delete jobs for an entity that have not started.

        Returns:
            Number of jobs deleted (0 when none were waiting)
        """
        with self.database.session() as session:
            deleted = (
                session.query(BackgroundJob)
                .filter(
                    BackgroundJob.target_entity_id == entity_id,
                    BackgroundJob.status.in_(
                        [s.value for s in JobStatus if s.is_cancellable]
                    ),
                )
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Cancelled {deleted} queued jobs for {entity_id}")
        return deleted

    def fetch_pending(
        self, limit: int, exclude_task_types: Iterable[str] = ()
    ) -> list[BackgroundJob]:
        """
        Jobs eligible to run, oldest first.

        Eligible: pending, or retry_ai with attempts left. Ordered by
        (created_at, attempts, last_attempted_at).
        """
        if limit <= 0:
            return []
        excluded = [str(getattr(t, "value", t)) for t in exclude_task_types]
        with self.database.session() as session:
            query = session.query(BackgroundJob).filter(
                or_(
                    BackgroundJob.status == JobStatus.PENDING.value,
                    and_(
                        BackgroundJob.status == JobStatus.RETRY_AI.value,
                        BackgroundJob.attempts < BackgroundJob.max_attempts,
                    ),
                )
            )
            if excluded:
                query = query.filter(BackgroundJob.task_type.notin_(excluded))
            return (
                query.order_by(
                    BackgroundJob.created_at,
                    BackgroundJob.attempts,
                    BackgroundJob.last_attempted_at,
                )
                .limit(limit)
                .all()
            )

    def claim(self, job: Union[BackgroundJob, str]) -> Optional[BackgroundJob]:
        """
        Move a fetched job to processing.

        Returns:
            The claimed job, or None if it was cancelled meanwhile

        Raises:
            InvalidJobTransition: If the job is no longer claimable
        """
        job_id = job if isinstance(job, str) else job.job_id
        with self.database.session() as session:
            record = session.get(BackgroundJob, job_id)
            if record is None:
                return None
            _transition(record, JobStatus.PROCESSING)
            record.last_attempted_at = utcnow()
            session.flush()
            return record

    def complete(self, job_id: str, result_summary: Optional[str] = None) -> None:
        """Mark a processing job completed."""
        with self.database.session() as session:
            record = self._require(session, job_id)
            _transition(record, JobStatus.COMPLETED)
            record.result_summary = result_summary
            record.error_message = None
        logger.info(f"Job {job_id} completed")

    def record_failure(self, job_id: str, error: str) -> JobStatus:
        """
        Charge one attempt for a failed run.

        Returns:
            RETRY_AI while attempts remain, else FAILED
        """
        with self.database.session() as session:
            record = self._require(session, job_id)
            attempts = record.attempts + 1
            target = (
                JobStatus.RETRY_AI if attempts < record.max_attempts else JobStatus.FAILED
            )
            _transition(record, target)
            record.attempts = attempts
            record.error_message = _truncate_error(error)

        if target == JobStatus.FAILED:
            logger.warning(f"Job {job_id} failed after {attempts} attempts: {error}")
        else:
            logger.info(f"Job {job_id} failed, will retry (attempt {attempts}): {error}")
        return target

    def release_rate_limited(self, job_id: str, error: str) -> None:
        """Return a throttled job to pending without charging an attempt."""
        with self.database.session() as session:
            record = self._require(session, job_id)
            _transition(record, JobStatus.PENDING)
            record.error_message = _truncate_error(error)
        logger.info(f"Job {job_id} released after rate limit")

    def fail_permanently(self, job_id: str, error: str) -> None:
        """Fail a job that can never succeed (unknown task, missing target)."""
        with self.database.session() as session:
            record = self._require(session, job_id)
            _transition(record, JobStatus.FAILED)
            record.error_message = _truncate_error(error)
        logger.warning(f"Job {job_id} failed permanently: {error}")

    def get(self, job_id: str) -> Optional[BackgroundJob]:
        with self.database.session() as session:
            return session.get(BackgroundJob, job_id)

    def get_stats(self) -> QueueStats:
        with self.database.session() as session:
            rows = (
                session.query(BackgroundJob.status, func.count(BackgroundJob.job_id))
                .group_by(BackgroundJob.status)
                .all()
            )

        stats = QueueStats()
        for status, count in rows:
            if hasattr(stats, status):
                setattr(stats, status, count)
            stats.total += count
        return stats

    def reset_stale_jobs(self, timeout_minutes: int = 30) -> int:
        """
        Return jobs stuck in processing (worker died mid-job) to pending.

        Returns:
            Number of jobs reset
        """
        threshold = utcnow() - timedelta(minutes=timeout_minutes)
        with self.database.session() as session:
            stale = (
                session.query(BackgroundJob)
                .filter(
                    BackgroundJob.status == JobStatus.PROCESSING.value,
                    BackgroundJob.last_attempted_at < threshold,
                )
                .all()
            )
            for record in stale:
                _transition(record, JobStatus.PENDING)
        if stale:
            logger.warning(f"Reset {len(stale)} stale enrichment jobs")
        return len(stale)

    def purge_finished(self, days: int = 7) -> int:
        """Delete completed and failed jobs not touched for ``days`` days."""
        threshold = utcnow() - timedelta(days=days)
        with self.database.session() as session:
            deleted = (
                session.query(BackgroundJob)
                .filter(
                    BackgroundJob.status.in_(
                        [s.value for s in JobStatus if s.is_terminal]
                    ),
                    BackgroundJob.updated_at < threshold,
                )
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Purged {deleted} finished jobs older than {days} days")
        return deleted

    @staticmethod
    def _require(session: Session, job_id: str) -> BackgroundJob:
        record = session.get(BackgroundJob, job_id)
        if record is None:
            raise ValidationError(f"Job {job_id} not found", code="JOB_NOT_FOUND")
        return record
