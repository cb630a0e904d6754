"""
SQLAlchemy database models for codecontext.

These models represent the knowledge store: indexed code entities and
documents, their relationships and keywords, conversation history and
topics, commit history, and the background enrichment job queue.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from codecontext.utils.timeutil import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class AiStatus(str, enum.Enum):
    """Enrichment status of a code entity or project document."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TargetEntityType(str, enum.Enum):
    """Kind of record a background job works on."""

    CODE_ENTITY = "code_entity"
    PROJECT_DOCUMENT = "project_document"
    CONVERSATION = "conversation"


class TaskType(str, enum.Enum):
    """Background enrichment task."""

    ENRICH_ENTITY_SUMMARY_KEYWORDS = "enrich_entity_summary_keywords"
    GENERATE_TOPICS = "generate_topics"


class JobStatus(str, enum.Enum):
    """Lifecycle of a background enrichment job."""

    PENDING = "pending"  # Never attempted, or released after a rate limit
    PROCESSING = "processing"  # Claimed by a worker
    RETRY_AI = "retry_ai"  # Failed, attempts remaining
    COMPLETED = "completed"  # Terminal
    FAILED = "failed"  # Terminal, attempts exhausted or unrecoverable

    @property
    def is_terminal(self) -> bool:
        return not JOB_STATUS_TRANSITIONS[self]

    @property
    def is_cancellable(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.RETRY_AI)

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in JOB_STATUS_TRANSITIONS[self]


# Every status must appear here; terminal statuses map to an empty set
JOB_STATUS_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.RETRY_AI: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.COMPLETED,
            JobStatus.RETRY_AI,
            JobStatus.FAILED,
            JobStatus.PENDING,
        }
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def check_transition_table(table: dict[JobStatus, frozenset[JobStatus]]) -> None:
    """Raise if any job status is missing from the transition table."""
    missing = set(JobStatus) - set(table)
    if missing:
        names = ", ".join(sorted(status.value for status in missing))
        raise RuntimeError(f"Job transition table has no entry for: {names}")


check_transition_table(JOB_STATUS_TRANSITIONS)


class CodeEntity(Base):
    """An indexed unit of source code (file, function, class, ...)."""

    __tablename__ = "code_entities"

    entity_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    file_path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_line: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_line: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_column: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_column: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    raw_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    parent_entity_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("code_entities.entity_id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    parsing_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="completed"
    )
    ai_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AiStatus.PENDING.value, index=True
    )
    ai_last_processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    custom_metadata: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_modified_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    children: Mapped[list["CodeEntity"]] = relationship(
        "CodeEntity",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<CodeEntity({self.entity_type} {self.name} @ {self.file_path})>"


class ProjectDocument(Base):
    """A non-code project file (markdown, text, config)."""

    __tablename__ = "project_documents"

    document_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    file_path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    file_type: Mapped[str] = mapped_column(String(50), nullable=False, default="text")
    raw_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AiStatus.PENDING.value, index=True
    )
    ai_last_processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_modified_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<ProjectDocument({self.file_path})>"


class CodeRelationship(Base):
    """Directed, typed edge between two entities (or an unresolved symbol)."""

    __tablename__ = "code_relationships"

    relationship_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_id
    )
    source_entity_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("code_entities.entity_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Cross-file references may only carry target_symbol_name
    target_entity_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("code_entities.entity_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    target_symbol_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    relationship_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    custom_metadata: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class EntityKeyword(Base):
    """Weighted keyword attached to an entity or document."""

    __tablename__ = "entity_keywords"
    __table_args__ = (
        UniqueConstraint(
            "entity_id", "keyword", "keyword_type", name="uq_entity_keyword_type"
        ),
        Index("ix_entity_keywords_keyword", "keyword"),
    )

    keyword_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    keyword: Mapped[str] = mapped_column(Text, nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    keyword_type: Mapped[str] = mapped_column(String(30), nullable=False, default="term")


class ConversationMessage(Base):
    """Append-only conversation history."""

    __tablename__ = "conversation_history"
    __table_args__ = (
        Index("ix_conversation_history_conv_ts", "conversation_id", "timestamp"),
    )

    message_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    related_entity_ids: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    topic_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)


class ConversationTopic(Base):
    """A segmented span of a conversation."""

    __tablename__ = "conversation_topics"

    topic_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    keywords: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON list
    purpose_tag: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    start_message_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    end_message_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    start_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    parent_topic_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("conversation_topics.topic_id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class BackgroundJob(Base):
    """Queued enrichment work for an entity, document or conversation."""

    __tablename__ = "background_ai_jobs"
    __table_args__ = (
        Index("ix_background_ai_jobs_status_created", "status", "created_at"),
    )

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    target_entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value
    )
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_attempted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<BackgroundJob({self.job_id} {self.task_type} "
            f"{self.status} {self.attempts}/{self.max_attempts})>"
        )


class GitCommit(Base):
    """Commit from the project's history."""

    __tablename__ = "git_commits"

    commit_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    author_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author_email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    commit_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")


class GitCommitFile(Base):
    """File touched by a commit."""

    __tablename__ = "git_commit_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    commit_hash: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("git_commits.commit_hash", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="modified")


class SystemMetadata(Base):
    """Key/value bookkeeping (last indexed commit, schema version, ...)."""

    __tablename__ = "system_metadata"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
