"""
Pytest configuration and fixtures for codecontext tests.

Provides in-memory and file-backed knowledge stores with the full schema
(including FTS indexes) and a small factory for populating them.
"""

from datetime import datetime, timedelta
from typing import Generator, Optional

import pytest

from codecontext.db.connection import Database
from codecontext.db.repositories import (
    CodeEntityRepository,
    ConversationMessageRepository,
    ConversationTopicRepository,
    KeywordRepository,
    ProjectDocumentRepository,
    RelationshipWriteRepository,
)
from codecontext.models.db import (
    CodeEntity,
    ConversationMessage,
    ConversationTopic,
    GitCommit,
    GitCommitFile,
    ProjectDocument,
)
from codecontext.models.metadata import RelationshipMetadata
from codecontext.utils.timeutil import utcnow


@pytest.fixture(autouse=True)
def clear_codecontext_env(monkeypatch):
    """Keep developer environment variables out of the tests."""
    for name in ("DATABASE_URL", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "AI_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def database() -> Generator[Database, None, None]:
    """In-memory knowledge store with tables and FTS indexes."""
    db = Database("sqlite://")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def file_database(tmp_path) -> Generator[Database, None, None]:
    """File-backed knowledge store, safe to share between worker threads."""
    db = Database(f"sqlite:///{tmp_path / 'knowledge.db'}")
    db.init_schema()
    yield db
    db.close()


class KnowledgeFactory:
    """Writes test records through the repositories."""

    def __init__(self, database: Database):
        self.database = database

    def entity(
        self,
        name: str,
        content: str,
        file_path: str = "src/app.py",
        entity_type: str = "function",
        language: str = "python",
        summary: Optional[str] = None,
        ai_status: str = "pending",
        parent_entity_id: Optional[str] = None,
        last_modified_at: Optional[datetime] = None,
    ) -> CodeEntity:
        with self.database.session() as session:
            entity = CodeEntityRepository(session).create(
                name=name,
                raw_content=content,
                file_path=file_path,
                entity_type=entity_type,
                language=language,
                summary=summary,
                ai_status=ai_status,
                parent_entity_id=parent_entity_id,
                start_line=1,
                end_line=content.count("\n") + 1,
            )
            if last_modified_at is not None:
                entity.last_modified_at = last_modified_at
            return entity

    def document(
        self,
        file_path: str,
        content: str,
        file_type: str = "markdown",
        summary: Optional[str] = None,
    ) -> ProjectDocument:
        with self.database.session() as session:
            return ProjectDocumentRepository(session).create(
                file_path=file_path,
                raw_content=content,
                file_type=file_type,
                summary=summary,
            )

    def relationship(
        self,
        source_entity_id: str,
        relationship_type: str,
        target_entity_id: Optional[str] = None,
        target_symbol_name: Optional[str] = None,
        weight: float = 1.0,
        metadata: Optional[RelationshipMetadata] = None,
    ) -> None:
        with self.database.session() as session:
            RelationshipWriteRepository(session).add(
                source_entity_id=source_entity_id,
                relationship_type=relationship_type,
                target_entity_id=target_entity_id,
                target_symbol_name=target_symbol_name,
                weight=weight,
                metadata=metadata,
            )

    def keywords(
        self, entity_id: str, keywords: list[str], keyword_type: str = "term", weight: float = 1.0
    ) -> None:
        with self.database.session() as session:
            KeywordRepository(session).upsert_keywords(
                entity_id, keywords, keyword_type=keyword_type, weight=weight
            )

    def message(
        self,
        conversation_id: str,
        content: str,
        role: str = "user",
        minutes_ago: float = 0,
    ) -> ConversationMessage:
        with self.database.session() as session:
            return ConversationMessageRepository(session).append(
                conversation_id=conversation_id,
                role=role,
                content=content,
                timestamp=utcnow() - timedelta(minutes=minutes_ago),
            )

    def topic(
        self,
        conversation_id: str,
        summary: str,
        keywords: list[str],
        purpose_tag: Optional[str] = None,
    ) -> ConversationTopic:
        with self.database.session() as session:
            return ConversationTopicRepository(session).open_topic(
                conversation_id=conversation_id,
                summary=summary,
                keywords=keywords,
                purpose_tag=purpose_tag,
            )

    def commit(
        self,
        commit_hash: str,
        message: str,
        files: tuple[str, ...] = (),
        author_name: str = "Dev",
        days_ago: float = 1,
    ) -> None:
        with self.database.session() as session:
            session.add(
                GitCommit(
                    commit_hash=commit_hash,
                    author_name=author_name,
                    author_email="dev@example.com",
                    commit_date=utcnow() - timedelta(days=days_ago),
                    message=message,
                )
            )
            session.flush()
            for path in files:
                session.add(GitCommitFile(commit_hash=commit_hash, file_path=path))


@pytest.fixture
def factory(database: Database) -> KnowledgeFactory:
    return KnowledgeFactory(database)


@pytest.fixture
def file_factory(file_database: Database) -> KnowledgeFactory:
    return KnowledgeFactory(file_database)
