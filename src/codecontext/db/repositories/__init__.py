"""
Repository layer for knowledge store writes and ORM lookups.
"""

from codecontext.db.repositories.base import BaseRepository
from codecontext.db.repositories.conversation import (
    ConversationMessageRepository,
    ConversationTopicRepository,
    topic_keywords,
)
from codecontext.db.repositories.entity import (
    CodeEntityRepository,
    KeywordRepository,
    ProjectDocumentRepository,
    RelationshipWriteRepository,
)

__all__ = [
    "BaseRepository",
    "CodeEntityRepository",
    "ConversationMessageRepository",
    "ConversationTopicRepository",
    "KeywordRepository",
    "ProjectDocumentRepository",
    "RelationshipWriteRepository",
    "topic_keywords",
]
