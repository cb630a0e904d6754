"""
Conversation history and topic repositories.
"""

import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from codecontext.db.repositories.base import BaseRepository
from codecontext.models.db import ConversationMessage, ConversationTopic
from codecontext.utils.timeutil import utcnow


class ConversationMessageRepository(BaseRepository[ConversationMessage]):
    """Repository for the append-only conversation history."""

    def __init__(self, session: Session):
        super().__init__(ConversationMessage, session)

    def append(
        self,
        conversation_id: str,
        role: str,
        content: str,
        timestamp: Optional[datetime] = None,
        topic_id: Optional[str] = None,
        related_entity_ids: Optional[List[str]] = None,
    ) -> ConversationMessage:
        return self.create(
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=timestamp or utcnow(),
            topic_id=topic_id,
            related_entity_ids=json.dumps(related_entity_ids)
            if related_entity_ids
            else None,
        )

    def get_recent(
        self, conversation_id: str, limit: int = 10
    ) -> List[ConversationMessage]:
        """
        Most recent messages of a conversation, oldest first.

        Args:
            conversation_id: Conversation identifier
            limit: Maximum number of messages

        Returns:
            List of messages in chronological order
        """
        newest = (
            self.session.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation_id)
            .order_by(desc(ConversationMessage.timestamp))
            .limit(limit)
            .all()
        )
        return list(reversed(newest))

    def get_for_conversation(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[ConversationMessage]:
        query = (
            self.session.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation_id)
            .order_by(asc(ConversationMessage.timestamp))
        )
        if limit:
            query = query.limit(limit)
        return query.all()


class ConversationTopicRepository(BaseRepository[ConversationTopic]):
    """Repository for conversation topic segments."""

    def __init__(self, session: Session):
        super().__init__(ConversationTopic, session)

    def open_topic(
        self,
        conversation_id: str,
        summary: str,
        keywords: List[str],
        purpose_tag: Optional[str] = None,
        parent_topic_id: Optional[str] = None,
        start_message_id: Optional[str] = None,
        start_timestamp: Optional[datetime] = None,
    ) -> ConversationTopic:
        return self.create(
            conversation_id=conversation_id,
            summary=summary,
            keywords=json.dumps(keywords),
            purpose_tag=purpose_tag,
            parent_topic_id=parent_topic_id,
            start_message_id=start_message_id,
            start_timestamp=start_timestamp or utcnow(),
        )

    def close_topic(
        self,
        topic_id: str,
        end_message_id: Optional[str] = None,
        end_timestamp: Optional[datetime] = None,
    ) -> Optional[ConversationTopic]:
        """Set the end markers of an open topic; closed topics are left alone."""
        topic = self.get(topic_id)
        if topic is None or topic.end_timestamp is not None:
            return topic
        topic.end_message_id = end_message_id
        topic.end_timestamp = end_timestamp or utcnow()
        self.session.flush()
        return topic

    def get_latest(self, conversation_id: str) -> Optional[ConversationTopic]:
        return (
            self.session.query(ConversationTopic)
            .filter(ConversationTopic.conversation_id == conversation_id)
            .order_by(desc(ConversationTopic.created_at))
            .first()
        )

    def get_for_conversation(self, conversation_id: str) -> List[ConversationTopic]:
        return (
            self.session.query(ConversationTopic)
            .filter(ConversationTopic.conversation_id == conversation_id)
            .order_by(asc(ConversationTopic.created_at))
            .all()
        )


def topic_keywords(topic: ConversationTopic) -> List[str]:
    """Decode a topic's stored keyword list (empty on bad data)."""
    if not topic.keywords:
        return []
    try:
        decoded = json.loads(topic.keywords)
    except ValueError:
        return []
    if not isinstance(decoded, list):
        return []
    return [str(k) for k in decoded]
