"""
Knowledge store reads and writes for enrichment jobs.
"""

import logging
from typing import Optional

from codecontext.db.connection import Database
from codecontext.db.repositories import (
    ConversationMessageRepository,
    ConversationTopicRepository,
    KeywordRepository,
)
from codecontext.enrichment.enricher import (
    EnrichmentResult,
    EnrichmentTarget,
    TopicDraft,
    TranscriptMessage,
)
from codecontext.models.db import AiStatus, CodeEntity, ProjectDocument, TargetEntityType
from codecontext.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

AI_KEYWORD_TYPE = "ai_explicit"
AI_KEYWORD_WEIGHT = 1.0

_MODELS = {
    TargetEntityType.CODE_ENTITY: CodeEntity,
    TargetEntityType.PROJECT_DOCUMENT: ProjectDocument,
}


class EnrichmentStore:
    """Loads enrichment inputs and writes results back."""

    def __init__(self, database: Database):
        self.database = database

    def load_target(
        self, target_type: TargetEntityType, target_id: str
    ) -> Optional[EnrichmentTarget]:
        """Load a code entity or document; None if it does not exist."""
        model = _MODELS.get(target_type)
        if model is None:
            return None

        with self.database.session() as session:
            record = session.get(model, target_id)
            if record is None:
                return None
            if isinstance(record, CodeEntity):
                return EnrichmentTarget(
                    target_id=record.entity_id,
                    target_type=target_type,
                    content=record.raw_content or "",
                    file_path=record.file_path,
                    language=record.language,
                    entity_type=record.entity_type,
                    name=record.name,
                )
            return EnrichmentTarget(
                target_id=record.document_id,
                target_type=target_type,
                content=record.raw_content or "",
                file_path=record.file_path,
                entity_type=record.file_type,
            )

    def save_enrichment(self, target: EnrichmentTarget, result: EnrichmentResult) -> None:
        """Store the summary, mark the target completed and index AI keywords."""
        model = _MODELS[target.target_type]
        with self.database.session() as session:
            record = session.get(model, target.target_id)
            if record is None:
                logger.warning(
                    f"{target.target_type.value} {target.target_id} vanished before write-back"
                )
                return
            record.summary = result.summary
            record.ai_status = AiStatus.COMPLETED.value
            record.ai_last_processed_at = utcnow()
            KeywordRepository(session).upsert_keywords(
                target.target_id,
                result.keywords,
                keyword_type=AI_KEYWORD_TYPE,
                weight=AI_KEYWORD_WEIGHT,
            )

    def set_ai_status(
        self, target_type: TargetEntityType, target_id: str, status: AiStatus
    ) -> bool:
        """Set the enrichment status of a target; False if it does not exist."""
        model = _MODELS.get(target_type)
        if model is None:
            return False
        with self.database.session() as session:
            record = session.get(model, target_id)
            if record is None:
                return False
            record.ai_status = status.value
            record.ai_last_processed_at = utcnow()
            return True

    def load_transcript(
        self, conversation_id: str, limit: int = 200
    ) -> list[TranscriptMessage]:
        with self.database.session() as session:
            messages = ConversationMessageRepository(session).get_for_conversation(
                conversation_id, limit=limit
            )
            return [
                TranscriptMessage(
                    message_id=m.message_id,
                    role=m.role,
                    content=m.content,
                    timestamp=m.timestamp,
                )
                for m in messages
            ]

    def save_topics(self, conversation_id: str, drafts: list[TopicDraft]) -> int:
        """
        Store generated topics.

        Every new topic hangs under the conversation's latest existing topic.

        Returns:
            Number of topics stored
        """
        if not drafts:
            return 0
        with self.database.session() as session:
            topics = ConversationTopicRepository(session)
            parent = topics.get_latest(conversation_id)
            parent_id = parent.topic_id if parent else None
            for draft in drafts:
                topic = topics.open_topic(
                    conversation_id=conversation_id,
                    summary=draft.summary,
                    keywords=draft.keywords,
                    purpose_tag=draft.purpose_tag,
                    parent_topic_id=parent_id,
                    start_message_id=draft.start_message_id,
                    start_timestamp=draft.start_timestamp,
                )
                topic.end_message_id = draft.end_message_id
                topic.end_timestamp = draft.end_timestamp or draft.start_timestamp
        return len(drafts)
