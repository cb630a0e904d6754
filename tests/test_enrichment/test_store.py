"""Tests for EnrichmentStore."""

from datetime import datetime

import pytest

from codecontext.db.repositories import ConversationTopicRepository, KeywordRepository
from codecontext.enrichment.enricher import EnrichmentResult, TopicDraft
from codecontext.enrichment.store import AI_KEYWORD_TYPE, EnrichmentStore
from codecontext.models.db import AiStatus, CodeEntity, TargetEntityType


@pytest.fixture
def store(database) -> EnrichmentStore:
    return EnrichmentStore(database)


class TestLoadTarget:
    def test_code_entity(self, store, factory):
        entity = factory.entity("load", "def load(): ...", file_path="src/io.py")

        target = store.load_target(TargetEntityType.CODE_ENTITY, entity.entity_id)

        assert target.target_id == entity.entity_id
        assert target.content == "def load(): ..."
        assert target.file_path == "src/io.py"
        assert target.language == "python"
        assert target.name == "load"

    def test_document(self, store, factory):
        document = factory.document("docs/a.md", "Alpha")

        target = store.load_target(TargetEntityType.PROJECT_DOCUMENT, document.document_id)

        assert target.target_type == TargetEntityType.PROJECT_DOCUMENT
        assert target.entity_type == "markdown"

    def test_missing_or_unsupported(self, store):
        assert store.load_target(TargetEntityType.CODE_ENTITY, "missing") is None
        assert store.load_target(TargetEntityType.CONVERSATION, "conv-1") is None


class TestSaveEnrichment:
    def test_writes_summary_status_and_keywords(self, store, factory, database):
        entity = factory.entity("load", "def load(): ...")
        target = store.load_target(TargetEntityType.CODE_ENTITY, entity.entity_id)

        store.save_enrichment(target, EnrichmentResult(summary="Loads data.", keywords=["io", "load"]))

        with database.session() as session:
            record = session.get(CodeEntity, entity.entity_id)
            assert record.summary == "Loads data."
            assert record.ai_status == AiStatus.COMPLETED.value
            assert record.ai_last_processed_at is not None
            keywords = KeywordRepository(session).get_for_entity(entity.entity_id)
            assert {k.keyword for k in keywords} == {"io", "load"}
            assert {k.keyword_type for k in keywords} == {AI_KEYWORD_TYPE}

    def test_enriched_entity_is_searchable_by_summary(self, store, factory, database):
        entity = factory.entity("fn", "def fn(): pass")
        target = store.load_target(TargetEntityType.CODE_ENTITY, entity.entity_id)

        store.save_enrichment(target, EnrichmentResult(summary="Computes invoices."))

        rows = database.execute(
            "SELECT entity_id FROM code_entities_fts WHERE code_entities_fts MATCH :q",
            {"q": '"invoices"'},
        ).rows
        assert [r["entity_id"] for r in rows] == [entity.entity_id]


class TestSetAiStatus:
    def test_sets_status(self, store, factory, database):
        entity = factory.entity("fn", "def fn(): pass")

        assert store.set_ai_status(TargetEntityType.CODE_ENTITY, entity.entity_id, AiStatus.FAILED)

        with database.session() as session:
            assert session.get(CodeEntity, entity.entity_id).ai_status == "failed"

    def test_missing_target(self, store):
        assert not store.set_ai_status(TargetEntityType.CODE_ENTITY, "missing", AiStatus.SKIPPED)
        assert not store.set_ai_status(TargetEntityType.CONVERSATION, "conv-1", AiStatus.SKIPPED)


class TestTranscriptsAndTopics:
    def test_load_transcript_in_order(self, store, factory):
        factory.message("conv-1", "second", minutes_ago=1)
        factory.message("conv-1", "first", minutes_ago=5)
        factory.message("conv-2", "elsewhere")

        transcript = store.load_transcript("conv-1")

        assert [m.content for m in transcript] == ["first", "second"]

    def test_load_transcript_limit(self, store, factory):
        for i in range(5):
            factory.message("conv-1", f"m{i}", minutes_ago=10 - i)

        assert len(store.load_transcript("conv-1", limit=3)) == 3

    def test_save_topics_under_latest_topic(self, store, factory, database):
        parent = factory.topic("conv-1", "Opening topic", ["intro"])
        drafts = [
            TopicDraft(
                summary="Generated",
                keywords=["gen"],
                purpose_tag="General Question",
                start_message_id="m1",
                end_message_id="m3",
                start_timestamp=datetime(2026, 1, 1, 9, 0),
            )
        ]

        assert store.save_topics("conv-1", drafts) == 1

        with database.session() as session:
            topics = ConversationTopicRepository(session).get_for_conversation("conv-1")
            generated = [t for t in topics if t.summary == "Generated"][0]
            assert generated.parent_topic_id == parent.topic_id
            assert generated.end_message_id == "m3"
            assert generated.end_timestamp == datetime(2026, 1, 1, 9, 0)

    def test_save_no_topics(self, store):
        assert store.save_topics("conv-1", []) == 0
