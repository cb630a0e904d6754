"""
Tests for the repository layer.
"""

from datetime import timedelta

import pytest

from codecontext.db.repositories import (
    CodeEntityRepository,
    ConversationMessageRepository,
    ConversationTopicRepository,
    KeywordRepository,
    ProjectDocumentRepository,
    RelationshipWriteRepository,
    topic_keywords,
)
from codecontext.exceptions import ValidationError
from codecontext.models.db import ConversationTopic
from codecontext.models.metadata import CallMetadata, parse_relationship_metadata
from codecontext.utils.timeutil import utcnow


class TestBaseRepository:
    """Tests for the generic CRUD operations."""

    def test_create_get_update_delete(self, database):
        with database.session() as session:
            repo = CodeEntityRepository(session)
            entity = repo.create(name="fn", file_path="a.py", entity_type="function")

            assert repo.get(entity.entity_id) is entity
            repo.update(entity, name="renamed")
            assert repo.get(entity.entity_id).name == "renamed"
            assert repo.count() == 1
            assert repo.delete(entity.entity_id) is True
            assert repo.delete(entity.entity_id) is False
            assert repo.count() == 0

    def test_get_all_limit_offset(self, database, factory):
        for i in range(4):
            factory.entity(f"fn{i}", "x")

        with database.session() as session:
            repo = CodeEntityRepository(session)
            assert len(repo.get_all()) == 4
            assert len(repo.get_all(limit=2)) == 2
            assert len(repo.get_all(offset=3)) == 1


class TestCodeEntityRepository:
    def test_parent_must_exist(self, database):
        with pytest.raises(ValidationError) as exc_info:
            with database.session() as session:
                CodeEntityRepository(session).create(
                    name="fn", file_path="a.py", entity_type="function",
                    parent_entity_id="missing",
                )
        assert exc_info.value.code == "INVALID_PARENT"

    def test_parent_must_be_in_same_file(self, database, factory):
        parent = factory.entity("Cls", "class Cls: ...", file_path="a.py")

        with pytest.raises(ValidationError, match="is in a.py"):
            factory.entity(
                "m", "def m(self): ...", file_path="b.py", parent_entity_id=parent.entity_id
            )

    def test_get_by_file_in_source_order(self, database):
        with database.session() as session:
            repo = CodeEntityRepository(session)
            repo.create(name="second", file_path="a.py", entity_type="function", start_line=20)
            repo.create(name="first", file_path="a.py", entity_type="function", start_line=1)
            repo.create(name="other", file_path="b.py", entity_type="function", start_line=1)

            assert [e.name for e in repo.get_by_file("a.py")] == ["first", "second"]

    def test_get_by_ids(self, database, factory):
        a = factory.entity("a", "x")
        factory.entity("b", "y")

        with database.session() as session:
            repo = CodeEntityRepository(session)
            assert [e.name for e in repo.get_by_ids([a.entity_id])] == ["a"]
            assert repo.get_by_ids([]) == []


class TestDocumentsAndRelationships:
    def test_get_document_by_path(self, database, factory):
        factory.document("README.md", "# Project")

        with database.session() as session:
            repo = ProjectDocumentRepository(session)
            assert repo.get_by_path("README.md").raw_content == "# Project"
            assert repo.get_by_path("missing.md") is None

    def test_relationship_metadata_is_serialized(self, database, factory):
        caller = factory.entity("main", "main()")

        with database.session() as session:
            edge = RelationshipWriteRepository(session).add(
                caller.entity_id,
                "CALLS_FUNCTION",
                target_symbol_name="helper",
                metadata=CallMetadata(line=4),
            )
            stored = edge.custom_metadata

        assert parse_relationship_metadata(stored) == CallMetadata(line=4)

    def test_relationship_needs_a_target(self, database, factory):
        caller = factory.entity("main", "main()")

        with pytest.raises(ValidationError):
            with database.session() as session:
                RelationshipWriteRepository(session).add(caller.entity_id, "CALLS_FUNCTION")


class TestKeywordRepository:
    def test_upsert_updates_weight(self, database):
        with database.session() as session:
            repo = KeywordRepository(session)

            assert repo.upsert_keywords("e1", ["auth", "", "jwt"], "term", weight=0.5) == 2
            assert repo.upsert_keywords("e1", ["auth"], "term", weight=0.9) == 1

            rows = {(k.keyword, k.weight) for k in repo.get_for_entity("e1")}
            assert rows == {("auth", 0.9), ("jwt", 0.5)}

    def test_keyword_types_are_separate(self, database):
        with database.session() as session:
            repo = KeywordRepository(session)
            repo.upsert_keywords("e1", ["auth"], "term")
            repo.upsert_keywords("e1", ["auth"], "ai_explicit")

            assert len(repo.get_for_entity("e1")) == 2


class TestConversationRepositories:
    """Tests for message history and topic segments."""

    def test_recent_messages_oldest_first(self, database):
        now = utcnow()
        with database.session() as session:
            repo = ConversationMessageRepository(session)
            for i in range(5):
                repo.append("conv-1", "user", f"m{i}", timestamp=now + timedelta(seconds=i))

            assert [m.content for m in repo.get_recent("conv-1", limit=2)] == ["m3", "m4"]

    def test_related_entity_ids_are_json(self, database):
        with database.session() as session:
            message = ConversationMessageRepository(session).append(
                "conv-1", "assistant", "see fn", related_entity_ids=["e1", "e2"]
            )

            assert message.related_entity_ids == '["e1", "e2"]'

    def test_open_and_close_topic(self, database):
        with database.session() as session:
            topics = ConversationTopicRepository(session)
            topic = topics.open_topic("conv-1", "Caching", ["cache", "ttl"])

            assert topic_keywords(topic) == ["cache", "ttl"]
            closed = topics.close_topic(topic.topic_id, end_message_id="m9")
            assert closed.end_message_id == "m9"
            assert closed.end_timestamp is not None

            first_end = closed.end_timestamp
            topics.close_topic(topic.topic_id, end_message_id="m10")
            assert topic.end_message_id == "m9"
            assert topic.end_timestamp == first_end
            assert topics.close_topic("missing") is None

    def test_latest_topic(self, database):
        now = utcnow()
        with database.session() as session:
            topics = ConversationTopicRepository(session)
            old = topics.open_topic("conv-1", "Old", [])
            new = topics.open_topic("conv-1", "New", [])
            old.created_at = now - timedelta(minutes=5)
            new.created_at = now
            session.flush()

            assert topics.get_latest("conv-1").summary == "New"
            assert [t.summary for t in topics.get_for_conversation("conv-1")] == ["Old", "New"]
            assert topics.get_latest("conv-2") is None

    @pytest.mark.parametrize("raw", [None, "", "not json", '{"a": 1}'])
    def test_topic_keywords_bad_data(self, raw):
        assert topic_keywords(ConversationTopic(keywords=raw)) == []
