"""Tests for relationship graph lookups."""

import pytest

from codecontext.models.metadata import CallMetadata
from codecontext.retrieval.relationships import RelationshipRecord, RelationshipRepository


@pytest.fixture
def repository(database) -> RelationshipRepository:
    return RelationshipRepository(database)


class TestGetRelationshipsForEntity:
    """Tests for RelationshipRepository.get_relationships_for_entity."""

    @pytest.fixture
    def entities(self, factory):
        hub = factory.entity("hub", "def hub(): ...")
        a = factory.entity("a", "def a(): ...")
        b = factory.entity("b", "def b(): ...")
        c = factory.entity("c", "def c(): ...")
        factory.relationship(hub.entity_id, "IMPORTS_MODULE", target_entity_id=a.entity_id)
        factory.relationship(
            hub.entity_id, "CALLS_FUNCTION", target_entity_id=b.entity_id, weight=0.5
        )
        factory.relationship(
            hub.entity_id,
            "CALLS_FUNCTION",
            target_entity_id=c.entity_id,
            weight=2.0,
            metadata=CallMetadata(line=12, is_async=True),
        )
        factory.relationship(a.entity_id, "EXTENDS_CLASS", target_entity_id=hub.entity_id)
        return hub, a, b, c

    def test_ordered_by_type_then_weight(self, repository, entities):
        hub, a, b, c = entities

        records = repository.get_relationships_for_entity(hub.entity_id)

        assert [(r.relationship_type, r.weight) for r in records] == [
            ("CALLS_FUNCTION", 2.0),
            ("CALLS_FUNCTION", 0.5),
            ("EXTENDS_CLASS", 1.0),
            ("IMPORTS_MODULE", 1.0),
        ]

    def test_filters_by_type(self, repository, entities):
        hub, a, b, c = entities

        records = repository.get_relationships_for_entity(hub.entity_id, ["EXTENDS_CLASS"])

        assert len(records) == 1
        assert records[0].other_end(hub.entity_id) == (a.entity_id, "incoming")

    def test_empty_filter_means_all_types(self, repository, entities):
        hub = entities[0]
        assert len(repository.get_relationships_for_entity(hub.entity_id, [])) == 4

    def test_metadata_is_parsed(self, repository, entities):
        hub, _, _, c = entities

        records = repository.get_relationships_for_entity(hub.entity_id, ["CALLS_FUNCTION"])

        metadata = records[0].metadata
        assert isinstance(metadata, CallMetadata)
        assert metadata.line == 12
        assert metadata.is_async is True

    def test_unknown_entity(self, repository):
        assert repository.get_relationships_for_entity("missing") == []


class TestRelationshipRecord:
    def test_other_end_of_unresolved_edge(self):
        record = RelationshipRecord(
            relationship_id="r1",
            source_entity_id="e1",
            target_entity_id=None,
            target_symbol_name="print",
            relationship_type="CALLS_FUNCTION",
            weight=1.0,
        )
        assert record.other_end("e1") == (None, "outgoing")
