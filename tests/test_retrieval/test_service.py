"""Tests for the retrieval pipeline."""

from unittest.mock import MagicMock

import pytest

from codecontext.exceptions import ValidationError
from codecontext.retrieval.candidates import (
    CODE_ENTITY_FTS,
    CandidateGenerator,
    CandidateSnippet,
    RetrievalParameters,
)
from codecontext.retrieval.ranker import RelevanceRanker
from codecontext.retrieval.service import RetrievalService


@pytest.fixture
def service(database) -> RetrievalService:
    return RetrievalService(CandidateGenerator(database), RelevanceRanker())


class TestGetRelevantContext:
    """Tests for RetrievalService.get_relevant_context."""

    def test_end_to_end(self, service, factory):
        entity = factory.entity(
            "rotate_keys",
            "def rotate_keys(store):\n    store.rotate()",
            summary="Rotates signing keys.",
            ai_status="completed",
        )
        factory.document("docs/security.md", "Keys are rotated nightly by rotate_keys.")

        outcome = service.get_relevant_context("rotate_keys", "conv-1", 1000)

        assert outcome.snippets[0].id == entity.entity_id
        summary = outcome.summary
        assert summary["snippets_returned_after_compression"] == len(outcome.snippets)
        assert summary["token_budget_given"] == 1000
        assert summary["search_terms"] == ["rotate_keys"]
        assert summary["candidates_by_source"]["code_entity_fts"] == 1
        assert summary["is_git_history_query"] is False
        assert summary["elapsed_ms"] >= 0

    def test_no_terms_gives_empty_result(self, service, factory):
        factory.entity("x", "def x(): pass")

        outcome = service.get_relevant_context("the a an", None, 500)

        assert outcome.snippets == []
        assert outcome.summary["snippets_found_before_compression"] == 0
        assert outcome.summary["token_budget_remaining"] == 500

    def test_invalid_budget_raises(self, service):
        with pytest.raises(ValidationError):
            service.get_relevant_context("anything", None, 0)

    def test_git_history_query_is_flagged(self, service, factory):
        factory.commit("fedcba9876543210", "Rework the cache layer")

        outcome = service.get_relevant_context("who changed the cache", None, 500)

        assert outcome.summary["is_git_history_query"] is True
        assert outcome.snippets[0].id == "fedcba9876543210"

    def test_passes_parameters_and_focus(self):
        candidate = CandidateSnippet(
            id="e1", source_type=CODE_ENTITY_FTS, content="body", initial_score=0.5
        )
        generator = MagicMock()
        generator.generate.return_value = [candidate]
        ranker = MagicMock()
        ranker.rank.return_value = [candidate]
        parameters = RetrievalParameters(include_sources=["fts"])

        outcome = RetrievalService(generator, ranker).get_relevant_context(
            "body", "conv-1", 100, parameters=parameters, focus="src/app.py"
        )

        generator.generate.assert_called_once_with("body", "conv-1", parameters)
        ranker.rank.assert_called_once_with([candidate], focus="src/app.py")
        assert outcome.summary["focus"] == "src/app.py"
        assert [s.id for s in outcome.snippets] == ["e1"]
