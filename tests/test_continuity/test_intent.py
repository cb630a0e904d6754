"""Tests for intent classification and focus prediction."""

import pytest

from codecontext.continuity.intent import (
    CODE_GENERATION,
    DEBUGGING,
    FEATURE_PLANNING,
    LEARNING,
    IntentClassifier,
    is_docs_path,
    is_test_path,
)
from codecontext.continuity.state import Focus


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier()


class TestClassify:
    """Tests for IntentClassifier.classify."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("I'm getting an exception and the tests are failing", DEBUGGING),
            ("Can you explain how does the cache work", LEARNING),
            ("Please implement a new endpoint", CODE_GENERATION),
            ("What should we put on the roadmap for this feature?", FEATURE_PLANNING),
        ],
    )
    def test_message_intents(self, classifier, text, expected):
        prediction = classifier.classify([text])
        assert prediction.intent == expected

    def test_confidence_is_share_of_total_score(self, classifier):
        prediction = classifier.classify(["Please implement a new endpoint"])
        assert prediction.confidence == pytest.approx(1.0)

    def test_no_match(self, classifier):
        assert classifier.classify(["hello there"]) is None
        assert classifier.classify([]) is None

    def test_test_file_edits_suggest_debugging(self, classifier):
        prediction = classifier.classify([], ["tests/test_auth.py"])
        assert prediction.intent == DEBUGGING

    def test_doc_edits_suggest_planning(self, classifier):
        prediction = classifier.classify([], ["docs/design.md"])
        assert prediction.intent == FEATURE_PLANNING

    def test_source_edits_suggest_generation(self, classifier):
        prediction = classifier.classify([], ["src/app.py"])
        assert prediction.intent == CODE_GENERATION

    def test_ties_follow_intent_order(self, classifier):
        """Test debugging wins a tie with feature planning."""
        prediction = classifier.classify([], ["tests/test_auth.py", "docs/design.md"])
        assert prediction.intent == DEBUGGING
        assert prediction.confidence == pytest.approx(0.5)

    def test_custom_patterns(self):
        classifier = IntentClassifier({"ops": [r"\bdeploy\b"]})
        assert classifier.classify(["deploy to staging"]).intent == "ops"


class TestPredictFocus:
    def test_latest_file_mention_wins(self, classifier):
        focus = classifier.predict_focus(
            ["look at src/auth.py", "now check utils/helpers.ts please"]
        )
        assert focus == Focus(kind="file", identifier="utils/helpers.ts")

    def test_no_file_mentioned(self, classifier):
        assert classifier.predict_focus(["nothing here", None]) is None


class TestPathHelpers:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("tests/test_x.py", True),
            ("web/button.spec.ts", True),
            ("pkg/server_test.go", True),
            ("src/app.py", False),
            (None, False),
        ],
    )
    def test_is_test_path(self, path, expected):
        assert is_test_path(path) is expected

    @pytest.mark.parametrize(
        "path,expected",
        [("docs/guide.md", True), ("README.md", True), ("src/app.py", False), ("", False)],
    )
    def test_is_docs_path(self, path, expected):
        assert is_docs_path(path) is expected
