"""Tests for token budget compression."""

import pytest

from codecontext.exceptions import ValidationError
from codecontext.retrieval.candidates import (
    CODE_ENTITY_FTS,
    PROJECT_DOCUMENT_FTS,
    CandidateSnippet,
)
from codecontext.retrieval.compression import (
    BODY_TRUNCATION_MARKER,
    TRUNCATION_MARKER,
    TokenBudgetCompressor,
    estimate_tokens,
    truncate_code,
    truncate_text,
)


def make_candidate(
    id: str,
    content: str,
    source_type: str = CODE_ENTITY_FTS,
    ai_status: str = "completed",
    entity_type: str = "function",
) -> CandidateSnippet:
    return CandidateSnippet(
        id=id,
        source_type=source_type,
        content=content,
        initial_score=1.0,
        ai_status=ai_status,
        entity_type=entity_type,
    )


@pytest.fixture
def compressor() -> TokenBudgetCompressor:
    return TokenBudgetCompressor()


class TestEstimateTokens:
    def test_four_characters_per_token(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_blank_text(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("   \n ") == 0
        assert estimate_tokens(None) == 0

    def test_surrounding_whitespace_is_ignored(self):
        assert estimate_tokens("  abcd  ") == 1


class TestCompress:
    """Tests for greedy selection under a budget."""

    @pytest.mark.parametrize("budget", [0, -5, 1.5, "500", True, None])
    def test_rejects_invalid_budget(self, compressor, budget):
        with pytest.raises(ValidationError) as exc_info:
            compressor.compress([], budget)
        assert exc_info.value.code == "INVALID_TOKEN_BUDGET"

    def test_empty_input(self, compressor):
        result = compressor.compress([], 100)

        assert result.snippets == []
        assert result.summary.token_budget_remaining == 100
        assert result.summary.snippets_found_before_compression == 0

    def test_keeps_top_candidates_that_fit(self, compressor):
        """Test ten 100-token candidates under a 500 budget keep the top five."""
        ranked = [make_candidate(f"c{i}", "x" * 400) for i in range(10)]

        result = compressor.compress(ranked, 500)

        assert [c.id for c in result.snippets] == ["c0", "c1", "c2", "c3", "c4"]
        summary = result.summary.to_dict()
        assert summary == {
            "snippets_found_before_compression": 10,
            "snippets_returned_after_compression": 5,
            "estimated_tokens_in": 1000,
            "estimated_tokens_out": 500,
            "token_budget_given": 500,
            "token_budget_remaining": 0,
        }

    def test_skips_oversized_and_continues(self, compressor):
        """Test a summary that does not fit is skipped, later ones still fill the budget."""
        ranked = [
            make_candidate("big", "x" * 2000),
            make_candidate("small", "x" * 200),
        ]

        result = compressor.compress(ranked, 100)

        assert [c.id for c in result.snippets] == ["small"]

    def test_oversized_single_candidate_is_returned_whole(self, compressor):
        ranked = [make_candidate("huge", "x" * 4000)]

        result = compressor.compress(ranked, 100)

        assert [c.id for c in result.snippets] == ["huge"]
        assert result.snippets[0].content == "x" * 4000
        assert result.summary.token_budget_remaining == -900

    def test_stops_when_budget_nearly_spent(self, compressor):
        ranked = [make_candidate("a", "x" * 400), make_candidate("b", "x" * 20)]

        result = compressor.compress(ranked, 110)

        assert [c.id for c in result.snippets] == ["a"]
        assert result.summary.token_budget_remaining == 10

    def test_skips_empty_content(self, compressor):
        ranked = [make_candidate("blank", "   "), make_candidate("text", "hello")]

        result = compressor.compress(ranked, 100)

        assert [c.id for c in result.snippets] == ["text"]

    def test_truncates_raw_text(self, compressor):
        """Test a pending document is cut to fit rather than dropped."""
        ranked = [make_candidate("doc", "word " * 400, PROJECT_DOCUMENT_FTS, ai_status="pending")]

        result = compressor.compress(ranked, 200)

        snippet = result.snippets[0]
        assert snippet.content.endswith("...")
        assert estimate_tokens(snippet.content) <= 160
        assert snippet.metadata["truncated"] is True
        assert snippet.metadata["truncation_strategy"] == "text"
        assert snippet.metadata["original_tokens"] == 500

    def test_truncates_raw_code(self, compressor):
        body = "\n".join(
            f"    total += weighted_contribution(values[{i}], weights[{i}], offset={i})"
            for i in range(200)
        )
        code = f"def accumulate(values):\n{body}\n    return total"
        ranked = [make_candidate("fn", code, ai_status="pending")]

        result = compressor.compress(ranked, 300)

        snippet = result.snippets[0]
        assert snippet.content.startswith("def accumulate(values):")
        assert snippet.metadata["truncation_strategy"] == "function_signature"

    def test_does_not_truncate_when_target_exceeds_remaining(self, compressor):
        """Test budgets under the minimum truncation size fall back to the top candidate."""
        ranked = [make_candidate("doc", "word " * 400, PROJECT_DOCUMENT_FTS, ai_status="pending")]

        result = compressor.compress(ranked, 40)

        assert result.snippets[0].content == ranked[0].content
        assert "truncated" not in result.snippets[0].metadata

    def test_input_is_not_modified(self, compressor):
        ranked = [make_candidate("doc", "word " * 400, PROJECT_DOCUMENT_FTS, ai_status="pending")]
        original = ranked[0].content

        compressor.compress(ranked, 200)

        assert ranked[0].content == original
        assert ranked[0].metadata == {}


class TestTruncation:
    """Tests for the truncation strategies."""

    def test_truncate_text_short_input_unchanged(self):
        assert truncate_text("short", 50) == "short"

    def test_truncate_text(self):
        result = truncate_text("a" * 1000, 50)
        assert len(result) == 200
        assert result.endswith("...")

    def test_function_keeps_signature_and_preview(self):
        code = "def handler(event):\n" + "\n".join(f"    step_{i}()" for i in range(20))

        result, strategy = truncate_code(code, "function", 50)

        assert strategy == "function_signature"
        lines = result.splitlines()
        assert lines[0] == "def handler(event):"
        assert lines[1:4] == ["    step_0()", "    step_1()", "    step_2()"]
        assert lines[-1] == BODY_TRUNCATION_MARKER

    def test_class_outline_keeps_member_signatures(self):
        code = (
            "class Cache:\n"
            "    def get(self, key):\n"
            "        return self.data[key]\n"
            "    def put(self, key, value):\n"
            "        self.data[key] = value\n"
        )

        result, strategy = truncate_code(code, "class", 50)

        assert strategy == "class_outline"
        assert "    def get(self, key): ..." in result
        assert "    def put(self, key, value): ..." in result
        assert "return self.data" not in result
        assert result.endswith(TRUNCATION_MARKER)

    def test_line_based_fallback(self):
        code = "\n".join("x = 1" for _ in range(100))

        result, strategy = truncate_code(code, "variable", 50)

        assert strategy == "line_based"
        assert result.splitlines() == ["x = 1"] * 5 + [TRUNCATION_MARKER]

    def test_type_definition(self):
        code = "\n".join(f"  field_{i}: string;" for i in range(200))

        result, strategy = truncate_code(code, "interface", 50)

        assert strategy == "type_definition"
        assert len(result.splitlines()) == 6
