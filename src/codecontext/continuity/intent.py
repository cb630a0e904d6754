"""Rule-based intent classification for conversation turns."""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from codecontext.continuity.state import Focus

logger = logging.getLogger(__name__)

DEBUGGING = "debugging"
FEATURE_PLANNING = "feature_planning"
CODE_REVIEW = "code_review"
LEARNING = "learning"
CODE_GENERATION = "code_generation"

INTENTS = (DEBUGGING, FEATURE_PLANNING, CODE_REVIEW, LEARNING, CODE_GENERATION)

# Patterns matched against message text (case-insensitive)
INTENT_PATTERNS = {
    DEBUGGING: [
        r"\b(bug|bugs|error|errors|exception|traceback|stack ?trace|crash(es|ed)?)\b",
        r"\b(fail(s|ed|ing)?|broken|not working|doesn'?t work|regression)\b",
        r"\b(debug(ging)?|fix(es|ed|ing)?|issue)\b",
    ],
    FEATURE_PLANNING: [
        r"\b(feature|roadmap|requirement(s)?|design|architecture|plan(ning)?)\b",
        r"\b(should we|what if|proposal|approach|user stor(y|ies))\b",
    ],
    CODE_REVIEW: [
        r"\b(review|pull request|pr\b|code quality|readab(le|ility)|lint)\b",
        r"\b(refactor(ing)?|clean ?up|best practice(s)?|smell(s)?)\b",
    ],
    LEARNING: [
        r"\b(explain|what is|what are|how does|how do|why does|understand)\b",
        r"\b(tutorial|learn(ing)?|example of|difference between|meaning)\b",
    ],
    CODE_GENERATION: [
        r"\b(write|implement|create|generate|add|build)\b",
        r"\b(function|method|class|endpoint|script|component)\b",
    ],
}

TEST_PATH_PATTERN = re.compile(r"(^|/)(tests?|__tests__|spec)(/|$)|(_test|\.test|\.spec|test_)", re.IGNORECASE)
DOCS_PATH_PATTERN = re.compile(r"(^|/)docs?/|\.(md|rst|txt)$", re.IGNORECASE)

FILE_MENTION_PATTERN = re.compile(
    r"(?<![\w/.-])((?:[\w.-]+/)*[\w.-]+\.(?:py|js|jsx|ts|tsx|java|go|rs|rb|php|cs|cpp|c|h|md|json|ya?ml|toml))\b"
)


@dataclass
class IntentPrediction:
    intent: str
    confidence: float


def is_test_path(path: Optional[str]) -> bool:
    return bool(path) and bool(TEST_PATH_PATTERN.search(path))


def is_docs_path(path: Optional[str]) -> bool:
    return bool(path) and bool(DOCS_PATH_PATTERN.search(path))


class IntentClassifier:
    """Classifies the purpose of recent messages and code changes.

    Each intent scores one point per matching pattern; edited test files
    count toward debugging and edited docs toward feature planning.
    """

    def __init__(self, patterns: Optional[dict[str, list[str]]] = None):
        source = patterns or INTENT_PATTERNS
        self.patterns = {
            intent: [re.compile(p, re.IGNORECASE) for p in intent_patterns]
            for intent, intent_patterns in source.items()
        }

    def classify(
        self, texts: Iterable[str], code_paths: Iterable[str] = ()
    ) -> Optional[IntentPrediction]:
        """
        Predict the dominant intent.

        Args:
            texts: Message contents
            code_paths: Paths of changed files

        Returns:
            IntentPrediction, or None when nothing matched
        """
        combined = " ".join(t for t in texts if t)
        scores = {intent: 0.0 for intent in self.patterns}

        if combined:
            for intent, compiled in self.patterns.items():
                for pattern in compiled:
                    if pattern.search(combined):
                        scores[intent] += 1.0

        for path in code_paths:
            if is_test_path(path):
                scores[DEBUGGING] = scores.get(DEBUGGING, 0.0) + 1.0
            elif is_docs_path(path):
                scores[FEATURE_PLANNING] = scores.get(FEATURE_PLANNING, 0.0) + 1.0
            else:
                scores[CODE_GENERATION] = scores.get(CODE_GENERATION, 0.0) + 0.5

        total = sum(scores.values())
        if total <= 0:
            return None

        # Ties resolve in INTENTS order
        best = max(
            scores,
            key=lambda intent: (
                scores[intent],
                -INTENTS.index(intent) if intent in INTENTS else -len(INTENTS),
            ),
        )
        prediction = IntentPrediction(intent=best, confidence=scores[best] / total)
        logger.debug(f"Intent scores {scores} -> {prediction.intent}")
        return prediction

    def predict_focus(self, texts: Iterable[str]) -> Optional[Focus]:
        """Latest file path mentioned in the given messages (oldest first)."""
        latest = None
        for text in texts:
            for match in FILE_MENTION_PATTERN.finditer(text or ""):
                latest = match.group(1)
        if latest is None:
            return None
        return Focus(kind="file", identifier=latest)
