"""Query tokenization for full-text and keyword search."""

import re

STOP_WORDS = frozenset(
    [
        "the", "is", "a", "an", "to", "of", "for", "and", "or", "but", "in",
        "on", "at", "with", "by", "from", "as", "be", "are", "was", "were",
        "been", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "can", "this", "that", "these",
        "those", "i", "you", "he", "she", "it", "we", "they", "me", "him",
        "her", "us", "them", "my", "your", "his", "its", "our", "their",
    ]
)

# Short or stopword-looking tokens that carry meaning in a programming query
SIGNIFICANT_SHORT_TERMS = frozenset(
    [
        "go", "js", "ts", "py", "c#", "cs", "cc", "c++", "sql", "xml", "css",
        "dom", "api", "url", "uri", "id", "ui", "ux", "ai", "ml", "db", "os",
        "io", "if", "or", "and", "not",
    ]
)

# Splits on whitespace and punctuation; keeps letters, digits, '_' and '-'
_TOKEN_SPLIT = re.compile(r"[\s.,(){}\[\]:;!@#$%^&*+=<>?/\\|\"'`~]+")

GIT_KEYWORDS = (
    "commit", "history", "change", "log", "author", "blame", "version",
    "branch", "merge", "diff", "revision", "checkout", "pull", "push",
    "repository", "repo",
)

FILE_EXTENSIONS = (
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".cpp", ".c", ".h", ".cs",
    ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".scala", ".clj", ".ml",
    ".hs", ".elm", ".dart", ".vue", ".svelte", ".html", ".css", ".scss",
    ".sass", ".less", ".json", ".xml", ".yaml", ".yml", ".toml", ".ini",
    ".cfg", ".conf", ".md", ".txt", ".sql",
)

_COMMIT_HASH = re.compile(r"\b[a-f0-9]{7,}\b", re.IGNORECASE)


def get_search_terms(query: str | None) -> list[str]:
    """
    Tokenize a natural-language query into search terms.

    Lowercases, splits on whitespace/punctuation, drops stopwords and
    single-character tokens but keeps significant short programming terms.
    Order is preserved; duplicates are removed.

    Args:
        query: Raw query text

    Returns:
        List of search terms (empty for blank or non-string input)
    """
    if not query or not isinstance(query, str):
        return []

    lowered = query.lower()

    # c# and c++ would be split apart by the punctuation pattern
    specials = [term for term in ("c#", "c++") if term in lowered.split()]

    terms: list[str] = []
    seen: set[str] = set()
    for token in specials + [t for t in _TOKEN_SPLIT.split(lowered) if t]:
        token = token.strip("-")
        if not token or token in seen:
            continue
        if token in SIGNIFICANT_SHORT_TERMS:
            keep = True
        elif token in STOP_WORDS or len(token) < 2:
            keep = False
        else:
            keep = True
        if keep:
            seen.add(token)
            terms.append(token)
    return terms


def build_fts_query(terms: list[str]) -> str:
    """
    Build an FTS5 MATCH expression matching any of the terms.

    Each term is quoted as a phrase so FTS operators inside terms
    (``-``, ``:``, ``AND``) are treated literally.
    """
    phrases = []
    for term in terms:
        escaped = term.replace('"', '""')
        if escaped:
            phrases.append(f'"{escaped}"')
    return " OR ".join(phrases)


def count_term_matches(text: str | None, terms: list[str]) -> int:
    """Number of distinct terms occurring (case-insensitively) in text."""
    if not text or not terms:
        return 0
    lowered = text.lower()
    return sum(1 for term in terms if term in lowered)


def is_git_history_query(query: str | None, terms: list[str]) -> bool:
    """
    Heuristic: does the query look like it is about commit history?

    True when the query mentions git vocabulary, a term looks like a file
    path, or something resembles a commit hash (7+ hex characters).
    """
    if not query or not isinstance(query, str):
        return False

    lowered = query.lower()
    if any(keyword in lowered for keyword in GIT_KEYWORDS):
        return True

    for term in terms:
        if "/" in term or term.endswith(FILE_EXTENSIONS):
            return True

    return bool(_COMMIT_HASH.search(lowered))
