"""
Tolerant parsing of enrichment responses.

Models are asked for ``Summary:``/``Keywords:`` lines but do not always
comply. Parsing tries the labelled format first and then an explicit
fallback; callers get either a result or a parse error value, never an
exception.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 10
MAX_TOPICS = 3

_SUMMARY_LINE = re.compile(r"^\s*[*#_\-\s]*summary[*_\s]*:[*_\s]*(.*)$", re.IGNORECASE)
_KEYWORDS_LINE = re.compile(r"^\s*[*#_\-\s]*keywords?[*_\s]*:[*_\s]*(.*)$", re.IGNORECASE)
_PURPOSE_LINE = re.compile(r"^\s*[*#_\-\s]*purpose(?: tag)?[*_\s]*:[*_\s]*(.*)$", re.IGNORECASE)
_RANGE_LINE = re.compile(r"^\s*[*#_\-\s]*range[*_\s]*:[*_\s]*(.*)$", re.IGNORECASE)
_TOPIC_HEADER = re.compile(r"^\s*[*#_\-\s]*topic\s*\d+\s*[*_\s]*:?[*_\s]*(.*)$", re.IGNORECASE)
_RANGE_NUMBERS = re.compile(r"(\d+)\D+(\d+)")


@dataclass
class ParsedEnrichment:
    summary: str
    keywords: list[str] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class EnrichmentParseError:
    reason: str
    raw: str = ""


@dataclass
class ParsedTopic:
    summary: str
    keywords: list[str] = field(default_factory=list)
    purpose_tag: Optional[str] = None
    start_index: Optional[int] = None  # 1-based message index
    end_index: Optional[int] = None


def normalize_keywords(raw: str) -> list[str]:
    """Split a keyword list, lowercase, dedupe and keep at most MAX_KEYWORDS."""
    keywords: list[str] = []
    for part in re.split(r"[,;\n]", raw):
        keyword = part.strip().strip("[]()*`\"'.").strip().lower()
        if keyword and keyword not in keywords:
            keywords.append(keyword)
        if len(keywords) >= MAX_KEYWORDS:
            break
    return keywords


def parse_enrichment_response(
    text: Optional[str],
) -> Union[ParsedEnrichment, EnrichmentParseError]:
    """
    Parse a summary/keywords response.

    Strategy 1: labelled ``Summary:`` and ``Keywords:`` lines (a summary may
    continue over following unlabelled lines). Strategy 2 (fallback): first
    non-empty line as summary, first comma-separated line after it as
    keywords.

    Returns:
        ParsedEnrichment, or EnrichmentParseError for empty responses
    """
    if not text or not text.strip():
        return EnrichmentParseError(reason="empty response", raw=text or "")

    lines = [line.rstrip() for line in text.strip().splitlines()]

    summary_parts: list[str] = []
    keywords: list[str] = []
    in_summary = False
    for line in lines:
        summary_match = _SUMMARY_LINE.match(line)
        keywords_match = _KEYWORDS_LINE.match(line)
        if summary_match:
            summary_parts = [summary_match.group(1).strip()]
            in_summary = True
        elif keywords_match:
            keywords = normalize_keywords(keywords_match.group(1))
            in_summary = False
        elif in_summary and line.strip():
            summary_parts.append(line.strip())

    summary = " ".join(part for part in summary_parts if part).strip()
    if summary:
        return ParsedEnrichment(summary=summary, keywords=keywords)

    non_empty = [line.strip() for line in lines if line.strip()]
    fallback_summary = non_empty[0]
    fallback_keywords: list[str] = keywords
    if not fallback_keywords:
        for line in non_empty[1:]:
            if "," in line:
                fallback_keywords = normalize_keywords(line)
                break
    logger.debug("Enrichment response had no Summary label, used fallback parsing")
    return ParsedEnrichment(
        summary=fallback_summary, keywords=fallback_keywords, used_fallback=True
    )


def parse_topics_response(
    text: Optional[str],
) -> Union[list[ParsedTopic], EnrichmentParseError]:
    """
    Parse up to MAX_TOPICS ``Topic N:`` blocks.

    A response without topic headers but with a summary/keywords answer is
    treated as a single topic.
    """
    if not text or not text.strip():
        return EnrichmentParseError(reason="empty response", raw=text or "")

    topics: list[ParsedTopic] = []
    current: Optional[ParsedTopic] = None

    for line in text.strip().splitlines():
        header = _TOPIC_HEADER.match(line)
        if header:
            if current is not None and current.summary:
                topics.append(current)
            current = ParsedTopic(summary=header.group(1).strip())
            continue
        if current is None:
            continue

        if match := _SUMMARY_LINE.match(line):
            current.summary = match.group(1).strip()
        elif match := _KEYWORDS_LINE.match(line):
            current.keywords = normalize_keywords(match.group(1))
        elif match := _PURPOSE_LINE.match(line):
            current.purpose_tag = match.group(1).strip().strip("\"'") or None
        elif match := _RANGE_LINE.match(line):
            numbers = _RANGE_NUMBERS.search(match.group(1))
            if numbers:
                current.start_index = int(numbers.group(1))
                current.end_index = int(numbers.group(2))

    if current is not None and current.summary:
        topics.append(current)

    if topics:
        return topics[:MAX_TOPICS]

    single = parse_enrichment_response(text)
    if isinstance(single, EnrichmentParseError):
        return single
    return [ParsedTopic(summary=single.summary, keywords=single.keywords)]
