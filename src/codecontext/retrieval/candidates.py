"""
Candidate generation for context retrieval.

Gathers context candidates for a query from every source the knowledge store
offers: full-text search over code and documents, the explicit keyword
index, one-hop relationship expansion, conversation history, topics and
commit history. Each source is isolated; a failing source is logged and
contributes nothing.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from codecontext.config import DEFAULT_RELATIONSHIP_TYPES_FOR_EXPANSION
from codecontext.db.connection import Database
from codecontext.models.db import AiStatus
from codecontext.models.metadata import RelationshipMetadata
from codecontext.retrieval.relationships import RelationshipRepository
from codecontext.retrieval.terms import (
    build_fts_query,
    count_term_matches,
    get_search_terms,
)
from codecontext.utils.timeutil import age_in_hours, parse_timestamp

logger = logging.getLogger(__name__)

# Source types
CODE_ENTITY_FTS = "code_entity_fts"
CODE_ENTITY_KEYWORD = "code_entity_keyword"
CODE_ENTITY_RELATED = "code_entity_related"
PROJECT_DOCUMENT_FTS = "project_document_fts"
PROJECT_DOCUMENT_KEYWORD = "project_document_keyword"
CONVERSATION_MESSAGE = "conversation_message"
CONVERSATION_TOPIC = "conversation_topic"
GIT_COMMIT = "git_commit"
GIT_COMMIT_FILE_CHANGE = "git_commit_file_change"

# Identity kind per source type; candidates of one kind share an id space
SOURCE_KINDS = {
    CODE_ENTITY_FTS: "code_entity",
    CODE_ENTITY_KEYWORD: "code_entity",
    CODE_ENTITY_RELATED: "code_entity",
    PROJECT_DOCUMENT_FTS: "project_document",
    PROJECT_DOCUMENT_KEYWORD: "project_document",
    CONVERSATION_MESSAGE: "message",
    CONVERSATION_TOPIC: "topic",
    GIT_COMMIT: "commit",
    GIT_COMMIT_FILE_CHANGE: "commit_file",
}

CODE_SOURCE_TYPES = frozenset({CODE_ENTITY_FTS, CODE_ENTITY_KEYWORD, CODE_ENTITY_RELATED})

# Source groups accepted by RetrievalParameters.include_sources
SOURCE_GROUPS = ("fts", "keywords", "relationships", "conversation", "topics", "git")

SNIPPET_PREVIEW_CHARS = 300


@dataclass
class RelationshipContext:
    """How a relationship-derived candidate is connected to its seed."""

    related_to_seed_entity_id: str
    relationship_type: str
    direction: str  # "outgoing" or "incoming"
    metadata: Optional[RelationshipMetadata] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "related_to_seed_entity_id": self.related_to_seed_entity_id,
            "relationship_type": self.relationship_type,
            "direction": self.direction,
            "metadata": self.metadata.model_dump() if self.metadata else None,
        }


@dataclass
class CandidateSnippet:
    """A potential piece of context, before ranking and compression."""

    id: str
    source_type: str
    content: str
    initial_score: float
    file_path: Optional[str] = None
    entity_type: Optional[str] = None
    name: Optional[str] = None
    language: Optional[str] = None
    ai_status: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    relationship_context: Optional[RelationshipContext] = None
    consolidated_score: float = 0.0
    sources: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.sources:
            self.sources = [self.source_type]

    @property
    def kind(self) -> str:
        return SOURCE_KINDS.get(self.source_type, self.source_type)

    @property
    def key(self) -> tuple[str, str]:
        """Identity used for deduplication across sources."""
        return (self.kind, self.id)

    @property
    def is_code(self) -> bool:
        return self.source_type in CODE_SOURCE_TYPES

    @property
    def is_relationship_derived(self) -> bool:
        return self.relationship_context is not None


@dataclass
class RetrievalParameters:
    """Per-request constraints on candidate generation."""

    include_sources: Optional[list[str]] = None  # Subset of SOURCE_GROUPS
    relationship_types: Optional[list[str]] = None
    max_seed_entities: Optional[int] = None

    def includes(self, group: str) -> bool:
        return not self.include_sources or group in self.include_sources


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _match_ratio(text: Optional[str], terms: list[str]) -> float:
    if not terms:
        return 0.0
    return count_term_matches(text, terms) / len(terms)


def _age_days(value: Any) -> Optional[float]:
    hours = age_in_hours(value)
    if hours is None:
        return None
    return max(hours, 0.0) / 24


def _decay(value: Any, weight: float, half_days: float) -> float:
    days = _age_days(value)
    if days is None:
        return 0.0
    return weight * math.exp(-days / half_days)


def _like_clause(
    columns: list[str], terms: list[str], params: dict[str, Any], prefix: str
) -> str:
    """Build ``(col LIKE :p0 OR ...)`` over every column/term pair."""
    clauses = []
    for i, term in enumerate(terms):
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        name = f"{prefix}{i}"
        params[name] = f"%{escaped}%"
        for column in columns:
            clauses.append(f"{column} LIKE :{name} ESCAPE '\\'")
    return "(" + " OR ".join(clauses) + ")"


def _preview(
    summary: Optional[str], ai_status: Optional[str], highlight: Optional[str], raw: Optional[str]
) -> str:
    """Pick the best text for an FTS hit: AI summary, FTS excerpt, raw text."""
    if summary and ai_status == AiStatus.COMPLETED.value:
        return summary
    if highlight and highlight.strip():
        return highlight
    raw = raw or ""
    if len(raw) > SNIPPET_PREVIEW_CHARS:
        return raw[:SNIPPET_PREVIEW_CHARS] + "..."
    return raw


def _entity_content(row: dict[str, Any]) -> str:
    """Full content for keyword/relationship hits: summary when enriched."""
    if row.get("summary") and row.get("ai_status") == AiStatus.COMPLETED.value:
        return row["summary"]
    return row.get("raw_content") or row.get("summary") or ""


class CandidateGenerator:
    """
    Produces unranked context candidates for a query.

    Example:
        >>> generator = CandidateGenerator(database)
        >>> candidates = generator.generate("auth token refresh", "conv-1")
    """

    def __init__(
        self,
        database: Database,
        relationships: Optional[RelationshipRepository] = None,
        max_seed_entities: int = 3,
        relationship_types: Optional[list[str]] = None,
        fts_limit: int = 20,
        keyword_limit: int = 20,
        message_limit: int = 10,
        topic_limit: int = 5,
        commit_limit: int = 10,
        commit_file_limit: int = 15,
    ):
        self.database = database
        self.relationships = relationships or RelationshipRepository(database)
        self.max_seed_entities = max_seed_entities
        self.relationship_types = (
            relationship_types
            if relationship_types is not None
            else list(DEFAULT_RELATIONSHIP_TYPES_FOR_EXPANSION)
        )
        self.fts_limit = fts_limit
        self.keyword_limit = keyword_limit
        self.message_limit = message_limit
        self.topic_limit = topic_limit
        self.commit_limit = commit_limit
        self.commit_file_limit = commit_file_limit

    def generate(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        constraints: Optional[RetrievalParameters] = None,
    ) -> list[CandidateSnippet]:
        """
        Gather candidates from every enabled source.

        Args:
            query: Free-text query
            conversation_id: Active conversation (its messages score higher)
            constraints: Source and expansion restrictions

        Returns:
            Candidates in source order (FTS, keywords, related, messages,
            topics, commits); empty when the query has no search terms
        """
        terms = get_search_terms(query)
        if not terms:
            logger.debug(f"No search terms in query {query!r}")
            return []

        constraints = constraints or RetrievalParameters()
        candidates: list[CandidateSnippet] = []
        seen: set[tuple[str, str]] = set()

        def collect(found: list[CandidateSnippet]) -> None:
            for candidate in found:
                if candidate.key in seen:
                    continue
                seen.add(candidate.key)
                candidates.append(candidate)

        if constraints.includes("fts"):
            fts_query = build_fts_query(terms)
            collect(self._isolated("code FTS", self.search_code_fts, fts_query))
            collect(self._isolated("document FTS", self.search_document_fts, fts_query))

        if constraints.includes("keywords"):
            collect(
                self._isolated("keyword index", self.search_keywords, terms, seen)
            )

        if constraints.includes("relationships"):
            max_seeds = (
                constraints.max_seed_entities
                if constraints.max_seed_entities is not None
                else self.max_seed_entities
            )
            seeds = sorted(
                (c for c in candidates if c.is_code),
                key=lambda c: c.initial_score,
                reverse=True,
            )[: max(max_seeds, 0)]
            relationship_types = (
                constraints.relationship_types
                if constraints.relationship_types is not None
                else self.relationship_types
            )
            collect(
                self._isolated(
                    "relationship expansion",
                    self.expand_relationships,
                    [(seed.id, seed.initial_score) for seed in seeds],
                    terms,
                    relationship_types,
                    seen,
                )
            )

        if constraints.includes("conversation"):
            collect(
                self._isolated(
                    "conversation history", self.search_messages, terms, conversation_id
                )
            )

        if constraints.includes("topics"):
            collect(self._isolated("topics", self.search_topics, terms))

        if constraints.includes("git"):
            collect(self._isolated("commits", self.search_commits, terms))
            collect(self._isolated("commit files", self.search_commit_files, terms))

        logger.debug(f"Generated {len(candidates)} candidates for terms {terms}")
        return candidates

    def _isolated(
        self, label: str, search: Callable[..., list[CandidateSnippet]], *args: Any
    ) -> list[CandidateSnippet]:
        try:
            return search(*args)
        except Exception as e:
            logger.warning(f"Candidate source '{label}' failed: {e}")
            return []

    def search_code_fts(self, fts_query: str) -> list[CandidateSnippet]:
        """Full-text search over code entity names, content and summaries."""
        result = self.database.execute(
            """
            SELECT e.entity_id, e.file_path, e.entity_type, e.name, e.language,
                   e.raw_content, e.summary, e.ai_status, e.last_modified_at,
                   snippet(code_entities_fts, -1, '', '', '...', 32) AS highlight
            FROM code_entities_fts
            JOIN code_entities e ON e.entity_id = code_entities_fts.entity_id
            WHERE code_entities_fts MATCH :query
            ORDER BY rank
            LIMIT :limit
            """,
            {"query": fts_query, "limit": self.fts_limit},
        )
        return [
            CandidateSnippet(
                id=row["entity_id"],
                source_type=CODE_ENTITY_FTS,
                content=_preview(
                    row["summary"], row["ai_status"], row["highlight"], row["raw_content"]
                ),
                initial_score=self._rank_position_score(position),
                file_path=row["file_path"],
                entity_type=row["entity_type"],
                name=row["name"],
                language=row["language"],
                ai_status=row["ai_status"],
                timestamp=parse_timestamp(row["last_modified_at"]),
                metadata={"fts_rank_position": position},
            )
            for position, row in enumerate(result.rows)
        ]

    def search_document_fts(self, fts_query: str) -> list[CandidateSnippet]:
        """Full-text search over project document paths, content and summaries."""
        result = self.database.execute(
            """
            SELECT d.document_id, d.file_path, d.file_type, d.raw_content,
                   d.summary, d.ai_status, d.last_modified_at,
                   snippet(project_documents_fts, -1, '', '', '...', 32) AS highlight
            FROM project_documents_fts
            JOIN project_documents d ON d.document_id = project_documents_fts.document_id
            WHERE project_documents_fts MATCH :query
            ORDER BY rank
            LIMIT :limit
            """,
            {"query": fts_query, "limit": self.fts_limit},
        )
        return [
            CandidateSnippet(
                id=row["document_id"],
                source_type=PROJECT_DOCUMENT_FTS,
                content=_preview(
                    row["summary"], row["ai_status"], row["highlight"], row["raw_content"]
                ),
                initial_score=self._rank_position_score(position),
                file_path=row["file_path"],
                entity_type=row["file_type"],
                name=row["file_path"],
                ai_status=row["ai_status"],
                timestamp=parse_timestamp(row["last_modified_at"]),
                metadata={"fts_rank_position": position},
            )
            for position, row in enumerate(result.rows)
        ]

    @staticmethod
    def _rank_position_score(position: int) -> float:
        return max(0.0, 1.0 - math.log(position + 1) / 10)

    def search_keywords(
        self, terms: list[str], exclude: Optional[set[tuple[str, str]]] = None
    ) -> list[CandidateSnippet]:
        """
        Look up the explicit keyword index.

        Entities are ranked by how many distinct terms matched, then by the
        summed keyword weight. Hits resolve to code entities first, then to
        project documents; ids in ``exclude`` are skipped.
        """
        exclude = exclude or set()
        params: dict[str, Any] = {"limit": self.keyword_limit}
        placeholders = []
        for i, term in enumerate(terms):
            params[f"kw_{i}"] = term
            placeholders.append(f":kw_{i}")

        matches = self.database.execute(
            f"""
            SELECT entity_id, SUM(weight) AS total_weight, COUNT(*) AS match_count
            FROM entity_keywords
            WHERE keyword IN ({', '.join(placeholders)})
            GROUP BY entity_id
            ORDER BY match_count DESC, total_weight DESC
            LIMIT :limit
            """,
            params,
        ).rows
        if not matches:
            return []

        scores = {
            row["entity_id"]: (
                min((row["total_weight"] or 0) / 10, 1.0)
                + min((row["match_count"] or 0) / 5, 1.0)
            )
            / 2
            for row in matches
        }
        ordered_ids = [row["entity_id"] for row in matches]

        entities = self._load_code_entities(ordered_ids)
        documents = self._load_documents(
            [entity_id for entity_id in ordered_ids if entity_id not in entities]
        )

        candidates = []
        for entity_id in ordered_ids:
            if entity_id in entities:
                if ("code_entity", entity_id) in exclude:
                    continue
                row = entities[entity_id]
                candidates.append(
                    CandidateSnippet(
                        id=entity_id,
                        source_type=CODE_ENTITY_KEYWORD,
                        content=_entity_content(row),
                        initial_score=scores[entity_id],
                        file_path=row["file_path"],
                        entity_type=row["entity_type"],
                        name=row["name"],
                        language=row["language"],
                        ai_status=row["ai_status"],
                        timestamp=parse_timestamp(row["last_modified_at"]),
                    )
                )
            elif entity_id in documents:
                if ("project_document", entity_id) in exclude:
                    continue
                row = documents[entity_id]
                candidates.append(
                    CandidateSnippet(
                        id=entity_id,
                        source_type=PROJECT_DOCUMENT_KEYWORD,
                        content=_entity_content(row),
                        initial_score=scores[entity_id],
                        file_path=row["file_path"],
                        entity_type=row["file_type"],
                        name=row["file_path"],
                        ai_status=row["ai_status"],
                        timestamp=parse_timestamp(row["last_modified_at"]),
                    )
                )
        return candidates

    def expand_relationships(
        self,
        seeds: list[tuple[str, Optional[float]]],
        terms: list[str],
        relationship_types: Optional[list[str]] = None,
        exclude: Optional[set[tuple[str, str]]] = None,
    ) -> list[CandidateSnippet]:
        """
        Follow one hop of the relationship graph from seed entities.

        Args:
            seeds: (entity_id, score) pairs; a None score counts as unknown
            terms: Search terms, used to boost related entities mentioning them
            relationship_types: Kinds to follow (all when None or empty)
            exclude: (kind, id) keys already produced

        Returns:
            Related code entity candidates carrying relationship context
        """
        exclude = set(exclude or set())
        pending: list[tuple[str, Optional[float], Any, str, str]] = []

        for seed_id, seed_score in seeds:
            exclude.add(("code_entity", seed_id))
            for record in self.relationships.get_relationships_for_entity(
                seed_id, relationship_types
            ):
                other_id, direction = record.other_end(seed_id)
                if not other_id or ("code_entity", other_id) in exclude:
                    continue
                exclude.add(("code_entity", other_id))
                pending.append((other_id, seed_score, record, direction, seed_id))

        if not pending:
            return []

        entities = self._load_code_entities([item[0] for item in pending])
        candidates = []
        for other_id, seed_score, record, direction, seed_id in pending:
            row = entities.get(other_id)
            if row is None:
                continue
            base = seed_score * 0.7 if seed_score is not None else 0.5
            term_bonus = 0.2 * min(
                _match_ratio(f"{row['name'] or ''} {row['summary'] or ''}", terms), 1.0
            )
            candidates.append(
                CandidateSnippet(
                    id=other_id,
                    source_type=CODE_ENTITY_RELATED,
                    content=_entity_content(row),
                    initial_score=_clamp01(base + term_bonus),
                    file_path=row["file_path"],
                    entity_type=row["entity_type"],
                    name=row["name"],
                    language=row["language"],
                    ai_status=row["ai_status"],
                    timestamp=parse_timestamp(row["last_modified_at"]),
                    relationship_context=RelationshipContext(
                        related_to_seed_entity_id=seed_id,
                        relationship_type=record.relationship_type,
                        direction=direction,
                        metadata=record.metadata,
                    ),
                )
            )
        return candidates

    def search_messages(
        self, terms: list[str], conversation_id: Optional[str] = None
    ) -> list[CandidateSnippet]:
        """Search conversation history, active conversation first."""
        params: dict[str, Any] = {
            "conversation_id": conversation_id or "",
            "limit": self.message_limit,
        }
        where = _like_clause(["content"], terms, params, "msg_")
        result = self.database.execute(
            f"""
            SELECT message_id, conversation_id, role, content, timestamp, topic_id
            FROM conversation_history
            WHERE {where}
            ORDER BY CASE WHEN conversation_id = :conversation_id THEN 0 ELSE 1 END,
                     timestamp DESC
            LIMIT :limit
            """,
            params,
        )

        candidates = []
        for row in result.rows:
            in_active = bool(conversation_id) and row["conversation_id"] == conversation_id
            score = (
                (0.5 if in_active else 0.0)
                + _decay(row["timestamp"], 0.3, 7)
                + 0.2 * _match_ratio(row["content"], terms)
            )
            candidates.append(
                CandidateSnippet(
                    id=row["message_id"],
                    source_type=CONVERSATION_MESSAGE,
                    content=row["content"] or "",
                    initial_score=_clamp01(score),
                    entity_type="message",
                    timestamp=parse_timestamp(row["timestamp"]),
                    metadata={
                        "conversation_id": row["conversation_id"],
                        "role": row["role"],
                        "topic_id": row["topic_id"],
                    },
                )
            )
        return candidates

    def search_topics(self, terms: list[str]) -> list[CandidateSnippet]:
        """Search topic summaries and keyword lists."""
        params: dict[str, Any] = {"limit": self.topic_limit}
        where = _like_clause(["summary", "keywords"], terms, params, "topic_")
        result = self.database.execute(
            f"""
            SELECT topic_id, conversation_id, summary, keywords, purpose_tag,
                   start_timestamp, end_timestamp, created_at
            FROM conversation_topics
            WHERE {where}
            ORDER BY created_at DESC
            LIMIT :limit
            """,
            params,
        )

        candidates = []
        for row in result.rows:
            try:
                keywords = json.loads(row["keywords"]) if row["keywords"] else []
            except ValueError:
                keywords = []
            keyword_text = " ".join(str(k) for k in keywords) if isinstance(keywords, list) else ""
            score = 0.6 * _match_ratio(row["summary"], terms) + 0.4 * _match_ratio(
                keyword_text, terms
            )
            candidates.append(
                CandidateSnippet(
                    id=row["topic_id"],
                    source_type=CONVERSATION_TOPIC,
                    content=row["summary"] or "",
                    initial_score=_clamp01(score),
                    entity_type="topic",
                    timestamp=parse_timestamp(row["end_timestamp"] or row["created_at"]),
                    metadata={
                        "conversation_id": row["conversation_id"],
                        "purpose_tag": row["purpose_tag"],
                        "keywords": keywords if isinstance(keywords, list) else [],
                    },
                )
            )
        return candidates

    def search_commits(self, terms: list[str]) -> list[CandidateSnippet]:
        """Search commit messages, authors and hash prefixes."""
        params: dict[str, Any] = {"limit": self.commit_limit}
        where = _like_clause(["message", "author_name"], terms, params, "commit_")
        hash_clauses = []
        for i, term in enumerate(terms):
            if len(term) >= 7 and all(ch in "0123456789abcdef" for ch in term):
                params[f"hash_{i}"] = f"{term}%"
                hash_clauses.append(f"commit_hash LIKE :hash_{i}")
        if hash_clauses:
            where = f"({where} OR {' OR '.join(hash_clauses)})"

        result = self.database.execute(
            f"""
            SELECT commit_hash, author_name, author_email, commit_date, message
            FROM git_commits
            WHERE {where}
            ORDER BY commit_date DESC
            LIMIT :limit
            """,
            params,
        )

        candidates = []
        for row in result.rows:
            score = (
                0.5 * _match_ratio(row["message"], terms)
                + 0.2 * _match_ratio(row["author_name"], terms)
                + _decay(row["commit_date"], 0.3, 30)
            )
            commit_date = parse_timestamp(row["commit_date"])
            date_text = commit_date.strftime("%Y-%m-%d") if commit_date else "unknown date"
            candidates.append(
                CandidateSnippet(
                    id=row["commit_hash"],
                    source_type=GIT_COMMIT,
                    content=(
                        f"Commit {row['commit_hash'][:8]} by "
                        f"{row['author_name'] or 'unknown'} ({date_text}): "
                        f"{row['message'] or ''}"
                    ),
                    initial_score=_clamp01(score),
                    entity_type="commit",
                    timestamp=commit_date,
                    metadata={
                        "author_name": row["author_name"],
                        "author_email": row["author_email"],
                    },
                )
            )
        return candidates

    def search_commit_files(self, terms: list[str]) -> list[CandidateSnippet]:
        """Search changed file paths in commit history."""
        params: dict[str, Any] = {"limit": self.commit_file_limit}
        where = _like_clause(["f.file_path"], terms, params, "path_")
        result = self.database.execute(
            f"""
            SELECT f.commit_hash, f.file_path, f.status,
                   c.message, c.author_name, c.commit_date
            FROM git_commit_files f
            JOIN git_commits c ON c.commit_hash = f.commit_hash
            WHERE {where}
            ORDER BY c.commit_date DESC
            LIMIT :limit
            """,
            params,
        )

        status_bonus = {"modified": 0.05, "added": 0.05, "deleted": 0.02}
        candidates = []
        for row in result.rows:
            score = (
                0.6 * _match_ratio(row["file_path"], terms)
                + 0.3 * _match_ratio(row["message"], terms)
                + status_bonus.get((row["status"] or "").lower(), 0.0)
                + _decay(row["commit_date"], 0.2, 30)
            )
            candidates.append(
                CandidateSnippet(
                    id=f"{row['commit_hash']}:{row['file_path']}",
                    source_type=GIT_COMMIT_FILE_CHANGE,
                    content=(
                        f"{(row['status'] or 'modified').capitalize()} {row['file_path']} "
                        f"in commit {row['commit_hash'][:8]}: {row['message'] or ''}"
                    ),
                    initial_score=_clamp01(score),
                    file_path=row["file_path"],
                    entity_type="commit_file",
                    timestamp=parse_timestamp(row["commit_date"]),
                    metadata={
                        "commit_hash": row["commit_hash"],
                        "status": row["status"],
                        "author_name": row["author_name"],
                    },
                )
            )
        return candidates

    def _load_code_entities(self, entity_ids: list[str]) -> dict[str, dict[str, Any]]:
        return self._load_by_ids(
            "code_entities",
            "entity_id",
            "entity_id, file_path, entity_type, name, language, raw_content, "
            "summary, ai_status, last_modified_at",
            entity_ids,
        )

    def _load_documents(self, document_ids: list[str]) -> dict[str, dict[str, Any]]:
        return self._load_by_ids(
            "project_documents",
            "document_id",
            "document_id, file_path, file_type, raw_content, summary, ai_status, "
            "last_modified_at",
            document_ids,
        )

    def _load_by_ids(
        self, table: str, id_column: str, columns: str, ids: list[str]
    ) -> dict[str, dict[str, Any]]:
        if not ids:
            return {}
        params = {f"id_{i}": value for i, value in enumerate(ids)}
        placeholders = ", ".join(f":{name}" for name in params)
        result = self.database.execute(
            f"SELECT {columns} FROM {table} WHERE {id_column} IN ({placeholders})",
            params,
        )
        return {row[id_column]: row for row in result.rows}
