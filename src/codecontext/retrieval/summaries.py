"""
Project-level summaries used when a conversation starts.
"""

import json
import logging
from typing import Any, Optional

from codecontext.config import KEY_ARCHITECTURE_DOCUMENT_PATHS
from codecontext.db.connection import Database
from codecontext.models.db import AiStatus
from codecontext.retrieval.terms import count_term_matches, get_search_terms

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 500
GOAL_HINT_CHARS = 200
GOAL_DOCUMENTS = ("README.md", "docs/prd.md")


class ProjectSummaries:
    """Builds structure, architecture and recent-topic overviews."""

    def __init__(self, database: Database, recent_topic_limit: int = 5):
        self.database = database
        self.recent_topic_limit = recent_topic_limit

    def get_project_structure_summary(self) -> dict[str, Any]:
        """
        Counts of indexed entities, documents and relationships.

        Returns:
            Dict of breakdowns plus a one-line ``summary``; on error the
            breakdowns are empty and the summary says no data is available
        """
        try:
            languages = self._counts(
                "SELECT language AS key, COUNT(*) AS n FROM code_entities "
                "WHERE language IS NOT NULL GROUP BY language ORDER BY n DESC"
            )
            entity_types = self._counts(
                "SELECT entity_type AS key, COUNT(*) AS n FROM code_entities "
                "GROUP BY entity_type ORDER BY n DESC"
            )
            ai_statuses = self._counts(
                "SELECT ai_status AS key, COUNT(*) AS n FROM code_entities "
                "GROUP BY ai_status"
            )
            document_types = self._counts(
                "SELECT file_type AS key, COUNT(*) AS n FROM project_documents "
                "GROUP BY file_type ORDER BY n DESC"
            )
            relationship_types = self._counts(
                "SELECT relationship_type AS key, COUNT(*) AS n FROM code_relationships "
                "GROUP BY relationship_type ORDER BY n DESC"
            )
        except Exception as e:
            logger.warning(f"Failed to build project structure summary: {e}")
            return self._empty_structure()

        total_entities = sum(entity_types.values())
        total_documents = sum(document_types.values())
        total_relationships = sum(relationship_types.values())

        if not (total_entities or total_documents or total_relationships):
            return self._empty_structure()

        parts = [
            f"{total_entities} code entities",
            f"{total_documents} documents",
            f"{total_relationships} relationships",
        ]
        summary = "Project context summary: " + ", ".join(parts)
        if languages:
            summary += ", Primary languages: " + ", ".join(list(languages)[:3])

        return {
            "total_code_entities": total_entities,
            "total_documents": total_documents,
            "total_relationships": total_relationships,
            "languages": languages,
            "entity_types": entity_types,
            "ai_status": ai_statuses,
            "document_types": document_types,
            "relationship_types": relationship_types,
            "summary": summary,
        }

    def get_architecture_context_summary(self) -> dict[str, Any]:
        """
        Summaries (or excerpts) of the key architecture documents.

        Returns:
            {"documents": [{file_path, summary, is_excerpt}], "goal_hint": str | None}
        """
        try:
            params = {f"p_{i}": path for i, path in enumerate(KEY_ARCHITECTURE_DOCUMENT_PATHS)}
            placeholders = ", ".join(f":{name}" for name in params)
            rows = self.database.execute(
                f"""
                SELECT file_path, raw_content, summary, ai_status
                FROM project_documents
                WHERE file_path IN ({placeholders})
                """,
                params,
            ).rows
        except Exception as e:
            logger.warning(f"Failed to load architecture documents: {e}")
            return {"documents": [], "goal_hint": None}

        by_path = {row["file_path"]: row for row in rows}
        documents = []
        for path in KEY_ARCHITECTURE_DOCUMENT_PATHS:
            row = by_path.get(path)
            if row is None:
                continue
            if row["summary"] and row["ai_status"] == AiStatus.COMPLETED.value:
                documents.append(
                    {"file_path": path, "summary": row["summary"], "is_excerpt": False}
                )
            elif row["raw_content"]:
                documents.append(
                    {
                        "file_path": path,
                        "summary": _excerpt(row["raw_content"], EXCERPT_CHARS),
                        "is_excerpt": True,
                    }
                )

        return {"documents": documents, "goal_hint": self._goal_hint(by_path)}

    @staticmethod
    def _goal_hint(by_path: dict[str, dict[str, Any]]) -> Optional[str]:
        for path in GOAL_DOCUMENTS:
            row = by_path.get(path)
            if row is None:
                continue
            text = row["summary"] or row["raw_content"] or ""
            for line in text.splitlines():
                line = line.strip().lstrip("#").strip()
                if line:
                    return _excerpt(line, GOAL_HINT_CHARS)
        return None

    def get_recent_topics_summary(
        self, initial_query: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """
        The most recent topics, reordered by relevance to the query.

        Returns:
            Up to ``recent_topic_limit`` topics (empty list on error)
        """
        try:
            rows = self.database.execute(
                """
                SELECT topic_id, conversation_id, summary, keywords, purpose_tag,
                       created_at
                FROM conversation_topics
                ORDER BY created_at DESC
                LIMIT :limit
                """,
                {"limit": self.recent_topic_limit},
            ).rows
        except Exception as e:
            logger.warning(f"Failed to load recent topics: {e}")
            return []

        topics = []
        for row in rows:
            try:
                keywords = json.loads(row["keywords"]) if row["keywords"] else []
            except ValueError:
                keywords = []
            topics.append(
                {
                    "topic_id": row["topic_id"],
                    "conversation_id": row["conversation_id"],
                    "summary": row["summary"],
                    "keywords": keywords if isinstance(keywords, list) else [],
                    "purpose_tag": row["purpose_tag"],
                }
            )

        terms = get_search_terms(initial_query) if initial_query else []
        if terms:
            # Stable sort keeps recency order among equally relevant topics
            topics.sort(
                key=lambda t: count_term_matches(
                    f"{t['summary']} {' '.join(map(str, t['keywords']))}", terms
                ),
                reverse=True,
            )
        return topics

    def _counts(self, sql: str) -> dict[str, int]:
        return {
            str(row["key"]): int(row["n"]) for row in self.database.execute(sql).rows
        }

    @staticmethod
    def _empty_structure() -> dict[str, Any]:
        return {
            "total_code_entities": 0,
            "total_documents": 0,
            "total_relationships": 0,
            "languages": {},
            "entity_types": {},
            "ai_status": {},
            "document_types": {},
            "relationship_types": {},
            "summary": "Project context summary: No data available or project not yet analyzed.",
        }


def _excerpt(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."
