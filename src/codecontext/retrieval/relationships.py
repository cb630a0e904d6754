"""
Relationship graph lookups used for one-hop context expansion.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from codecontext.db.connection import Database
from codecontext.models.metadata import RelationshipMetadata, parse_relationship_metadata

logger = logging.getLogger(__name__)


@dataclass
class RelationshipRecord:
    """One stored edge touching an entity."""

    relationship_id: str
    source_entity_id: str
    target_entity_id: Optional[str]
    target_symbol_name: Optional[str]
    relationship_type: str
    weight: float
    metadata: Optional[RelationshipMetadata] = None

    def other_end(self, entity_id: str) -> tuple[Optional[str], str]:
        """
        The entity on the other side of the edge and the edge direction.

        Returns:
            (other entity id or None when unresolved, "outgoing" | "incoming")
        """
        if self.source_entity_id == entity_id:
            return self.target_entity_id, "outgoing"
        return self.source_entity_id, "incoming"


class RelationshipRepository:
    """Reads relationship edges through parameterized SQL."""

    def __init__(self, database: Database):
        self.database = database

    def get_relationships_for_entity(
        self,
        entity_id: str,
        relationship_types: Optional[list[str]] = None,
    ) -> list[RelationshipRecord]:
        """
        Get edges where the entity is source or target.

        Args:
            entity_id: Entity to expand from
            relationship_types: Only return these kinds (all kinds when None
                or empty)

        Returns:
            Edges ordered by relationship_type ascending, then weight descending

        Raises:
            StoreError: If the query fails
        """
        params: dict = {"entity_id": entity_id}
        type_clause = ""
        if relationship_types:
            placeholders = []
            for i, rel_type in enumerate(relationship_types):
                params[f"type_{i}"] = rel_type
                placeholders.append(f":type_{i}")
            type_clause = f"AND relationship_type IN ({', '.join(placeholders)})"

        result = self.database.execute(
            f"""
            SELECT relationship_id, source_entity_id, target_entity_id,
                   target_symbol_name, relationship_type, weight, custom_metadata
            FROM code_relationships
            WHERE (source_entity_id = :entity_id OR target_entity_id = :entity_id)
            {type_clause}
            ORDER BY relationship_type ASC, weight DESC
            """,
            params,
        )

        return [
            RelationshipRecord(
                relationship_id=row["relationship_id"],
                source_entity_id=row["source_entity_id"],
                target_entity_id=row["target_entity_id"],
                target_symbol_name=row["target_symbol_name"],
                relationship_type=row["relationship_type"],
                weight=row["weight"] if row["weight"] is not None else 1.0,
                metadata=parse_relationship_metadata(row["custom_metadata"]),
            )
            for row in result.rows
        ]
