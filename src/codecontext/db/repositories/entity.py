"""
Code entity, document, relationship and keyword repositories.
"""

from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from codecontext.db.repositories.base import BaseRepository
from codecontext.exceptions import ValidationError
from codecontext.models.db import (
    CodeEntity,
    CodeRelationship,
    EntityKeyword,
    ProjectDocument,
)
from codecontext.models.metadata import RelationshipMetadata, dump_metadata


class CodeEntityRepository(BaseRepository[CodeEntity]):
    """Repository for CodeEntity model."""

    def __init__(self, session: Session):
        super().__init__(CodeEntity, session)

    def create(self, **kwargs) -> CodeEntity:
        """
        Create a code entity.

        Raises:
            ValidationError: If ``parent_entity_id`` points at a missing entity
                or at an entity in a different file
        """
        parent_id = kwargs.get("parent_entity_id")
        if parent_id:
            parent = self.get(parent_id)
            if parent is None:
                raise ValidationError(
                    f"Parent entity {parent_id} does not exist", code="INVALID_PARENT"
                )
            if parent.file_path != kwargs.get("file_path"):
                raise ValidationError(
                    f"Parent entity {parent_id} is in {parent.file_path}, "
                    f"not {kwargs.get('file_path')}",
                    code="INVALID_PARENT",
                )
        return super().create(**kwargs)

    def get_by_file(self, file_path: str) -> List[CodeEntity]:
        """All entities of one file in source order."""
        return (
            self.session.query(CodeEntity)
            .filter(CodeEntity.file_path == file_path)
            .order_by(CodeEntity.start_line)
            .all()
        )

    def get_by_ids(self, entity_ids: Iterable[str]) -> List[CodeEntity]:
        ids = list(entity_ids)
        if not ids:
            return []
        return self.session.query(CodeEntity).filter(CodeEntity.entity_id.in_(ids)).all()


class ProjectDocumentRepository(BaseRepository[ProjectDocument]):
    """Repository for ProjectDocument model."""

    def __init__(self, session: Session):
        super().__init__(ProjectDocument, session)

    def get_by_path(self, file_path: str) -> Optional[ProjectDocument]:
        return (
            self.session.query(ProjectDocument)
            .filter(ProjectDocument.file_path == file_path)
            .first()
        )


class RelationshipWriteRepository(BaseRepository[CodeRelationship]):
    """Writes relationship edges with typed metadata."""

    def __init__(self, session: Session):
        super().__init__(CodeRelationship, session)

    def add(
        self,
        source_entity_id: str,
        relationship_type: str,
        target_entity_id: Optional[str] = None,
        target_symbol_name: Optional[str] = None,
        weight: float = 1.0,
        metadata: Optional[RelationshipMetadata] = None,
    ) -> CodeRelationship:
        """
        Add one edge.

        Raises:
            ValidationError: If neither a target entity nor a symbol is given
        """
        if not target_entity_id and not target_symbol_name:
            raise ValidationError(
                "Relationship needs target_entity_id or target_symbol_name"
            )
        return self.create(
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            target_symbol_name=target_symbol_name,
            relationship_type=relationship_type,
            weight=weight,
            custom_metadata=dump_metadata(metadata),
        )


class KeywordRepository(BaseRepository[EntityKeyword]):
    """Repository for the explicit keyword index."""

    def __init__(self, session: Session):
        super().__init__(EntityKeyword, session)

    def upsert_keywords(
        self,
        entity_id: str,
        keywords: Iterable[str],
        keyword_type: str,
        weight: float = 1.0,
    ) -> int:
        """
        Insert keywords for an entity, updating the weight of existing ones.

        Returns:
            Number of keywords written
        """
        existing = {
            row.keyword: row
            for row in self.session.query(EntityKeyword).filter(
                EntityKeyword.entity_id == entity_id,
                EntityKeyword.keyword_type == keyword_type,
            )
        }
        written = 0
        for keyword in keywords:
            if not keyword:
                continue
            row = existing.get(keyword)
            if row is not None:
                row.weight = weight
            else:
                row = EntityKeyword(
                    entity_id=entity_id,
                    keyword=keyword,
                    keyword_type=keyword_type,
                    weight=weight,
                )
                self.session.add(row)
                existing[keyword] = row
            written += 1
        self.session.flush()
        return written

    def get_for_entity(self, entity_id: str) -> List[EntityKeyword]:
        return (
            self.session.query(EntityKeyword)
            .filter(EntityKeyword.entity_id == entity_id)
            .order_by(EntityKeyword.keyword)
            .all()
        )
