"""
Full-text search schema.

SQLite FTS5 tables mirror the searchable columns of ``code_entities`` and
``project_documents`` plus their ``entity_keywords``; triggers keep them in
sync so ingestion and enrichment only ever write the base tables.
"""

# Space separated keywords of one entity or document
_KEYWORDS_OF = (
    "(SELECT group_concat(keyword, ' ') FROM entity_keywords WHERE entity_id = {id})"
)


def _reindex_code_entity(entity_id: str) -> str:
    return f"""
        DELETE FROM code_entities_fts WHERE entity_id = {entity_id};
        INSERT INTO code_entities_fts (entity_id, name, content, summary, keywords)
        SELECT entity_id, name, raw_content, summary, {_KEYWORDS_OF.format(id=entity_id)}
        FROM code_entities WHERE entity_id = {entity_id};
    """


def _reindex_document(document_id: str) -> str:
    return f"""
        DELETE FROM project_documents_fts WHERE document_id = {document_id};
        INSERT INTO project_documents_fts (document_id, file_path, content, summary, keywords)
        SELECT document_id, file_path, raw_content, summary, {_KEYWORDS_OF.format(id=document_id)}
        FROM project_documents WHERE document_id = {document_id};
    """


FTS_STATEMENTS = [
    # Code entities
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS code_entities_fts USING fts5(
        entity_id UNINDEXED,
        name,
        content,
        summary,
        keywords,
        tokenize = 'porter unicode61'
    )
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS code_entities_fts_insert
    AFTER INSERT ON code_entities BEGIN
        {_reindex_code_entity("new.entity_id")}
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS code_entities_fts_delete
    AFTER DELETE ON code_entities BEGIN
        DELETE FROM code_entities_fts WHERE entity_id = old.entity_id;
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS code_entities_fts_update
    AFTER UPDATE ON code_entities BEGIN
        DELETE FROM code_entities_fts WHERE entity_id = old.entity_id;
        {_reindex_code_entity("new.entity_id")}
    END
    """,
    # Project documents
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS project_documents_fts USING fts5(
        document_id UNINDEXED,
        file_path,
        content,
        summary,
        keywords,
        tokenize = 'porter unicode61'
    )
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS project_documents_fts_insert
    AFTER INSERT ON project_documents BEGIN
        {_reindex_document("new.document_id")}
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS project_documents_fts_delete
    AFTER DELETE ON project_documents BEGIN
        DELETE FROM project_documents_fts WHERE document_id = old.document_id;
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS project_documents_fts_update
    AFTER UPDATE ON project_documents BEGIN
        DELETE FROM project_documents_fts WHERE document_id = old.document_id;
        {_reindex_document("new.document_id")}
    END
    """,
    # Keywords belong to either an entity or a document
    f"""
    CREATE TRIGGER IF NOT EXISTS entity_keywords_fts_insert
    AFTER INSERT ON entity_keywords BEGIN
        {_reindex_code_entity("new.entity_id")}
        {_reindex_document("new.entity_id")}
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS entity_keywords_fts_delete
    AFTER DELETE ON entity_keywords BEGIN
        {_reindex_code_entity("old.entity_id")}
        {_reindex_document("old.entity_id")}
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS entity_keywords_fts_update
    AFTER UPDATE OF entity_id, keyword ON entity_keywords BEGIN
        {_reindex_code_entity("old.entity_id")}
        {_reindex_document("old.entity_id")}
        {_reindex_code_entity("new.entity_id")}
        {_reindex_document("new.entity_id")}
    END
    """,
]
