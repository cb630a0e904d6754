"""
Tests for knowledge store connection management.
"""

import pytest
from sqlalchemy import inspect

from codecontext.db.connection import Database, QueryResult
from codecontext.exceptions import StoreError
from codecontext.models.db import CodeEntity


class TestDatabase:
    """Tests for Database setup."""

    def test_memory_url_detection(self):
        assert Database("sqlite://").is_memory
        assert Database("sqlite:///:memory:").is_memory
        assert not Database("sqlite:///knowledge.db").is_memory

    def test_init_schema_creates_tables_and_indexes(self, database):
        tables = set(inspect(database.engine).get_table_names())

        assert {"code_entities", "background_ai_jobs", "conversation_topics"} <= tables
        assert "code_entities_fts" in tables
        assert "project_documents_fts" in tables

    def test_init_schema_is_repeatable(self, database):
        database.init_schema()

    def test_file_store_persists(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'store.db'}"
        first = Database(url)
        first.init_schema()
        first.execute(
            "INSERT INTO system_metadata (key, value, updated_at) "
            "VALUES (:key, :value, CURRENT_TIMESTAMP)",
            {"key": "schema", "value": "1"},
        )
        first.close()

        second = Database(url)
        row = second.execute("SELECT value FROM system_metadata WHERE key = 'schema'").first()
        second.close()

        assert row == {"value": "1"}

    def test_close_is_idempotent(self):
        db = Database("sqlite://")
        db.close()
        db.close()


class TestSession:
    """Tests for the session context manager."""

    def test_commits_on_success(self, database, factory):
        entity = factory.entity("fn", "def fn(): pass")

        with database.session() as session:
            session.get(CodeEntity, entity.entity_id).name = "renamed"

        with database.session() as session:
            assert session.get(CodeEntity, entity.entity_id).name == "renamed"

    def test_rolls_back_on_exception(self, database, factory):
        entity = factory.entity("fn", "def fn(): pass")

        with pytest.raises(RuntimeError):
            with database.session() as session:
                session.get(CodeEntity, entity.entity_id).name = "renamed"
                session.flush()
                raise RuntimeError("boom")

        with database.session() as session:
            assert session.get(CodeEntity, entity.entity_id).name == "fn"

    def test_objects_usable_after_session(self, factory):
        entity = factory.entity("fn", "def fn(): pass")

        assert entity.name == "fn"
        assert entity.entity_id


class TestExecute:
    """Tests for Database.execute."""

    def test_select_returns_dict_rows(self, database, factory):
        factory.entity("alpha", "a")
        factory.entity("beta", "b")

        result = database.execute(
            "SELECT name FROM code_entities WHERE name LIKE :pattern ORDER BY name",
            {"pattern": "%a%"},
        )

        assert isinstance(result, QueryResult)
        assert result.rows == [{"name": "alpha"}, {"name": "beta"}]
        assert result.rows_affected == 2

    def test_update_reports_affected_rows(self, database, factory):
        factory.entity("alpha", "a")
        factory.entity("beta", "b")

        result = database.execute(
            "UPDATE code_entities SET ai_status = :status", {"status": "completed"}
        )

        assert result.rows == []
        assert result.rows_affected == 2

    def test_first(self, database):
        assert database.execute("SELECT 1 AS one").first() == {"one": 1}
        assert database.execute("SELECT name FROM code_entities").first() is None

    def test_failure_raises_store_error(self, database):
        with pytest.raises(StoreError) as exc_info:
            database.execute("SELECT * FROM no_such_table")

        assert exc_info.value.sql == "SELECT * FROM no_such_table"

    def test_check_connection(self, database):
        assert database.check_connection() is True

    def test_check_connection_failure(self, tmp_path):
        db = Database(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'store.db'}")

        assert db.check_connection() is False
        db.close()


class TestFullTextSync:
    """The FTS tables follow inserts, updates and deletes."""

    def _fts_ids(self, database, term):
        return [
            r["entity_id"]
            for r in database.execute(
                "SELECT entity_id FROM code_entities_fts WHERE code_entities_fts MATCH :q",
                {"q": term},
            ).rows
        ]

    def test_insert_update_delete(self, database, factory):
        entity = factory.entity("parse_config", "def parse_config(path): ...")

        assert self._fts_ids(database, "parse") == [entity.entity_id]

        database.execute(
            "UPDATE code_entities SET summary = :s WHERE entity_id = :id",
            {"s": "Reads settings files", "id": entity.entity_id},
        )
        assert self._fts_ids(database, "settings") == [entity.entity_id]

        database.execute(
            "DELETE FROM code_entities WHERE entity_id = :id", {"id": entity.entity_id}
        )
        assert self._fts_ids(database, "parse") == []

    def test_keywords_follow_keyword_rows(self, database, factory):
        entity = factory.entity("load_cfg", "def load_cfg(path): ...")

        factory.keywords(entity.entity_id, ["configuration"])
        assert self._fts_ids(database, "configuration") == [entity.entity_id]

        database.execute(
            "DELETE FROM entity_keywords WHERE entity_id = :id", {"id": entity.entity_id}
        )
        assert self._fts_ids(database, "configuration") == []
        assert self._fts_ids(database, "load") == [entity.entity_id]
