"""Knowledge store access."""

from codecontext.db.connection import Database, QueryResult

__all__ = ["Database", "QueryResult"]
