"""
Database connection management for codecontext.

A ``Database`` owns the SQLAlchemy engine and session factory for one
project's knowledge store. It is created once by the process root
(see ``codecontext.bootstrap``), passed to every component that needs the
store, and closed on shutdown.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Mapping, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from codecontext.db.schema import FTS_STATEMENTS
from codecontext.exceptions import StoreError
from codecontext.models.db import Base

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Rows and affected-row count of one parameterized statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    rows_affected: int = 0

    def first(self) -> Optional[dict[str, Any]]:
        return self.rows[0] if self.rows else None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Knowledge store handle.

    Wraps a SQLite engine; in-memory URLs share a single connection
    (StaticPool) so every session sees the same data.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.is_memory = url in ("sqlite://", "sqlite:///:memory:")

        engine_kwargs: dict[str, Any] = {
            "echo": echo,
            "connect_args": {"check_same_thread": False},
        }
        if self.is_memory:
            engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine: Engine = create_engine(url, **engine_kwargs)
        event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        self._closed = False

    def init_schema(self) -> None:
        """
        Create tables, full-text indexes and their sync triggers.

        Safe to call repeatedly; every statement is IF NOT EXISTS.
        """
        try:
            Base.metadata.create_all(bind=self.engine)
            with self.engine.begin() as conn:
                for statement in FTS_STATEMENTS:
                    conn.exec_driver_sql(statement)
        except SQLAlchemyError as e:
            raise StoreError(f"Schema initialization failed: {e}") from e
        logger.info(f"Knowledge store schema ready ({self.url})")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for ORM sessions with automatic cleanup.

        Commits on success, rolls back on exception.

        Example:
            >>> with database.session() as db:
            >>>     job = db.get(BackgroundJob, job_id)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def execute(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> QueryResult:
        """
        Run one parameterized statement in its own transaction.

        Args:
            sql: SQL text using ``:name`` placeholders
            params: Values for the placeholders

        Returns:
            QueryResult with rows as dicts (empty for non-SELECT statements)

        Raises:
            StoreError: If the statement fails
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), dict(params or {}))
                if result.returns_rows:
                    rows = [dict(row) for row in result.mappings()]
                    return QueryResult(rows=rows, rows_affected=len(rows))
                return QueryResult(rows=[], rows_affected=max(result.rowcount, 0))
        except SQLAlchemyError as e:
            logger.debug(f"Statement failed: {' '.join(sql.split())[:200]}")
            raise StoreError(str(e), sql=sql) from e

    def check_connection(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            self.execute("SELECT 1")
            return True
        except StoreError as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True
        logger.debug(f"Closed knowledge store ({self.url})")
