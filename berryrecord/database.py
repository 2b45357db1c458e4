"""Database entry point: owns the SQLAlchemy engine/connection and the collaborators records use."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Insert, create_engine, text

from .adapters import BaseAdapter, get_adapter
from .errors import ConfigurationError
from .sql.builders import CommandBuilder
from .sql.schema import SqlSchemaProvider

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = 'BERRYRECORD_DATABASE_URL'

_ACTIVE_DATABASE: Optional['Database'] = None


def _as_statement(statement: Any) -> Any:
    return text(statement) if isinstance(statement, str) else statement


class Database:
    """A database connection plus the schema provider, command builder and finder factory bound to it.

    One SQLAlchemy connection is opened lazily and reused; every statement is
    committed as soon as it has run.

    Args:
        engine: SQLAlchemy :class:`~sqlalchemy.engine.Engine`.
        schema: Optional schema provider override (defaults to reflection).
        adapter: Optional dialect adapter override.
    """

    def __init__(self, engine: Any, *, schema: Any = None, adapter: Optional[BaseAdapter] = None):
        self.engine = engine
        self._connection = None
        self.last_insert_id: Any = None
        self.dialect = engine.dialect
        logger.info("Detected database dialect: %s", self.dialect.name)
        self.adapter = adapter or get_adapter(self.dialect.name, self.dialect)
        self.schema = schema or SqlSchemaProvider(engine)
        self.command_builder = CommandBuilder(self)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> 'Database':
        return cls(create_engine(url, **engine_kwargs))

    @property
    def connection(self):
        if self._connection is None or self._connection.closed:
            self._connection = self.engine.connect()
        return self._connection

    def create_finder(self):
        from .sql.finder import ActiveFinder
        return ActiveFinder(self)

    def query(self, statement: Any, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a statement (SQLAlchemy executable or SQL text) and return its rows as dicts."""
        statement = _as_statement(statement)
        logger.debug("query: %s %r", statement, params)
        conn = self.connection
        result = conn.execute(statement, dict(params or {}))
        rows = [dict(r._mapping) for r in result]
        conn.commit()
        return rows

    def query_scalar(self, statement: Any, params: Optional[Mapping[str, Any]] = None) -> Any:
        rows = self.query(statement, params)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    def execute(self, statement: Any, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run a write statement and return the number of affected rows.

        After an :func:`~sqlalchemy.insert` the generated key is kept in
        :attr:`last_insert_id`.
        """
        statement = _as_statement(statement)
        logger.debug("execute: %s %r", statement, params)
        conn = self.connection
        result = conn.execute(statement, dict(params or {}))
        count = result.rowcount
        if isinstance(statement, Insert):
            key = result.inserted_primary_key
            self.last_insert_id = key[0] if key and key[0] is not None else result.lastrowid
        conn.commit()
        return count

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def set_active_database(db: Optional[Database]) -> None:
    global _ACTIVE_DATABASE
    _ACTIVE_DATABASE = db


def get_active_database() -> Database:
    """Return the process-wide database, creating it from the environment on first use."""
    global _ACTIVE_DATABASE
    if _ACTIVE_DATABASE is None:
        url = os.getenv(DATABASE_URL_ENV)
        if not url:
            raise ConfigurationError(
                f"Active record requires a database. Call set_active_database() or set {DATABASE_URL_ENV}."
            )
        _ACTIVE_DATABASE = Database.from_url(url)
    return _ACTIVE_DATABASE
