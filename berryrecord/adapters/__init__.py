from __future__ import annotations

import logging
from typing import Any

from .base import BaseAdapter
from .sqlite import SQLiteAdapter
from .postgres import PostgresAdapter
from .mysql import MySQLAdapter
from .mssql import MSSQLAdapter

logger = logging.getLogger(__name__)


def get_adapter(dialect_name: str, dialect: Any = None) -> BaseAdapter:
    dn = (dialect_name or '').lower()
    if dn.startswith('postgres'):
        return PostgresAdapter(dialect)
    if dn.startswith('mssql') or 'pyodbc' in dn:
        return MSSQLAdapter(dialect)
    if dn.startswith('mysql') or dn.startswith('mariadb'):
        return MySQLAdapter(dialect)
    if dn.startswith('sqlite'):
        return SQLiteAdapter(dialect)
    logger.warning("Unsupported database dialect: %s. Falling back to the generic adapter.", dialect_name)
    return BaseAdapter(dialect)


__all__ = [
    'BaseAdapter',
    'SQLiteAdapter',
    'PostgresAdapter',
    'MySQLAdapter',
    'MSSQLAdapter',
    'get_adapter',
]
