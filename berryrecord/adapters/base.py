from __future__ import annotations
from typing import Any


class BaseAdapter:
    """Identifier quoting for SQL fragments the command builder and finder assemble as text.

    When built with a SQLAlchemy dialect, identifiers are quoted with the
    dialect's identifier preparer; otherwise ANSI double quotes are used.
    Statement structure (LIMIT/OFFSET, generated keys) is left to the
    dialect's compiler.
    """

    name = 'base'

    def __init__(self, dialect: Any = None):
        self.dialect = dialect

    def quote_simple_name(self, name: str) -> str:
        preparer = getattr(self.dialect, 'identifier_preparer', None)
        if preparer is not None:
            return preparer.quote_identifier(name)
        return '"' + str(name).replace('"', '""') + '"'

    # Quotes each dot separated part: "schema"."table"
    def quote_table_name(self, name: str) -> str:
        if self._is_quoted(name):
            return name
        return '.'.join(self.quote_simple_name(p) for p in str(name).split('.'))

    def quote_column_name(self, name: str) -> str:
        name = str(name)
        if '.' in name:
            prefix, _, col = name.rpartition('.')
            return self.quote_table_name(prefix) + '.' + self.quote_column_name(col)
        if name == '*' or self._is_quoted(name) or '(' in name:
            return name
        return self.quote_simple_name(name)

    def _is_quoted(self, name: str) -> bool:
        return len(name) > 1 and name[0] in '"`[' and name[-1] in '"`]'
