"""SQL command construction for active records.

Statements are SQLAlchemy Core constructs: :func:`~sqlalchemy.select`,
:func:`~sqlalchemy.insert`, :func:`~sqlalchemy.update` and
:func:`~sqlalchemy.delete`, with criteria fragments embedded as
:func:`~sqlalchemy.text`. The dialect's compiler renders them, including
LIMIT/OFFSET and generated key retrieval.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    bindparam,
    delete,
    func,
    insert,
    literal_column,
    select,
    table as sa_table,
    text as _text,
    update,
)
from sqlalchemy.types import NullType

from ..core.criteria import Criteria, and_wrap
from ..core.schema import TableSchema
from ..errors import SchemaMismatchError, StateError

DEFAULT_ALIAS = 't'

_SQL_TYPES = {int: Integer, float: Float, str: String, bool: Boolean}

_ALIASED_PATTERN = re.compile(r'^(.*?)\s+AS\s+["`\[]?(\w+)["`\]]?$', re.I | re.S)
_QUALIFIED_PATTERN = re.compile(r'^(?:["`\[]?\w+["`\]]?\.)+["`\[]?(\w+)["`\]]?$')


def split_select(select: str) -> List[str]:
    """Split a select list on top level commas."""
    items: List[str] = []
    depth = 0
    quote = ''
    start = 0
    for i, ch in enumerate(select):
        if quote:
            if ch == quote:
                quote = ''
        elif ch in '\'"`':
            quote = ch
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
        elif ch == ',' and depth == 0:
            items.append(select[start:i].strip())
            start = i + 1
    items.append(select[start:].strip())
    return [item for item in items if item]


def select_column(item: str):
    """Column expression for one select item, labelled so rows are keyed by the plain column name."""
    m = _ALIASED_PATTERN.match(item)
    if m:
        return literal_column(m.group(1)).label(m.group(2))
    m = _QUALIFIED_PATTERN.match(item)
    if m:
        return literal_column(item).label(m.group(1))
    return literal_column(item)


def normalize_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Strip the optional leading colon from parameter names."""
    return {str(k).lstrip(':'): v for k, v in (params or {}).items()}


class Command:
    """A statement bound to its parameters, executed lazily.

    ``statement`` is a SQLAlchemy executable or SQL text with ``:name``
    placeholders. Parameters the statement does not bind are dropped.
    """

    def __init__(self, db: Any, statement: Any, params: Optional[Mapping[str, Any]] = None):
        self.db = db
        self.statement = _text(statement) if isinstance(statement, str) else statement
        params = normalize_params(params)
        compiled = self.statement.compile(dialect=db.dialect, column_keys=list(params))
        self.sql = str(compiled)
        self.params = {k: v for k, v in params.items() if k in compiled.binds}

    def execute(self) -> int:
        """Run a write statement and return the number of affected rows."""
        return self.db.execute(self.statement, self.params)

    def query_all(self) -> List[Dict[str, Any]]:
        return self.db.query(self.statement, self.params)

    def query_row(self) -> Optional[Dict[str, Any]]:
        rows = self.db.query(self.statement, self.params)
        return rows[0] if rows else None

    def query_scalar(self) -> Any:
        row = self.query_row()
        if not row:
            return None
        return next(iter(row.values()))

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Command({self.sql!r}, {self.params!r})"


class CommandBuilder:
    """Builds find/count/insert/update/delete commands and key criteria for a table."""

    def __init__(self, db: Any):
        self.db = db

    @property
    def adapter(self):
        return self.db.adapter

    def quote_table(self, table: TableSchema) -> str:
        return self.adapter.quote_table_name(table.raw_name)

    def quote_column(self, name: str) -> str:
        return self.adapter.quote_column_name(name)

    def sql_table(self, table: TableSchema) -> Table:
        """A SQLAlchemy :class:`~sqlalchemy.Table` mirroring ``table``, for write statements."""
        columns = [
            Column(
                col.name,
                _SQL_TYPES.get(col.python_type, NullType)(),
                primary_key=col.is_primary_key,
                autoincrement=col.auto_increment,
            )
            for col in table.columns.values()
        ]
        return Table(table.name, MetaData(), *columns, schema=table.schema_name)

    # ----- read commands -----
    def _columns(self, criteria: Criteria, alias: str) -> list:
        select_ = criteria.select
        if isinstance(select_, (list, tuple)):
            items = [str(s).strip() for s in select_]
        else:
            items = split_select(select_ or '*')
        if items == ['*'] and criteria.join:
            items = [f"{self.adapter.quote_simple_name(alias)}.*"]
        return [select_column(item) for item in items]

    def _from(self, table: TableSchema, criteria: Criteria, alias: str) -> Any:
        if criteria.join:
            return _text(f"{self.quote_table(table)} {self.adapter.quote_simple_name(alias)} {criteria.join}")
        return sa_table(table.name, schema=table.schema_name).alias(alias)

    def _query(self, table: TableSchema, criteria: Criteria, alias: str):
        stmt = select(*self._columns(criteria, alias)).select_from(self._from(table, criteria, alias))
        if criteria.distinct:
            stmt = stmt.distinct()
        if criteria.condition:
            stmt = stmt.where(_text(criteria.condition))
        if criteria.group:
            stmt = stmt.group_by(_text(criteria.group))
        if criteria.having:
            stmt = stmt.having(_text(criteria.having))
        return stmt

    def create_find_command(self, table: TableSchema, criteria: Criteria, alias: Optional[str] = None) -> Command:
        stmt = self._query(table, criteria, criteria.alias or alias or DEFAULT_ALIAS)
        if criteria.order:
            stmt = stmt.order_by(_text(criteria.order))
        if criteria.limit is not None and criteria.limit >= 0:
            stmt = stmt.limit(criteria.limit)
        if criteria.offset is not None and criteria.offset > 0:
            stmt = stmt.offset(criteria.offset)
        return Command(self.db, stmt, criteria.params)

    def create_count_command(self, table: TableSchema, criteria: Criteria, alias: Optional[str] = None) -> Command:
        alias = criteria.alias or alias or DEFAULT_ALIAS
        if criteria.group or criteria.having or criteria.distinct:
            sub = self._query(table, criteria, alias).subquery('sq')
            return Command(self.db, select(func.count()).select_from(sub), criteria.params)
        stmt = select(func.count()).select_from(self._from(table, criteria, alias))
        if criteria.condition:
            stmt = stmt.where(_text(criteria.condition))
        return Command(self.db, stmt, criteria.params)

    def create_sql_command(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Command:
        return Command(self.db, sql, params)

    # ----- write commands -----
    def create_insert_command(self, table: TableSchema, data: Mapping[str, Any]) -> Command:
        target = self.sql_table(table)
        values: Dict[Any, Any] = {}
        params: Dict[str, Any] = {}
        for i, (name, value) in enumerate(data.items()):
            column = table.get_column(name)
            if column is None:
                continue
            if value is None and column.auto_increment:
                continue
            pname = f"bi{i}"
            values[target.c[name]] = bindparam(pname)
            params[pname] = column.typecast(value)
        stmt = insert(target)
        if values:
            stmt = stmt.values(values)
        return Command(self.db, stmt, params)

    def create_update_command(self, table: TableSchema, data: Mapping[str, Any], criteria: Criteria) -> Command:
        target = self.sql_table(table)
        values: Dict[Any, Any] = {}
        params: Dict[str, Any] = {}
        for i, (name, value) in enumerate(data.items()):
            column = table.get_column(name)
            if column is None:
                continue
            pname = f"bu{i}"
            values[target.c[name]] = bindparam(pname)
            params[pname] = column.typecast(value)
        if not values:
            raise StateError(f"No columns are being updated for table {table.name!r}.")
        stmt = update(target).values(values)
        if criteria.condition:
            stmt = stmt.where(_text(criteria.condition))
        params.update(normalize_params(criteria.params))
        return Command(self.db, stmt, params)

    def create_update_counter_command(self, table: TableSchema, counters: Mapping[str, Any], criteria: Criteria) -> Command:
        target = self.sql_table(table)
        values: Dict[Any, Any] = {}
        params: Dict[str, Any] = {}
        for i, (name, value) in enumerate(counters.items()):
            if table.get_column(name) is None:
                raise SchemaMismatchError(f"Table {table.name!r} has no column {name!r}")
            pname = f"bc{i}"
            values[target.c[name]] = target.c[name] + bindparam(pname)
            params[pname] = value
        if not values:
            raise StateError(f"No counter columns are being updated for table {table.name!r}.")
        stmt = update(target).values(values)
        if criteria.condition:
            stmt = stmt.where(_text(criteria.condition))
        params.update(normalize_params(criteria.params))
        return Command(self.db, stmt, params)

    def create_delete_command(self, table: TableSchema, criteria: Criteria) -> Command:
        stmt = delete(sa_table(table.name, schema=table.schema_name))
        if criteria.condition:
            stmt = stmt.where(_text(criteria.condition))
        return Command(self.db, stmt, criteria.params)

    def get_last_insert_id(self, table: TableSchema) -> Any:
        """Key generated by the most recent insert on this connection."""
        return self.db.last_insert_id

    # ----- criteria -----
    def create_criteria(self, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> Criteria:
        """Criteria from a condition string, a mapping or an existing criteria (copied)."""
        if isinstance(condition, Criteria):
            return condition.copy()
        if isinstance(condition, Mapping):
            return Criteria.coerce(condition).copy()
        return Criteria(condition=condition or '', params=dict(params or {}))

    def create_pk_criteria(self, table: TableSchema, pk: Any, condition: Any = '',
                           params: Optional[Mapping[str, Any]] = None, prefix: Optional[str] = None) -> Criteria:
        criteria = self.create_criteria(condition, params)
        keys = table.primary_key_names()
        if not keys:
            raise SchemaMismatchError(f"Table {table.name!r} does not have a primary key.")
        key_crit = Criteria()
        if len(keys) == 1:
            values = list(pk) if isinstance(pk, (list, tuple, set)) else [pk]
            key_crit.add_in_condition(self._qualify(keys[0], prefix), values)
        else:
            rows = [pk] if isinstance(pk, Mapping) else list(pk or [])
            parts = []
            for row in rows:
                missing = [k for k in keys if k not in row]
                if missing:
                    raise StateError(f"Composite key value for table {table.name!r} is missing {', '.join(missing)}")
                part = Criteria()
                part.add_column_condition({self._qualify(k, prefix): row[k] for k in keys})
                parts.append(part)
                key_crit.params.update(part.params)
            key_crit.add_condition([p.condition for p in parts] or ['0=1'], 'OR')
        criteria.condition = and_wrap(key_crit.condition, criteria.condition)
        criteria.params = {**key_crit.params, **criteria.params}
        return criteria

    def create_column_criteria(self, table: TableSchema, columns: Mapping[str, Any], condition: Any = '',
                               params: Optional[Mapping[str, Any]] = None, prefix: Optional[str] = None) -> Criteria:
        criteria = self.create_criteria(condition, params)
        col_crit = Criteria()
        for name, value in columns.items():
            column = table.get_column(name)
            if column is None:
                raise SchemaMismatchError(f"Table {table.name!r} does not have a column named {name!r}.")
            qualified = self._qualify(name, prefix)
            if isinstance(value, (list, tuple, set)):
                col_crit.add_in_condition(qualified, [column.typecast(v) for v in value])
            else:
                col_crit.add_column_condition({qualified: column.typecast(value)})
        criteria.condition = and_wrap(col_crit.condition, criteria.condition)
        criteria.params = {**col_crit.params, **criteria.params}
        return criteria

    def _qualify(self, column: str, prefix: Optional[str]) -> str:
        quoted = self.quote_column(column)
        return f"{prefix}{quoted}" if prefix else quoted
