from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy import inspect as sa_inspect

from ..core.schema import ColumnSchema, TableSchema

logger = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r'^[+-]?\d+(\.\d+)?$')


def python_type_of(sa_type: Any) -> Optional[type]:
    try:
        return sa_type.python_type
    except (NotImplementedError, AttributeError):
        return None


def parse_default(raw: Any, python_type: Optional[type]) -> Any:
    """Turn a reflected server default (SQL text) into a Python literal.

    Only literal defaults are kept; expressions such as ``CURRENT_TIMESTAMP``
    or sequence calls are left for the database to fill.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    while text.startswith('(') and text.endswith(')'):
        text = text[1:-1].strip()
    if text.upper() == 'NULL':
        return None
    if text[:1] in ("'", '"'):
        quote = text[0]
        end = text.rfind(quote)
        value: Any = text[1:end].replace(quote * 2, quote) if end > 0 else text[1:]
    elif _NUMBER_PATTERN.match(text):
        value = text
    else:
        return None
    if python_type in (int, float):
        try:
            return python_type(value)
        except ValueError:
            return value
    if python_type is bool:
        return str(value).lower() in ('1', 'true', 't')
    if python_type is None and isinstance(value, str) and _NUMBER_PATTERN.match(value) and text[:1] not in ("'", '"'):
        return float(value) if '.' in value else int(value)
    return value


class SqlSchemaProvider:
    """Schema provider reflecting tables through :func:`sqlalchemy.inspect`.

    Reflected tables are cached until :meth:`refresh` is called.
    """

    def __init__(self, engine: Any):
        self.engine = engine
        self._tables: Dict[str, TableSchema] = {}

    def get_table(self, name: str, refresh: bool = False) -> Optional[TableSchema]:
        if not refresh and name in self._tables:
            return self._tables[name]
        table = self._load_table(name)
        if table is not None:
            self._tables[name] = table
        return table

    def refresh(self) -> None:
        self._tables.clear()

    def _load_table(self, name: str) -> Optional[TableSchema]:
        schema_name: Optional[str] = None
        table_name = name
        if '.' in name:
            schema_name, table_name = name.split('.', 1)
        insp = sa_inspect(self.engine)
        if not insp.has_table(table_name, schema=schema_name):
            logger.debug("table %s not found", name)
            return None
        pk_names = list((insp.get_pk_constraint(table_name, schema=schema_name) or {}).get('constrained_columns') or [])
        table = TableSchema(name=table_name, schema_name=schema_name)
        for info in insp.get_columns(table_name, schema=schema_name):
            ptype = python_type_of(info.get('type'))
            col = ColumnSchema(
                name=info['name'],
                python_type=ptype,
                allow_null=bool(info.get('nullable', True)),
                default_value=parse_default(info.get('default'), ptype),
                is_primary_key=info['name'] in pk_names,
            )
            if len(pk_names) == 1 and col.is_primary_key and ptype is int and info.get('autoincrement', 'auto') is not False:
                col.auto_increment = True
                col.default_value = None
                table.sequence_name = table_name
            table.columns[col.name] = col
        if pk_names:
            table.primary_key = pk_names[0] if len(pk_names) == 1 else pk_names
        return table
