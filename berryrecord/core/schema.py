from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

PrimaryKey = Union[str, List[str], None]


@dataclass
class ColumnSchema:
    """Column metadata as reported by a schema provider.

    Attributes:
        name: Column name in the table.
        python_type: Python type values of this column are coerced to, when known.
        allow_null: Whether NULL is accepted.
        default_value: Literal default declared in the schema (already typecast).
        is_primary_key: Set by the provider, or by metadata when the class declares the key.
        auto_increment: Value is generated by the database on insert.
    """

    name: str
    python_type: Optional[type] = None
    allow_null: bool = True
    default_value: Any = None
    is_primary_key: bool = False
    auto_increment: bool = False

    def typecast(self, value: Any) -> Any:
        if value is None:
            return None
        pt = self.python_type
        if value == '' and pt not in (str, None) and self.allow_null:
            return None
        if pt is None or isinstance(value, pt):
            return value
        if pt in (int, float, str):
            try:
                return pt(value)
            except (TypeError, ValueError):
                return value
        if pt is bool and isinstance(value, (int, str)):
            return str(value).strip().lower() in ('1', 'true', 't', 'yes', 'y')
        return value


@dataclass
class TableSchema:
    """Table metadata: columns keyed by name, primary key and sequence information."""

    name: str
    columns: Dict[str, ColumnSchema] = field(default_factory=dict)
    primary_key: PrimaryKey = None
    sequence_name: Optional[str] = None
    schema_name: Optional[str] = None

    @property
    def raw_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        return self.columns.get(name)

    def primary_key_names(self) -> List[str]:
        if self.primary_key is None:
            return []
        if isinstance(self.primary_key, str):
            return [self.primary_key]
        return list(self.primary_key)
