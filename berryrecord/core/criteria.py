from __future__ import annotations

import copy
import itertools
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..errors import StateError
from .naming import split_names

__all__ = ['Criteria', 'PARAM_PREFIX', 'merge_select', 'and_wrap', 'scope_items', 'with_items']

# Placeholders generated by the condition helpers are ``:brp0``, ``:brp1`` ...
PARAM_PREFIX = 'brp'
_param_counter = itertools.count()

_OPERATORS = ('AND', 'OR')
_COMPARE_PATTERN = re.compile(r'^(?:\s*(<>|<=|>=|<|>|=))?(.*)$', re.S)

# Mapping keys accepted as aliases of dataclass field names.
_KEY_ALIASES = {'with': 'with_'}


def _next_param() -> str:
    return f"{PARAM_PREFIX}{next(_param_counter)}"


def _check_operator(operator: str) -> str:
    op = str(operator).strip().upper()
    if op not in _OPERATORS:
        raise StateError(f"Invalid criteria operator {operator!r}; expected AND or OR")
    return op


def and_wrap(base: str, incoming: str, operator: str = 'AND') -> str:
    """Combine two SQL fragments as ``(base) OP (incoming)``; empty sides are identities."""
    if base == incoming and base:
        return base
    if not base:
        return incoming or ''
    if not incoming:
        return base
    return f"({base}) {operator} ({incoming})"


def merge_select(base: Union[str, List[str]], incoming: Union[str, List[str], None]) -> Union[str, List[str]]:
    """Merge two select lists: wildcard base takes incoming; otherwise new items are appended."""
    if incoming is None or base == incoming:
        return base
    if base == '*':
        return incoming
    if incoming == '*':
        return base
    first = split_names(base)
    second = split_names(incoming)
    return first + [c for c in second if c not in first]


def scope_items(scopes: Any) -> List[Tuple[Optional[str], Any]]:
    """Normalize a scopes reference into ``(key, value)`` pairs; key is None for positional entries."""
    if not scopes:
        return []
    if isinstance(scopes, str):
        return [(None, scopes)]
    if isinstance(scopes, Mapping):
        return [(str(k), v) for k, v in scopes.items()]
    return [(None, s) for s in scopes]


def with_items(with_: Any) -> Dict[str, Dict[str, Any]]:
    """Normalize an eager-loading spec to ``{relation_path: options}`` preserving order."""
    out: Dict[str, Dict[str, Any]] = {}
    if not with_:
        return out
    if isinstance(with_, str):
        for name in split_names(with_):
            out.setdefault(name, {})
        return out
    if isinstance(with_, Mapping):
        for k, v in with_.items():
            out[str(k)] = dict(v or {}) if not isinstance(v, Criteria) else v.to_dict()
        return out
    for item in with_:
        if isinstance(item, str):
            out.setdefault(item, {})
        elif isinstance(item, Mapping):
            out.update(with_items(item))
        else:
            raise StateError(f"Unsupported eager-loading entry: {item!r}")
    return out


@dataclass
class Criteria:
    """Declarative, mergeable query fragment.

    Attributes mirror the clauses of a SELECT statement. ``with_`` names the
    relations to eager load; ``scopes`` names scopes applied when the criteria
    is executed through a record class. Generated parameter placeholders are
    unique per process so independently built criteria can be merged.
    """

    select: Union[str, List[str]] = '*'
    distinct: bool = False
    condition: str = ''
    params: Dict[str, Any] = field(default_factory=dict)
    limit: int = -1
    offset: int = -1
    order: str = ''
    group: str = ''
    join: str = ''
    having: str = ''
    with_: Any = None
    alias: Optional[str] = None
    together: Optional[bool] = None
    index: Optional[str] = None
    scopes: Any = None

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def coerce(cls, value: Any) -> 'Criteria':
        """Return ``value`` as a Criteria; mappings are converted, Criteria pass through."""
        if value is None:
            return cls()
        if isinstance(value, Criteria):
            return value
        if isinstance(value, Mapping):
            known = cls.field_names()
            data: Dict[str, Any] = {}
            for k, v in value.items():
                key = _KEY_ALIASES.get(k, k)
                if key not in known:
                    raise StateError(f"Unknown criteria option {k!r}")
                data[key] = v
            if 'params' in data:
                data['params'] = dict(data['params'] or {})
            return cls(**data)
        raise StateError(f"Cannot build criteria from {type(value).__name__}")

    def copy(self) -> 'Criteria':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for name in self.field_names():
            out['with' if name == 'with_' else name] = getattr(self, name)
        return out

    # ----- condition helpers -----
    def add_condition(self, condition: Union[str, Iterable[str]], operator: str = 'AND') -> 'Criteria':
        """Append a condition; a list of conditions is joined with ``operator`` first."""
        op = _check_operator(operator)
        if not isinstance(condition, str):
            parts = [str(c) for c in condition]
            if not parts:
                return self
            condition = '(' + f') {op} ('.join(parts) + ')'
        if self.condition == '':
            self.condition = condition
        else:
            self.condition = f"({self.condition}) {op} ({condition})"
        return self

    def add_search_condition(self, column: str, keyword: Any, escape: bool = True, operator: str = 'AND', like: str = 'LIKE') -> 'Criteria':
        if keyword is None or keyword == '':
            return self
        keyword = str(keyword)
        if escape:
            keyword = '%' + keyword.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_') + '%'
        name = _next_param()
        self.params[name] = keyword
        return self.add_condition(f"{column} {like} :{name}", operator)

    def add_in_condition(self, column: str, values: Iterable[Any], operator: str = 'AND') -> 'Criteria':
        values = list(values)
        if not values:
            # 0=1 keeps the statement valid on every dialect
            return self.add_condition('0=1', operator)
        if len(values) == 1:
            value = values[0]
            if value is None:
                return self.add_condition(f"{column} IS NULL", operator)
            name = _next_param()
            self.params[name] = value
            return self.add_condition(f"{column}=:{name}", operator)
        names = []
        for value in values:
            name = _next_param()
            self.params[name] = value
            names.append(f":{name}")
        return self.add_condition(f"{column} IN ({', '.join(names)})", operator)

    def add_not_in_condition(self, column: str, values: Iterable[Any], operator: str = 'AND') -> 'Criteria':
        values = list(values)
        if not values:
            return self
        if len(values) == 1:
            value = values[0]
            if value is None:
                return self.add_condition(f"{column} IS NOT NULL", operator)
            name = _next_param()
            self.params[name] = value
            return self.add_condition(f"{column}!=:{name}", operator)
        names = []
        for value in values:
            name = _next_param()
            self.params[name] = value
            names.append(f":{name}")
        return self.add_condition(f"{column} NOT IN ({', '.join(names)})", operator)

    def add_column_condition(self, columns: Mapping[str, Any], column_operator: str = 'AND', operator: str = 'AND') -> 'Criteria':
        col_op = _check_operator(column_operator)
        parts = []
        for name, value in columns.items():
            if value is None:
                parts.append(f"{name} IS NULL")
            else:
                pname = _next_param()
                self.params[pname] = value
                parts.append(f"{name}=:{pname}")
        if not parts:
            return self
        return self.add_condition(f" {col_op} ".join(parts), operator)

    def compare(self, column: str, value: Any, partial_match: bool = False, operator: str = 'AND', escape: bool = True) -> 'Criteria':
        """Add a comparison parsed from ``value``.

        Lists become IN conditions. A string may start with one of ``<>``,
        ``<=``, ``>=``, ``<``, ``>``, ``=``; with ``partial_match`` and no
        operator a LIKE search is added instead. Empty values are ignored.
        """
        if isinstance(value, (list, tuple, set)):
            if not value:
                return self
            return self.add_in_condition(column, list(value), operator)
        match = _COMPARE_PATTERN.match('' if value is None else str(value))
        op = match.group(1) or ''
        text = match.group(2)
        if text == '':
            return self
        if partial_match:
            if op == '':
                return self.add_search_condition(column, text, escape, operator)
            if op == '<>':
                return self.add_search_condition(column, text, escape, operator, 'NOT LIKE')
        elif op == '':
            op = '='
        name = _next_param()
        self.add_condition(f"{column}{op}:{name}", operator)
        self.params[name] = text
        return self

    def add_between_condition(self, column: str, value_start: Any, value_end: Any, operator: str = 'AND') -> 'Criteria':
        if value_start == '' or value_end == '' or value_start is None or value_end is None:
            return self
        start = _next_param()
        end = _next_param()
        self.params[start] = value_start
        self.params[end] = value_end
        return self.add_condition(f"{column} BETWEEN :{start} AND :{end}", operator)

    # ----- merging -----
    def merge_with(self, criteria: Any, operator: str = 'AND') -> 'Criteria':
        """Merge ``criteria`` into this criteria in place and return self.

        ``condition`` and ``having`` are AND-wrapped (``operator`` selects OR),
        ``group`` and ``join`` are appended, while ``order`` is prepended: the
        incoming ordering takes priority over the existing one.
        """
        op = _check_operator(operator)
        other = Criteria.coerce(criteria)

        self.select = merge_select(self.select, other.select)
        if self.condition != other.condition:
            self.condition = and_wrap(self.condition, other.condition, op)
        if self.params != other.params:
            self.params = {**self.params, **other.params}
        if other.limit is not None and other.limit > 0:
            self.limit = other.limit
        if other.offset is not None and other.offset >= 0:
            self.offset = other.offset
        if other.alias is not None:
            self.alias = other.alias
        if self.order != other.order:
            if self.order == '':
                self.order = other.order
            elif other.order:
                self.order = f"{other.order}, {self.order}"
        if self.group != other.group:
            if self.group == '':
                self.group = other.group
            elif other.group:
                self.group = f"{self.group}, {other.group}"
        if self.join != other.join:
            if self.join == '':
                self.join = other.join
            elif other.join:
                self.join = f"{self.join} {other.join}"
        if self.having != other.having:
            self.having = and_wrap(self.having, other.having, op)
        if other.distinct:
            self.distinct = other.distinct
        if other.together is not None:
            self.together = other.together
        if other.index is not None:
            self.index = other.index
        self.scopes = _merge_scopes(self.scopes, other.scopes)
        self.with_ = _merge_with(self.with_, other.with_, op)
        return self


def _merge_scopes(first: Any, second: Any) -> Any:
    if not first:
        return second
    if not second:
        return first
    merged: List[Any] = []
    for key, value in scope_items(first) + scope_items(second):
        if key is None:
            merged.append(value)
        else:
            # keyed scopes become single-entry dicts so a scope named on both sides runs twice
            merged.append({key: value})
    return merged


_WITH_SPECIAL = ('join_type', 'on')


def _merge_with(first: Any, second: Any, operator: str) -> Any:
    if not first:
        return second
    if not second:
        return first
    merged = with_items(first)
    for name, options in with_items(second).items():
        if name not in merged:
            merged[name] = options
            continue
        base_opts = dict(merged[name])
        inc_opts = dict(options)
        excludes: Dict[str, Any] = {}
        for opt in _WITH_SPECIAL:
            if opt in base_opts:
                excludes[opt] = base_opts.pop(opt)
            if opt in inc_opts:
                value = inc_opts.pop(opt)
                if opt == 'on' and opt in excludes and value != excludes[opt]:
                    excludes[opt] = f"({excludes[opt]}) AND {value}"
                else:
                    excludes[opt] = value
        known = set(Criteria.field_names()) | set(_KEY_ALIASES)
        extra = {k: v for k, v in base_opts.items() if k not in known}
        extra.update({k: v for k, v in inc_opts.items() if k not in known})
        crit = Criteria.coerce({k: v for k, v in base_opts.items() if k in known})
        crit.merge_with({k: v for k, v in inc_opts.items() if k in known}, operator)
        result = {k: v for k, v in crit.to_dict().items() if v != getattr(_DEFAULTS, _KEY_ALIASES.get(k, k))}
        result.update(extra)
        result.update(excludes)
        merged[name] = result
    return merged


_DEFAULTS = Criteria()
