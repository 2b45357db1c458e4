"""Relation loading for active records.

:class:`ActiveFinder` resolves ``with_`` graphs and lazy relation reads with
one batched query per relation level. Relations declaring ``limit`` or
``offset`` fall back to one query per owner record.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Tuple

from ..core.criteria import Criteria, and_wrap, with_items
from ..core.metadata import registry
from ..core.naming import split_names
from ..core.relations import RelationDescriptor, RelationKind, default_value_for
from ..errors import ConfigurationError, StateError

logger = logging.getLogger(__name__)

_OWNER_KEY = '__owner_key'
_STAT_VALUE = '__stat'

KeyPairs = List[Tuple[str, str]]


def _split_paths(with_: Any) -> Dict[str, Tuple[Dict[str, Any], Dict[str, Any]]]:
    """Group a with-spec by first path segment: ``{name: (options, nested_spec)}``."""
    top: Dict[str, Tuple[Dict[str, Any], Dict[str, Any]]] = {}
    for path, options in with_items(with_).items():
        head, _, rest = path.partition('.')
        opts, nested = top.setdefault(head, ({}, {}))
        if rest:
            nested[rest] = options
        else:
            opts.update(options)
    return top


class ActiveFinder:
    """Executes record queries that eager load relations, and lazy relation reads."""

    def __init__(self, db: Any):
        self.db = db
        self.builder = db.command_builder

    @property
    def adapter(self):
        return self.db.adapter

    # ----- entry points -----
    def query(self, model: Any, criteria: Criteria, all: bool = False) -> Any:
        base = criteria.copy()
        with_ = base.with_
        base.with_ = None
        base.scopes = None
        index = base.index
        base.index = None
        if not all:
            base.limit = 1
        command = self.builder.create_find_command(model.get_table_schema(), base, model.get_table_alias(check_scopes=False))
        records = model.populate_records(command.query_all(), True)
        if records and with_:
            self.find_with(records, with_)
        if not all:
            return records[0] if records else None
        if index is None:
            return records
        return {getattr(r, index): r for r in records}

    def count(self, model: Any, criteria: Criteria) -> int:
        base = criteria.copy()
        base.with_ = None
        base.scopes = None
        command = self.builder.create_count_command(model.get_table_schema(), base, model.get_table_alias(check_scopes=False))
        return int(command.query_scalar() or 0)

    def lazy_find(self, record: Any, spec: Any) -> None:
        """Load one relation of ``record``; ``spec`` is a name or ``{name: options}``."""
        if isinstance(spec, str):
            name, options = spec, {}
        elif isinstance(spec, Mapping) and len(spec) == 1:
            name, options = next(iter(spec.items()))
        else:
            raise StateError(f"Lazy loading expects a single relation, got {spec!r}")
        head, _, rest = name.partition('.')
        self._load([record], head, dict(options or {}) if not rest else {}, {rest: options} if rest else {})

    def find_with(self, records: List[Any], with_: Any) -> None:
        """Eager load ``with_`` (names, dotted paths or ``{path: options}``) into ``records``."""
        if not records:
            return
        for name, (options, nested) in _split_paths(with_).items():
            self._load(records, name, options, nested)

    # ----- loading -----
    def _load(self, records: List[Any], name: str, options: Dict[str, Any], nested: Dict[str, Any]) -> None:
        by_class: Dict[type, List[Any]] = {}
        for record in records:
            by_class.setdefault(type(record), []).append(record)
        for owner_cls, owners in by_class.items():
            declared = owners[0].get_active_relation(name)
            if declared is None:
                raise StateError(f"Relation {name!r} is not defined in active record class {owner_cls.__name__!r}.")
            relation = declared.copy()
            logger.debug("loading %s.%s for %d record(s)", owner_cls.__name__, name, len(owners))
            found = self._load_relation(owners, relation, options)
            for owner in owners:
                if not owner.has_related(name):
                    owner.add_related_record(name, default_value_for(relation), False)
            children = dict(nested)
            if relation.kind is not RelationKind.STAT:
                for path, opts in with_items(relation.with_).items():
                    children.setdefault(path, opts)
            if found and children:
                self.find_with(found, children)

    def _load_relation(self, owners: List[Any], relation: RelationDescriptor, options: Dict[str, Any]) -> List[Any]:
        options = dict(options)
        extra_scopes = options.pop('scopes', None)
        target_cls = registry.resolve_class(relation.class_name)
        target = target_cls.model()
        alias = relation.alias or relation.name
        if not self._scope_relation(relation, target, alias, extra_scopes):
            return []
        if options:
            relation.merge_with(options)
        if relation.through:
            return self._load_through(owners, relation, target, alias)
        if relation.kind is RelationKind.MANY_MANY:
            return self._assign(owners, relation, self._fetch_many_many(owners, relation, target, alias))
        pairs = self._key_pairs(owners[0], relation, target)
        if relation.kind is RelationKind.STAT:
            self._load_stat(owners, relation, target, alias, pairs)
            return []
        return self._assign(owners, relation, self._fetch(owners, relation, target, alias, pairs))

    def _scope_relation(self, relation: RelationDescriptor, target: Any, alias: str, extra_scopes: Any) -> bool:
        """Merge the target's default scope and the relation scopes into ``relation``."""
        scopes = Criteria(scopes=relation.scopes).merge_with(Criteria(scopes=extra_scopes)).scopes
        criteria = Criteria(scopes=scopes)
        previous = target.get_table_alias(check_scopes=False)
        target.set_table_alias(alias)
        target.set_db_criteria(None)
        try:
            if not target.before_find(criteria):
                target.set_db_criteria(None)
                return False
            effective = target.apply_scopes(criteria)
        finally:
            target.set_table_alias(previous)
        effective.scopes = None
        effective.with_ = None
        relation.merge_with(effective, from_scope=True)
        return True

    def _key_pairs(self, owner: Any, relation: RelationDescriptor, target: Any) -> KeyPairs:
        """``(owner_column, target_column)`` pairs linking owner rows to target rows."""
        fk = relation.foreign_key
        if relation.kind is RelationKind.BELONGS_TO:
            if isinstance(fk, Mapping):
                return [(str(k), str(v)) for k, v in fk.items()]
            owner_cols = split_names(fk)
            target_cols = target.get_table_schema().primary_key_names()
        else:
            if isinstance(fk, Mapping):
                return [(str(v), str(k)) for k, v in fk.items()]
            owner_cols = owner.get_table_schema().primary_key_names()
            target_cols = split_names(fk)
        if len(owner_cols) != len(target_cols):
            raise ConfigurationError(
                f"The relation {relation.name!r} is specified with an invalid foreign key {fk!r}. "
                "The columns in the key must match the primary key of the referenced table."
            )
        return list(zip(owner_cols, target_cols))

    def _qualified(self, alias: str, column: str) -> str:
        return f"{self.adapter.quote_simple_name(alias)}.{self.adapter.quote_column_name(column)}"

    def _owner_keys(self, owners: List[Any], columns: List[str]) -> Dict[tuple, List[Any]]:
        keys: Dict[tuple, List[Any]] = {}
        for owner in owners:
            key = tuple(getattr(owner, c) for c in columns)
            if any(v is None for v in key):
                continue
            keys.setdefault(key, []).append(owner)
        return keys

    def _add_key_condition(self, criteria: Criteria, columns: List[str], keys: List[tuple]) -> None:
        if len(columns) == 1:
            criteria.add_in_condition(columns[0], [k[0] for k in keys])
            return
        parts = []
        for key in keys:
            part = Criteria()
            part.add_column_condition(dict(zip(columns, key)))
            criteria.params.update(part.params)
            parts.append(part.condition)
        criteria.add_condition(parts or ['0=1'], 'OR')

    def _relation_criteria(self, relation: RelationDescriptor) -> Criteria:
        criteria = relation.criteria()
        criteria.index = None
        if relation.on:
            criteria.condition = and_wrap(criteria.condition, relation.on)
        return criteria

    def _select_with(self, criteria: Criteria, alias: str, required: List[str]) -> None:
        if criteria.select == '*':
            criteria.select = [f"{self.adapter.quote_simple_name(alias)}.*"] + required
            return
        selected = split_names(criteria.select)
        criteria.select = selected + [c for c in required if c not in selected]

    def _run(self, relation: RelationDescriptor, target: Any, alias: str, criteria: Criteria,
             key_columns: List[str], keys: List[tuple]) -> List[Dict[str, Any]]:
        table = target.get_table_schema()
        per_owner = relation.is_collection and (relation.limit > 0 or relation.offset >= 0) and len(keys) > 1
        batches = [[k] for k in keys] if per_owner else [keys]
        rows: List[Dict[str, Any]] = []
        for batch in batches:
            c = criteria.copy()
            self._add_key_condition(c, key_columns, batch)
            rows.extend(self.builder.create_find_command(table, c, alias).query_all())
        return rows

    def _fetch(self, owners: List[Any], relation: RelationDescriptor, target: Any, alias: str,
               pairs: KeyPairs) -> List[Tuple[Any, Any]]:
        keys = self._owner_keys(owners, [o for o, _ in pairs])
        if not keys:
            return []
        criteria = self._relation_criteria(relation)
        target_cols = [t for _, t in pairs]
        if criteria.select != '*':
            self._select_with(criteria, alias, [self._qualified(alias, c) for c in target_cols])
        rows = self._run(relation, target, alias, criteria, [self._qualified(alias, c) for c in target_cols], list(keys))
        out: List[Tuple[Any, Any]] = []
        for row in rows:
            record = target.populate_record(row)
            key = tuple(row.get(c) for c in target_cols)
            for owner in keys.get(key, ()):
                out.append((owner, record))
        return out

    def _fetch_many_many(self, owners: List[Any], relation: RelationDescriptor, target: Any,
                         alias: str) -> List[Tuple[Any, Any]]:
        join_table, columns = relation.join_table()
        owner_pk = owners[0].get_table_schema().primary_key_names()
        target_pk = target.get_table_schema().primary_key_names()
        if len(columns) != len(owner_pk) + len(target_pk):
            raise ConfigurationError(
                f"The relation {relation.name!r} is specified with an incomplete foreign key. "
                f"The join table {join_table!r} must list {len(owner_pk) + len(target_pk)} column(s)."
            )
        owner_cols, target_cols = columns[:len(owner_pk)], columns[len(owner_pk):]
        keys = self._owner_keys(owners, owner_pk)
        if not keys:
            return []
        join_alias = f"{alias}_{relation.name}"
        criteria = self._relation_criteria(relation)
        on = ' AND '.join(
            f"{self._qualified(join_alias, jc)}={self._qualified(alias, pk)}" for jc, pk in zip(target_cols, target_pk)
        )
        join = f"INNER JOIN {self.adapter.quote_table_name(join_table)} {self.adapter.quote_simple_name(join_alias)} ON {on}"
        criteria.join = f"{join} {criteria.join}".strip()
        key_aliases = [f"{_OWNER_KEY}{i}" for i in range(len(owner_cols))]
        self._select_with(criteria, alias, [
            f"{self._qualified(join_alias, c)} AS {self.adapter.quote_simple_name(a)}" for c, a in zip(owner_cols, key_aliases)
        ])
        rows = self._run(relation, target, alias, criteria, [self._qualified(join_alias, c) for c in owner_cols], list(keys))
        out: List[Tuple[Any, Any]] = []
        for row in rows:
            key = tuple(row.pop(a, None) for a in key_aliases)
            record = target.populate_record(row)
            for owner in keys.get(key, ()):
                out.append((owner, record))
        return out

    def _load_stat(self, owners: List[Any], relation: RelationDescriptor, target: Any, alias: str, pairs: KeyPairs) -> None:
        keys = self._owner_keys(owners, [o for o, _ in pairs])
        if not keys:
            return
        criteria = self._relation_criteria(relation)
        target_cols = [t for _, t in pairs]
        key_aliases = [f"{_OWNER_KEY}{i}" for i in range(len(target_cols))]
        select = criteria.select if isinstance(criteria.select, str) else ', '.join(criteria.select)
        criteria.select = [f"{select} AS {self.adapter.quote_simple_name(_STAT_VALUE)}"] + [
            f"{self._qualified(alias, c)} AS {self.adapter.quote_simple_name(a)}" for c, a in zip(target_cols, key_aliases)
        ]
        group = ', '.join(self._qualified(alias, c) for c in target_cols)
        criteria.group = f"{group}, {criteria.group}" if criteria.group else group
        rows = self._run(relation, target, alias, criteria, [self._qualified(alias, c) for c in target_cols], list(keys))
        for row in rows:
            key = tuple(row.get(a) for a in key_aliases)
            for owner in keys.get(key, ()):
                owner.add_related_record(relation.name, row.get(_STAT_VALUE), False)

    def _load_through(self, owners: List[Any], relation: RelationDescriptor, target: Any, alias: str) -> List[Any]:
        bridge_decl = owners[0].get_active_relation(relation.through)
        if bridge_decl is None:
            raise ConfigurationError(f"Relation {relation.name!r} goes through unknown relation {relation.through!r}.")
        bridge = bridge_decl.copy()
        bridge_target = registry.resolve_class(bridge.class_name).model()
        bridge_alias = bridge.alias or bridge.name
        if not self._scope_relation(bridge, bridge_target, bridge_alias, None):
            return []
        if bridge.kind is RelationKind.MANY_MANY:
            links = self._fetch_many_many(owners, bridge, bridge_target, bridge_alias)
        else:
            links = self._fetch(owners, bridge, bridge_target, bridge_alias, self._key_pairs(owners[0], bridge, bridge_target))
        if not links:
            return []
        # foreign_key maps bridge columns to target columns
        pairs = [(str(k), str(v)) for k, v in relation.foreign_key.items()]
        bridges = list({id(b): b for _, b in links}.values())
        found = self._fetch(bridges, relation, target, alias, pairs)
        owners_of: Dict[int, List[Any]] = {}
        for owner, b in links:
            owners_of.setdefault(id(b), []).append(owner)
        return self._assign(owners, relation, [
            (owner, record) for b, record in found for owner in owners_of.get(id(b), ())
        ])

    def _assign(self, owners: List[Any], relation: RelationDescriptor, pairs: List[Tuple[Any, Any]]) -> List[Any]:
        found: List[Any] = []
        seen = set()
        for owner, record in pairs:
            if relation.is_collection:
                index = getattr(record, relation.index) if relation.index else True
            else:
                index = False
            owner.add_related_record(relation.name, record, index)
            if id(record) not in seen:
                seen.add(id(record))
                found.append(record)
        return found
