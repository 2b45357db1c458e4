from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import ConfigurationError
from .criteria import Criteria, and_wrap, merge_select

__all__ = [
    'RelationKind',
    'RelationDescriptor',
    'RelationDeclaration',
    'relation',
    'belongs_to',
    'has_one',
    'has_many',
    'many_many',
    'stat',
    'default_value_for',
    'compile_relation',
]


class RelationKind(Enum):
    BELONGS_TO = 'belongs_to'
    HAS_ONE = 'has_one'
    HAS_MANY = 'has_many'
    MANY_MANY = 'many_many'
    STAT = 'stat'

    @classmethod
    def parse(cls, value: Any) -> 'RelationKind':
        if isinstance(value, RelationKind):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown relation kind {value!r}") from None


_COLLECTION_KINDS = (RelationKind.HAS_MANY, RelationKind.MANY_MANY)

_QUERY_OPTIONS = ('select', 'condition', 'params', 'order', 'group', 'join', 'having')
_ASSOCIATION_OPTIONS = ('join_type', 'on', 'alias', 'with_', 'together', 'scopes')
_OPTIONS_BY_KIND: Dict[RelationKind, Tuple[str, ...]] = {
    RelationKind.BELONGS_TO: _QUERY_OPTIONS + _ASSOCIATION_OPTIONS,
    RelationKind.HAS_ONE: _QUERY_OPTIONS + _ASSOCIATION_OPTIONS + ('through',),
    RelationKind.HAS_MANY: _QUERY_OPTIONS + _ASSOCIATION_OPTIONS + ('limit', 'offset', 'index', 'through'),
    RelationKind.MANY_MANY: _QUERY_OPTIONS + _ASSOCIATION_OPTIONS + ('limit', 'offset', 'index'),
    RelationKind.STAT: _QUERY_OPTIONS + ('default_value',),
}

_JOIN_TABLE_PATTERN = re.compile(r'^\s*([\w.\[\]`"]+)\s*\((.*)\)\s*$')


def _criteria_data(criteria: Any) -> Dict[str, Any]:
    if isinstance(criteria, Criteria):
        data = criteria.to_dict()
    elif isinstance(criteria, Mapping):
        data = dict(criteria)
    elif criteria is None:
        data = {}
    else:
        raise ConfigurationError(f"Cannot merge {type(criteria).__name__} into a relation")
    if 'with' in data:
        data['with_'] = data.pop('with')
    return data


@dataclass
class RelationDescriptor:
    """Compiled association of a record class.

    One shared shape for every :class:`RelationKind`; fields that do not apply
    to a kind keep their defaults. Instances held by class metadata are never
    mutated after compilation: lazy and eager loading merge options into a
    :meth:`copy`.
    """

    name: str
    kind: RelationKind
    class_name: Any
    foreign_key: Any
    select: Any = '*'
    condition: str = ''
    params: Dict[str, Any] = field(default_factory=dict)
    order: str = ''
    group: str = ''
    join: str = ''
    having: str = ''
    join_type: str = 'LEFT OUTER JOIN'
    on: str = ''
    alias: Optional[str] = None
    with_: Any = None
    together: Optional[bool] = None
    scopes: Any = None
    limit: int = -1
    offset: int = -1
    index: Optional[str] = None
    through: Optional[str] = None
    default_value: Any = 0

    def __post_init__(self):
        if self.kind is RelationKind.STAT and self.select == '*':
            self.select = 'COUNT(*)'

    @property
    def is_collection(self) -> bool:
        return self.kind in _COLLECTION_KINDS

    def copy(self) -> 'RelationDescriptor':
        return copy.deepcopy(self)

    def join_table(self) -> Tuple[str, List[str]]:
        """Split a MANY_MANY foreign key ``table(owner_fk, target_fk)`` into table and columns."""
        m = _JOIN_TABLE_PATTERN.match(str(self.foreign_key or ''))
        if not m:
            raise ConfigurationError(
                f"Relation {self.name!r} must specify its join table as 'table(owner_fk, target_fk)', got {self.foreign_key!r}"
            )
        cols = [c.strip() for c in m.group(2).split(',') if c.strip()]
        return m.group(1), cols

    def merge_with(self, criteria: Any, from_scope: bool = False) -> 'RelationDescriptor':
        """Merge a criteria (or mapping of options) into this relation in place.

        With ``from_scope`` the incoming ``condition`` is merged into ``on`` so
        that a scope declared on the target class filters the join and not the
        owner's WHERE clause. STAT relations ignore association options.
        """
        data = _criteria_data(criteria)
        if self.kind is RelationKind.STAT:
            self._merge_query(data)
            if data.get('default_value') is not None:
                self.default_value = data['default_value']
            return self
        if from_scope:
            cond = data.pop('condition', None)
            if cond is not None and self.on != cond:
                self.on = and_wrap(self.on, cond)
        self._merge_query(data)
        if data.get('join_type') is not None:
            self.join_type = data['join_type']
        on = data.get('on')
        if on is not None and self.on != on:
            self.on = and_wrap(self.on, on)
        for opt in ('with_', 'alias', 'together', 'scopes'):
            if data.get(opt) is not None:
                setattr(self, opt, data[opt])
        if self.kind in _COLLECTION_KINDS:
            limit = data.get('limit')
            if limit is not None and limit > 0:
                self.limit = limit
            offset = data.get('offset')
            if offset is not None and offset >= 0:
                self.offset = offset
            if data.get('index') is not None:
                self.index = data['index']
        return self

    def _merge_query(self, data: Dict[str, Any]) -> None:
        if data.get('select') is not None:
            self.select = merge_select(self.select, data['select'])
        cond = data.get('condition')
        if cond is not None and self.condition != cond:
            self.condition = and_wrap(self.condition, cond)
        params = data.get('params')
        if params is not None and self.params != params:
            self.params = {**self.params, **params}
        order = data.get('order')
        if order is not None and self.order != order:
            if self.order == '':
                self.order = order
            elif order != '':
                self.order = f"{order}, {self.order}"
        group = data.get('group')
        if group is not None and self.group != group:
            if self.group == '':
                self.group = group
            elif group != '':
                self.group = f"{self.group}, {group}"
        join = data.get('join')
        if join is not None and self.join != join:
            if self.join == '':
                self.join = join
            elif join != '':
                self.join = f"{self.join} {join}"
        having = data.get('having')
        if having is not None and self.having != having:
            self.having = and_wrap(self.having, having)

    def criteria(self) -> Criteria:
        """The relation's query fields as a plain :class:`Criteria` (used by the finder)."""
        c = Criteria(
            select=self.select,
            condition=self.condition,
            params=dict(self.params),
            order=self.order,
            group=self.group,
            join=self.join,
            having=self.having,
        )
        if self.kind in _COLLECTION_KINDS:
            c.limit = self.limit
            c.offset = self.offset
            c.index = self.index
        return c


def default_value_for(descriptor: RelationDescriptor) -> Any:
    """Value cached for a relation when loading found nothing."""
    kind = descriptor.kind
    if kind is RelationKind.BELONGS_TO or kind is RelationKind.HAS_ONE:
        return None
    if kind is RelationKind.HAS_MANY or kind is RelationKind.MANY_MANY:
        return {} if descriptor.index else []
    if kind is RelationKind.STAT:
        return descriptor.default_value
    raise AssertionError(f"unhandled relation kind {kind!r}")


def compile_relation(owner: str, name: str, kind: Any, class_name: Any, foreign_key: Any, options: Optional[Mapping[str, Any]] = None) -> RelationDescriptor:
    """Validate a relation declaration and build its descriptor.

    Raises:
        ConfigurationError: kind, target class or foreign key is missing, or an
            option does not apply to the relation kind.
    """
    if not kind or not class_name or not foreign_key:
        raise ConfigurationError(
            f"Active record {owner!r} has an invalid configuration for relation {name!r}. "
            "It must specify the relation type, the related active record class and the foreign key."
        )
    rk = RelationKind.parse(kind)
    opts = dict(options or {})
    if 'with' in opts:
        opts['with_'] = opts.pop('with')
    allowed = _OPTIONS_BY_KIND[rk]
    unknown = sorted(k for k in opts if k not in allowed)
    if unknown:
        raise ConfigurationError(f"Relation {owner}.{name} ({rk.value}) does not accept options: {', '.join(unknown)}")
    descriptor = RelationDescriptor(name=name, kind=rk, class_name=class_name, foreign_key=foreign_key, **opts)
    if rk is RelationKind.MANY_MANY:
        descriptor.join_table()
    if descriptor.through and not isinstance(foreign_key, Mapping):
        raise ConfigurationError(f"Relation {owner}.{name} uses 'through' and must map bridge keys to target keys")
    return descriptor


class RelationDeclaration:
    """Descriptor placed on record classes to declare an association.

    Users normally call :func:`belongs_to`, :func:`has_one`, :func:`has_many`,
    :func:`many_many` or :func:`stat`. Class metadata collects declarations
    across the class hierarchy and compiles them with :meth:`build`. Reading
    the attribute on an instance resolves the relation through the record's
    accessor chain.
    """

    def __init__(self, kind: Any, class_name: Any, foreign_key: Any, **options: Any):
        self.kind = kind
        self.class_name = class_name
        self.foreign_key = foreign_key
        self.options = dict(options)
        self.name: str | None = None

    def __set_name__(self, owner, name):  # pragma: no cover - simple
        self.name = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance._get_member(self.name)

    def build(self, owner: str, name: Optional[str] = None) -> RelationDescriptor:
        return compile_relation(owner, name or self.name or '', self.kind, self.class_name, self.foreign_key, self.options)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"RelationDeclaration({self.kind!r}, {self.class_name!r}, {self.foreign_key!r})"


def relation(kind: Any, class_name: Any, foreign_key: Any, **options: Any) -> RelationDeclaration:
    """Declare an association of any kind; see the kind-specific helpers."""
    return RelationDeclaration(kind, class_name, foreign_key, **options)


def belongs_to(class_name: Any, foreign_key: Any, **options: Any) -> RelationDeclaration:
    """Declare a many-to-one association.

    Args:
        class_name: Target record class or its name.
        foreign_key: Column(s) on the owner table referencing the target's
            primary key: ``'author_id'``, ``'a_id, b_id'`` or a mapping
            ``{owner_column: target_column}``.
        **options: ``select``, ``condition``, ``params``, ``order``, ``group``,
            ``join``, ``having``, ``join_type``, ``on``, ``alias``, ``with_``,
            ``together``, ``scopes``.

    Example:
        class Post(ActiveRecord):
            author = belongs_to('User', 'author_id')
    """
    return RelationDeclaration(RelationKind.BELONGS_TO, class_name, foreign_key, **options)


def has_one(class_name: Any, foreign_key: Any, **options: Any) -> RelationDeclaration:
    """Declare a one-to-one association whose foreign key lives on the target table.

    Accepts the :func:`belongs_to` options plus ``through`` (name of a bridge
    relation; ``foreign_key`` then maps bridge columns to target columns).
    """
    return RelationDeclaration(RelationKind.HAS_ONE, class_name, foreign_key, **options)


def has_many(class_name: Any, foreign_key: Any, **options: Any) -> RelationDeclaration:
    """Declare a one-to-many association.

    Accepts the :func:`has_one` options plus ``limit``, ``offset`` and
    ``index`` (column whose value keys the loaded collection).

    Example:
        class Post(ActiveRecord):
            comments = has_many('Comment', 'post_id', order='comments.id ASC')
    """
    return RelationDeclaration(RelationKind.HAS_MANY, class_name, foreign_key, **options)


def many_many(class_name: Any, foreign_key: str, **options: Any) -> RelationDeclaration:
    """Declare a many-to-many association through a join table.

    ``foreign_key`` names the join table and its columns:
    ``'post_tag(post_id, tag_id)'`` (owner columns first, then target columns).
    """
    return RelationDeclaration(RelationKind.MANY_MANY, class_name, foreign_key, **options)


def stat(class_name: Any, foreign_key: Any, **options: Any) -> RelationDeclaration:
    """Declare a statistical relation (``COUNT(*)`` unless ``select`` says otherwise).

    ``default_value`` (default 0) is used when no row matches.

    Example:
        class Post(ActiveRecord):
            comment_count = stat('Comment', 'post_id')
    """
    return RelationDeclaration(RelationKind.STAT, class_name, foreign_key, **options)
