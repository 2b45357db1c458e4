"""Active record base class.

An :class:`ActiveRecord` subclass maps to one table. Instances carry the
loaded column values, a cache of related records, the primary key captured
when the row was loaded or inserted, a scenario tag and validation errors.
The static instance returned by :meth:`ActiveRecord.model` is used for
queries and accumulates scope criteria until the next query runs.
"""
from __future__ import annotations

import copy
import functools
import inspect
import logging
from contextlib import contextmanager
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Iterator, List, Mapping, Optional, Union

from .core.behaviors import Behavior
from .core.criteria import Criteria, scope_items
from .core.events import EventHandlers, LifecycleEvent, ModelEvent, iter_class_hooks
from .core.metadata import ClassMetadata, registry
from .core.naming import from_camel, generate_label
from .core.relations import RelationDeclaration, RelationDescriptor, RelationKind, default_value_for
from .core.schema import TableSchema
from .core.validation import Validator, create_validator
from .database import get_active_database
from .errors import StateError

__all__ = ['ActiveRecord']

logger = logging.getLogger(__name__)

# Relations that cannot have rows yet while the owner is unsaved.
_OWNER_KEYED_KINDS = (RelationKind.HAS_ONE, RelationKind.HAS_MANY, RelationKind.MANY_MANY)


def _collect_declared_fields(cls: type) -> FrozenSet[str]:
    """Names accessed as plain Python attributes: annotated fields and data descriptors."""
    names = set()
    for klass in cls.__mro__:
        if klass is object:
            continue
        for name, ann in inspect.get_annotations(klass).items():
            if 'ClassVar' in str(ann):
                continue
            names.add(name)
        for name, value in vars(klass).items():
            if isinstance(value, RelationDeclaration):
                continue
            if isinstance(value, property) or hasattr(type(value), '__set__'):
                names.add(name)
    return frozenset(names)


class ActiveRecord:
    """Base class for records.

    Subclasses describe their table through class-level hooks:

    - :meth:`table_name` (default: snake_case class name)
    - :meth:`primary_key` (used when the schema reports none)
    - relations declared with :func:`~berryrecord.has_many` and friends as
      class attributes, or returned by :meth:`relations`
    - :meth:`scopes`, :meth:`default_scope`, :meth:`behaviors`, :meth:`rules`,
      :meth:`attribute_labels`

    Example:
        class Post(ActiveRecord):
            author = belongs_to('User', 'author_id')
            comments = has_many('Comment', 'post_id', order='comments.id')

            @classmethod
            def scopes(cls):
                return {'published': {'condition': 'status=1'}}

        posts = Post.model().published().with_('author').find_all()
    """

    db: ClassVar[Any] = None
    _declared_fields: ClassVar[FrozenSet[str]] = frozenset()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        registry.register_class(cls)
        cls._declared_fields = _collect_declared_fields(cls)

    def __init__(self, scenario: Optional[str] = 'insert'):
        self._attributes: Dict[str, Any] = {}
        self._related: Dict[str, Any] = {}
        self._pk: Any = None
        self._new = False
        self._scenario = ''
        self._errors: Dict[str, List[str]] = {}
        self._validators: Optional[List[Validator]] = None
        self._behaviors: Dict[str, Behavior] = {}
        self._events = EventHandlers()
        self._c: Optional[Criteria] = None
        self._alias = 't'
        self._dynamic_slots: set = set()
        for event, handler in iter_class_hooks(type(self)):
            self._events.add(event, handler)
        if scenario is None:
            # static finder instances and records built by populate_record()
            return
        self._scenario = scenario
        self._new = True
        self._attributes = dict(self.get_metadata().attribute_defaults)
        self.init()
        self.attach_behaviors(self.behaviors())
        self.after_construct()

    def init(self) -> None:
        """Initialization hook called after construction and after loading from the database."""

    def __repr__(self) -> str:
        state = 'new' if self._new else f"pk={self.get_primary_key()!r}"
        return f"<{type(self).__name__} {state}>"

    # ----- class configuration -----
    @classmethod
    def model(cls):
        """Static instance of this class used to run queries."""
        return registry.model(cls)

    @classmethod
    def get_db(cls):
        return cls.db if cls.db is not None else get_active_database()

    @classmethod
    def table_name(cls) -> str:
        return from_camel(cls.__name__)

    @classmethod
    def primary_key(cls) -> Union[str, List[str], None]:
        return None

    @classmethod
    def relations(cls) -> Dict[str, Any]:
        """Extra relation declarations: ``{name: declaration or (kind, class, fk[, options])}``."""
        return {}

    @classmethod
    def scopes(cls) -> Dict[str, Any]:
        """Named scopes: ``{name: criteria or mapping}``."""
        return {}

    def default_scope(self) -> Any:
        return {}

    def behaviors(self) -> Dict[str, Any]:
        """Behaviors attached to every new or loaded record: ``{name: behavior, class or (class, config)}``."""
        return {}

    def rules(self) -> List[Any]:
        return []

    def attribute_labels(self) -> Dict[str, str]:
        return {}

    # ----- metadata -----
    def get_metadata(self) -> ClassMetadata:
        return registry.get(type(self))

    def refresh_metadata(self) -> None:
        registry.refresh(type(self))

    def get_table_schema(self) -> TableSchema:
        return self.get_metadata().table_schema

    def get_command_builder(self):
        return self.get_db().command_builder

    def get_active_relation(self, name: str) -> Optional[RelationDescriptor]:
        return self.get_metadata().relations.get(name)

    @classmethod
    def is_declared_field(cls, name: str) -> bool:
        return name.startswith('_') or name in cls._declared_fields

    # ----- accessor chain -----
    def __getattr__(self, name: str) -> Any:
        # only reached when normal attribute lookup failed
        if self.is_declared_field(name):
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return self._get_member(name)

    def _get_member(self, name: str) -> Any:
        md = self.get_metadata()
        if name in self._attributes:
            return self._attributes[name]
        if name in md.columns:
            return None
        if name in self._related and name not in self._dynamic_slots:
            return self._related[name]
        if name in md.relations:
            return self.get_related(name)
        scopes = self.scopes()
        if name in scopes:
            return functools.partial(self._apply_named_scope, name)
        for behavior in self._behaviors.values():
            value, ok = behavior.get_property(name)
            if ok:
                return value
        raise AttributeError(f"Property {type(self).__name__}.{name} is not defined.")

    def __setattr__(self, name: str, value: Any) -> None:
        if self.is_declared_field(name):
            object.__setattr__(self, name, value)
            return
        if self.set_attribute(name, value):
            return
        if name in self.get_metadata().relations:
            self._related[name] = value
            return
        for behavior in self._behaviors.values():
            if behavior.set_property(name, value):
                return
        raise AttributeError(f"Property {type(self).__name__}.{name} is not defined.")

    def __delattr__(self, name: str) -> None:
        if self.is_declared_field(name):
            object.__delattr__(self, name)
            return
        md = self.get_metadata()
        if name in md.columns:
            self._attributes.pop(name, None)
        elif name in md.relations:
            self._related.pop(name, None)
        else:
            for behavior in self._behaviors.values():
                if behavior.set_property(name, None):
                    return
            raise AttributeError(f"Property {type(self).__name__}.{name} is not defined.")

    def has_attribute_value(self, name: str) -> bool:
        """Whether ``name`` resolves to a non-None value (relations are loaded when needed)."""
        if self.is_declared_field(name):
            return getattr(self, name, None) is not None
        md = self.get_metadata()
        if self._attributes.get(name) is not None:
            return True
        if name in md.columns:
            return False
        if self._related.get(name) is not None:
            return True
        if name in md.relations:
            return self.get_related(name) is not None
        for behavior in self._behaviors.values():
            value, ok = behavior.get_property(name)
            if ok:
                return value is not None
        return False

    # ----- attributes -----
    def attribute_names(self) -> List[str]:
        return list(self.get_metadata().columns)

    def has_attribute(self, name: str) -> bool:
        return name in self.get_metadata().columns

    def get_attribute(self, name: str) -> Any:
        if self.is_declared_field(name):
            return getattr(self, name, None)
        return self._attributes.get(name)

    def set_attribute(self, name: str, value: Any) -> bool:
        """Assign a declared field or column value; returns False for any other name."""
        if self.is_declared_field(name):
            object.__setattr__(self, name, value)
        elif name in self.get_metadata().columns:
            self._attributes[name] = value
        else:
            return False
        return True

    def get_attributes(self, names: Any = True) -> Dict[str, Any]:
        """Column values.

        ``True`` returns every column (unset ones as None), ``None`` only the
        loaded ones, and a list the named attributes.
        """
        attributes = dict(self._attributes)
        for name in self.get_metadata().columns:
            if self.is_declared_field(name):
                attributes[name] = getattr(self, name, None)
            elif names is True and name not in attributes:
                attributes[name] = None
        if isinstance(names, (list, tuple, set)):
            return {n: (getattr(self, n, None) if self.is_declared_field(n) else attributes.get(n)) for n in names}
        return attributes

    def set_attributes(self, values: Mapping[str, Any], safe_only: bool = True) -> None:
        if not isinstance(values, Mapping):
            return
        allowed = set(self.get_safe_attribute_names() if safe_only else self.attribute_names())
        for name, value in values.items():
            if name in allowed:
                setattr(self, name, value)
            elif safe_only:
                self.on_unsafe_attribute(name, value)

    def unset_attributes(self, names: Optional[List[str]] = None) -> None:
        for name in (self.attribute_names() if names is None else names):
            setattr(self, name, None)

    def on_unsafe_attribute(self, name: str, value: Any) -> None:
        logger.debug("Failed to set unsafe attribute %r of %s.", name, type(self).__name__)

    def get_attribute_label(self, attribute: str) -> str:
        labels = self.attribute_labels()
        if attribute in labels:
            return labels[attribute]
        if '.' in attribute:
            *segments, name = attribute.split('.')
            model: ActiveRecord = self
            for seg in segments:
                rel = model.get_metadata().relations.get(seg)
                if rel is None:
                    break
                model = registry.resolve_class(rel.class_name).model()
            return model.get_attribute_label(name)
        return self.generate_attribute_label(attribute)

    def generate_attribute_label(self, name: str) -> str:
        return generate_label(name)

    # ----- primary key -----
    def get_primary_key(self) -> Any:
        pk = self.get_table_schema().primary_key
        if isinstance(pk, str):
            return getattr(self, pk)
        if isinstance(pk, (list, tuple)):
            return {name: getattr(self, name) for name in pk}
        return None

    def set_primary_key(self, value: Any) -> None:
        self._pk = self.get_primary_key()
        pk = self.get_table_schema().primary_key
        if isinstance(pk, str):
            setattr(self, pk, value)
        elif isinstance(pk, (list, tuple)):
            for name in pk:
                setattr(self, name, value[name])

    @property
    def old_primary_key(self) -> Any:
        return self._pk

    @old_primary_key.setter
    def old_primary_key(self, value: Any) -> None:
        self._pk = value

    @property
    def is_new_record(self) -> bool:
        return self._new

    @is_new_record.setter
    def is_new_record(self, value: bool) -> None:
        self._new = bool(value)

    @property
    def scenario(self) -> str:
        return self._scenario

    @scenario.setter
    def scenario(self, value: str) -> None:
        self._scenario = value

    def equals(self, record: 'ActiveRecord') -> bool:
        return self.table_name() == record.table_name() and self.get_primary_key() == record.get_primary_key()

    # ----- related records -----
    def get_related(self, name: str, refresh: bool = False, params: Any = None) -> Any:
        """Return the related record(s) of relation ``name``, loading them on first access.

        Args:
            name: Relation name.
            refresh: Reload even when a value is cached.
            params: Extra criteria for a one-off query. The result is returned
                without touching the cached value of the relation.

        Raises:
            StateError: The class has no relation ``name``, or a dynamic read of
                the same relation is running on this record.
        """
        if name in self._dynamic_slots:
            raise StateError(f"Re-entrant read of relation {type(self).__name__}.{name} during a dynamic query.")
        if not refresh and params is None and name in self._related:
            return self._related[name]
        relation = self.get_metadata().relations.get(name)
        if relation is None:
            raise StateError(f"{type(self).__name__} does not have relation {name!r}.")
        logger.debug("lazy loading %s.%s", type(self).__name__, name)
        if self._new and not refresh and relation.kind in _OWNER_KEYED_KINDS:
            return default_value_for(relation)
        finder = self.get_db().create_finder()
        if params is not None:
            with self._isolated_relation_slot(name):
                finder.lazy_find(self, {name: params})
                return self._related.get(name, default_value_for(relation))
        self._related.pop(name, None)
        finder.lazy_find(self, name)
        if name not in self._related:
            self._related[name] = default_value_for(relation)
        return self._related[name]

    @contextmanager
    def _isolated_relation_slot(self, name: str) -> Iterator[None]:
        """Clear the cache slot of ``name`` for a one-off query and restore it on exit."""
        self._dynamic_slots.add(name)
        exists = name in self._related
        saved = self._related.pop(name, None)
        try:
            yield
        finally:
            if exists:
                self._related[name] = saved
            else:
                self._related.pop(name, None)
            self._dynamic_slots.discard(name)

    def has_related(self, name: str) -> bool:
        return name in self._related

    def add_related_record(self, name: str, record: Any, index: Any) -> None:
        """Store a related record found by the finder.

        ``index`` False stores a single value (first one wins), True appends to
        a list, and any other value keys the record in a dict.
        """
        if index is not False:
            if self._related.get(name) is None:
                self._related[name] = [] if index is True else {}
            if isinstance(record, ActiveRecord):
                if index is True:
                    self._related[name].append(record)
                else:
                    self._related[name][index] = record
        elif self._related.get(name) is None:
            self._related[name] = record

    # ----- scopes -----
    def get_db_criteria(self, create_if_null: bool = True) -> Optional[Criteria]:
        """Pending criteria accumulated by scopes, seeded with :meth:`default_scope`."""
        if self._c is None:
            default = self.default_scope()
            if default or create_if_null:
                self._c = Criteria.coerce(copy.deepcopy(default) if default else None)
        return self._c

    def set_db_criteria(self, criteria: Optional[Criteria]) -> None:
        self._c = criteria

    def reset_scope(self) -> 'ActiveRecord':
        """Drop pending criteria, including the default scope, for the next query."""
        self._c = Criteria()
        return self

    def _apply_named_scope(self, name: str) -> 'ActiveRecord':
        self.get_db_criteria().merge_with(copy.deepcopy(self.scopes()[name]))
        return self

    def apply_scopes(self, criteria: Criteria) -> Criteria:
        """Apply ``criteria.scopes`` and merge the pending criteria with ``criteria``.

        Returns the effective criteria; the pending criteria is cleared.
        """
        pending: Optional[Criteria] = None
        if criteria.scopes:
            named = self.scopes()
            pending = self.get_db_criteria()
            for key, value in scope_items(criteria.scopes):
                if key is None:
                    if isinstance(value, str):
                        if value in named:
                            pending.merge_with(copy.deepcopy(named[value]))
                            continue
                        scope, params = value, ()
                    elif isinstance(value, Mapping) and len(value) == 1:
                        scope, params = next(iter(value.items()))
                    else:
                        raise StateError(f"Invalid scope reference {value!r}")
                else:
                    scope, params = key, value
                self._call_scope(scope, params)
            criteria.scopes = None
        if pending is None:
            pending = self.get_db_criteria(False)
        if pending is None:
            return criteria
        pending.merge_with(criteria)
        self._c = None
        return pending

    def _call_scope(self, scope: str, params: Any) -> None:
        named = self.scopes()
        if scope in named and not params:
            self.get_db_criteria().merge_with(copy.deepcopy(named[scope]))
            return
        method = getattr(type(self), scope, None)
        if not callable(method) or isinstance(method, RelationDeclaration):
            raise StateError(f"{type(self).__name__} does not have scope {scope!r}.")
        bound = getattr(self, scope)
        if isinstance(params, Mapping):
            bound(**params)
        elif isinstance(params, (list, tuple)):
            bound(*params)
        elif params is None:
            bound()
        else:
            bound(params)

    def with_(self, *relations: Any) -> 'ActiveRecord':
        """Eager load the named relations with the next query."""
        if relations:
            spec: Any = relations[0] if len(relations) == 1 and not isinstance(relations[0], str) else list(relations)
            if spec:
                self.get_db_criteria().merge_with({'with_': spec})
        return self

    def together(self) -> 'ActiveRecord':
        self.get_db_criteria().together = True
        return self

    def get_table_alias(self, quote: bool = False, check_scopes: bool = True) -> str:
        criteria = self.get_db_criteria(False) if check_scopes else None
        alias = criteria.alias if criteria is not None and criteria.alias else self._alias
        return self.get_db().adapter.quote_simple_name(alias) if quote else alias

    def set_table_alias(self, alias: str) -> None:
        self._alias = alias

    # ----- behaviors & events -----
    def attach_behaviors(self, behaviors: Mapping[str, Any]) -> None:
        for name, behavior in (behaviors or {}).items():
            self.attach_behavior(name, behavior)

    def attach_behavior(self, name: str, behavior: Any) -> Behavior:
        if isinstance(behavior, tuple):
            klass, config = behavior
            behavior = klass(**dict(config or {}))
        elif isinstance(behavior, type):
            behavior = behavior()
        if not isinstance(behavior, Behavior):
            raise TypeError(f"Behavior {name!r} must be a Behavior, got {behavior!r}")
        self.detach_behavior(name)
        behavior.attach(self)
        self._behaviors[name] = behavior
        return behavior

    def detach_behavior(self, name: str) -> Optional[Behavior]:
        behavior = self._behaviors.pop(name, None)
        if behavior is not None:
            behavior.detach(self)
        return behavior

    def detach_behaviors(self) -> None:
        for name in list(self._behaviors):
            self.detach_behavior(name)

    def as_behavior(self, name: str) -> Optional[Behavior]:
        return self._behaviors.get(name)

    def enable_behavior(self, name: str) -> None:
        if name in self._behaviors:
            self._behaviors[name].enabled = True

    def disable_behavior(self, name: str) -> None:
        if name in self._behaviors:
            self._behaviors[name].enabled = False

    def on(self, event: Any, handler: Callable[[ModelEvent], Any]) -> None:
        """Register ``handler`` for a lifecycle event; handlers run in registration order."""
        self._events.add(event, handler)

    def off(self, event: Any, handler: Callable[[ModelEvent], Any]) -> bool:
        return self._events.remove(event, handler)

    def has_event_handler(self, event: Any) -> bool:
        return self._events.has(event)

    def raise_event(self, event: ModelEvent) -> ModelEvent:
        return self._events.dispatch(event)

    def _fire(self, kind: LifecycleEvent, criteria: Any = None) -> bool:
        if not self._events.has(kind):
            return True
        event = self.raise_event(ModelEvent(self, kind, criteria=criteria))
        return event.is_valid

    def after_construct(self) -> None:
        self._fire(LifecycleEvent.AFTER_CONSTRUCT)

    def before_validate(self) -> bool:
        return self._fire(LifecycleEvent.BEFORE_VALIDATE)

    def after_validate(self) -> None:
        self._fire(LifecycleEvent.AFTER_VALIDATE)

    def before_save(self) -> bool:
        return self._fire(LifecycleEvent.BEFORE_SAVE)

    def after_save(self) -> None:
        self._fire(LifecycleEvent.AFTER_SAVE)

    def before_delete(self) -> bool:
        return self._fire(LifecycleEvent.BEFORE_DELETE)

    def after_delete(self) -> None:
        self._fire(LifecycleEvent.AFTER_DELETE)

    def before_find(self, criteria: Optional[Criteria] = None) -> bool:
        return self._fire(LifecycleEvent.BEFORE_FIND, criteria)

    def after_find(self) -> None:
        self._fire(LifecycleEvent.AFTER_FIND)

    # ----- validation -----
    def get_validator_list(self) -> List[Validator]:
        if self._validators is None:
            self._validators = [create_validator(rule, self) for rule in self.rules()]
        return self._validators

    def get_validators(self, attribute: Optional[str] = None) -> List[Validator]:
        return [
            v for v in self.get_validator_list()
            if v.applies_to(self._scenario) and (attribute is None or attribute in v.attributes)
        ]

    def get_safe_attribute_names(self) -> List[str]:
        names: List[str] = []
        for v in self.get_validators():
            if v.safe:
                names.extend(a for a in v.attributes if a not in names)
        return names

    def is_attribute_required(self, attribute: str) -> bool:
        from .core.validation import RequiredValidator
        return any(isinstance(v, RequiredValidator) for v in self.get_validators(attribute))

    def is_attribute_safe(self, attribute: str) -> bool:
        return attribute in self.get_safe_attribute_names()

    def validate(self, attributes: Optional[List[str]] = None, clear_errors: bool = True) -> bool:
        if clear_errors:
            self.clear_errors()
        if not self.before_validate():
            return False
        for validator in self.get_validators():
            validator.validate(self, attributes)
        self.after_validate()
        return not self.has_errors()

    def has_errors(self, attribute: Optional[str] = None) -> bool:
        if attribute is None:
            return bool(self._errors)
        return attribute in self._errors

    def get_errors(self, attribute: Optional[str] = None) -> Any:
        if attribute is None:
            return {k: list(v) for k, v in self._errors.items()}
        return list(self._errors.get(attribute, []))

    def get_error(self, attribute: str) -> Optional[str]:
        errors = self._errors.get(attribute)
        return errors[0] if errors else None

    def add_error(self, attribute: str, error: str) -> None:
        self._errors.setdefault(attribute, []).append(error)

    def add_errors(self, errors: Mapping[str, Any]) -> None:
        for attribute, error in errors.items():
            if isinstance(error, (list, tuple)):
                for e in error:
                    self.add_error(attribute, e)
            else:
                self.add_error(attribute, error)

    def clear_errors(self, attribute: Optional[str] = None) -> None:
        if attribute is None:
            self._errors = {}
        else:
            self._errors.pop(attribute, None)

    # ----- persistence -----
    def save(self, run_validation: bool = True, attributes: Optional[List[str]] = None) -> bool:
        if run_validation and not self.validate(attributes):
            return False
        return self.insert(attributes) if self._new else self.update(attributes)

    def insert(self, attributes: Optional[List[str]] = None) -> bool:
        if not self._new:
            raise StateError('The active record cannot be inserted to database because it is not new.')
        if not self.before_save():
            return False
        logger.debug("%s.insert()", type(self).__name__)
        builder = self.get_command_builder()
        table = self.get_table_schema()
        command = builder.create_insert_command(table, self.get_attributes(attributes))
        if not command.execute():
            return False
        if table.sequence_name is not None:
            for pk in table.primary_key_names():
                if getattr(self, pk) is None:
                    setattr(self, pk, builder.get_last_insert_id(table))
                    break
        self._pk = self.get_primary_key()
        self.after_save()
        self._new = False
        self._scenario = 'update'
        return True

    def update(self, attributes: Optional[List[str]] = None) -> bool:
        if self._new:
            raise StateError('The active record cannot be updated because it is new.')
        if not self.before_save():
            return False
        logger.debug("%s.update()", type(self).__name__)
        if self._pk is None:
            self._pk = self.get_primary_key()
        self.update_by_pk(self._pk, self.get_attributes(attributes))
        self._pk = self.get_primary_key()
        self.after_save()
        return True

    def save_attributes(self, attributes: Union[Mapping[str, Any], List[str]]) -> bool:
        """Update the given columns directly, without validation or events."""
        if self._new:
            raise StateError('The active record cannot be updated because it is new.')
        logger.debug("%s.save_attributes()", type(self).__name__)
        values: Dict[str, Any] = {}
        if isinstance(attributes, Mapping):
            for name, value in attributes.items():
                setattr(self, name, value)
                values[name] = value
        else:
            for name in attributes:
                values[name] = getattr(self, name)
        if self._pk is None:
            self._pk = self.get_primary_key()
        if self.update_by_pk(self._pk, values) > 0:
            self._pk = self.get_primary_key()
            return True
        return False

    def save_counters(self, counters: Mapping[str, Any]) -> bool:
        logger.debug("%s.save_counters()", type(self).__name__)
        builder = self.get_command_builder()
        table = self.get_table_schema()
        criteria = builder.create_pk_criteria(table, self._pk if self._pk is not None else self.get_primary_key())
        if builder.create_update_counter_command(table, counters, criteria).execute():
            for name, value in counters.items():
                setattr(self, name, (getattr(self, name) or 0) + value)
            return True
        return False

    def delete(self) -> bool:
        if self._new:
            raise StateError('The active record cannot be deleted because it is new.')
        logger.debug("%s.delete()", type(self).__name__)
        if not self.before_delete():
            return False
        result = self.delete_by_pk(self.get_primary_key()) > 0
        if result:
            self.after_delete()
        return result

    def refresh(self) -> bool:
        """Reload column values from the database and drop cached related records."""
        logger.debug("%s.refresh()", type(self).__name__)
        if self._new:
            return False
        record = self.find_by_pk(self.get_primary_key())
        if record is None:
            return False
        self._attributes = {}
        self._related = {}
        for name in self.get_metadata().columns:
            if self.is_declared_field(name):
                object.__setattr__(self, name, getattr(record, name))
            else:
                self._attributes[name] = record.get_attribute(name)
        return True

    # ----- finding -----
    def _query(self, criteria: Criteria, all: bool = False) -> Any:
        if not self.before_find(criteria):
            self._c = None
            return [] if all else None
        criteria = self.apply_scopes(criteria)
        if not criteria.with_:
            if not all:
                criteria.limit = 1
            command = self.get_command_builder().create_find_command(self.get_table_schema(), criteria, self.get_table_alias(check_scopes=False))
            if all:
                return self.populate_records(command.query_all(), True, criteria.index)
            return self.populate_record(command.query_row())
        return self.get_db().create_finder().query(self, criteria, all)

    def _pk_prefix(self) -> str:
        return self.get_table_alias(quote=True) + '.'

    def find(self, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> Optional['ActiveRecord']:
        logger.debug("%s.find()", type(self).__name__)
        return self._query(self.get_command_builder().create_criteria(condition, params))

    def find_all(self, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> List['ActiveRecord']:
        logger.debug("%s.find_all()", type(self).__name__)
        return self._query(self.get_command_builder().create_criteria(condition, params), True)

    def find_by_pk(self, pk: Any, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> Optional['ActiveRecord']:
        logger.debug("%s.find_by_pk()", type(self).__name__)
        criteria = self.get_command_builder().create_pk_criteria(self.get_table_schema(), pk, condition, params, self._pk_prefix())
        return self._query(criteria)

    def find_all_by_pk(self, pk: Any, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> List['ActiveRecord']:
        logger.debug("%s.find_all_by_pk()", type(self).__name__)
        criteria = self.get_command_builder().create_pk_criteria(self.get_table_schema(), pk, condition, params, self._pk_prefix())
        return self._query(criteria, True)

    def find_by_attributes(self, attributes: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> Optional['ActiveRecord']:
        logger.debug("%s.find_by_attributes()", type(self).__name__)
        criteria = self.get_command_builder().create_column_criteria(self.get_table_schema(), attributes, condition, params, self._pk_prefix())
        return self._query(criteria)

    def find_all_by_attributes(self, attributes: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> List['ActiveRecord']:
        logger.debug("%s.find_all_by_attributes()", type(self).__name__)
        criteria = self.get_command_builder().create_column_criteria(self.get_table_schema(), attributes, condition, params, self._pk_prefix())
        return self._query(criteria, True)

    def find_by_sql(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional['ActiveRecord']:
        logger.debug("%s.find_by_sql()", type(self).__name__)
        records = self._find_by_sql(sql, params, False)
        return records[0] if records else None

    def find_all_by_sql(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List['ActiveRecord']:
        logger.debug("%s.find_all_by_sql()", type(self).__name__)
        return self._find_by_sql(sql, params, True)

    def _find_by_sql(self, sql: str, params: Optional[Mapping[str, Any]], all: bool) -> List['ActiveRecord']:
        if not self.before_find():
            self._c = None
            return []
        command = self.get_command_builder().create_sql_command(sql, params)
        if all:
            records = self.populate_records(command.query_all())
        else:
            record = self.populate_record(command.query_row())
            records = [record] if record is not None else []
        criteria = self.get_db_criteria(False)
        self._c = None
        if criteria is not None and criteria.with_ and records:
            self.get_db().create_finder().find_with(records, criteria.with_)
        return records

    def count(self, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.count()", type(self).__name__)
        return self._count(self.get_command_builder().create_criteria(condition, params))

    def count_by_attributes(self, attributes: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.count_by_attributes()", type(self).__name__)
        criteria = self.get_command_builder().create_column_criteria(self.get_table_schema(), attributes, condition, params, self._pk_prefix())
        return self._count(criteria)

    def _count(self, criteria: Criteria) -> int:
        if not self.before_find(criteria):
            self._c = None
            return 0
        criteria = self.apply_scopes(criteria)
        if not criteria.with_:
            command = self.get_command_builder().create_count_command(self.get_table_schema(), criteria, self.get_table_alias(check_scopes=False))
            return int(command.query_scalar() or 0)
        return int(self.get_db().create_finder().count(self, criteria))

    def count_by_sql(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.count_by_sql()", type(self).__name__)
        return int(self.get_command_builder().create_sql_command(sql, params).query_scalar() or 0)

    def exists(self, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> bool:
        logger.debug("%s.exists()", type(self).__name__)
        builder = self.get_command_builder()
        criteria = builder.create_criteria(condition, params)
        if not self.before_find(criteria):
            self._c = None
            return False
        criteria.select = '1'
        criteria.limit = 1
        criteria = self.apply_scopes(criteria)
        if not criteria.with_:
            return builder.create_find_command(self.get_table_schema(), criteria, self.get_table_alias(check_scopes=False)).query_row() is not None
        criteria.select = '*'
        return self.get_db().create_finder().count(self, criteria) > 0

    # ----- bulk commands -----
    def update_by_pk(self, pk: Any, attributes: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.update_by_pk()", type(self).__name__)
        builder = self.get_command_builder()
        table = self.get_table_schema()
        criteria = builder.create_pk_criteria(table, pk, condition, params)
        return builder.create_update_command(table, attributes, criteria).execute()

    def update_all(self, attributes: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.update_all()", type(self).__name__)
        builder = self.get_command_builder()
        criteria = builder.create_criteria(condition, params)
        return builder.create_update_command(self.get_table_schema(), attributes, criteria).execute()

    def update_counters(self, counters: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.update_counters()", type(self).__name__)
        builder = self.get_command_builder()
        criteria = builder.create_criteria(condition, params)
        return builder.create_update_counter_command(self.get_table_schema(), counters, criteria).execute()

    def delete_by_pk(self, pk: Any, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.delete_by_pk()", type(self).__name__)
        builder = self.get_command_builder()
        table = self.get_table_schema()
        criteria = builder.create_pk_criteria(table, pk, condition, params)
        return builder.create_delete_command(table, criteria).execute()

    def delete_all(self, condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.delete_all()", type(self).__name__)
        builder = self.get_command_builder()
        criteria = builder.create_criteria(condition, params)
        return builder.create_delete_command(self.get_table_schema(), criteria).execute()

    def delete_all_by_attributes(self, attributes: Mapping[str, Any], condition: Any = '', params: Optional[Mapping[str, Any]] = None) -> int:
        logger.debug("%s.delete_all_by_attributes()", type(self).__name__)
        builder = self.get_command_builder()
        table = self.get_table_schema()
        criteria = builder.create_column_criteria(table, attributes, condition, params)
        return builder.create_delete_command(table, criteria).execute()

    # ----- population -----
    def instantiate(self, attributes: Mapping[str, Any]) -> 'ActiveRecord':
        """Create the record instance for a result row; override for single-table inheritance."""
        return type(self)(scenario=None)

    def populate_record(self, attributes: Optional[Mapping[str, Any]], call_after_find: bool = True) -> Optional['ActiveRecord']:
        if attributes is None:
            return None
        record = self.instantiate(attributes)
        record._scenario = 'update'
        record.init()
        columns = record.get_metadata().columns
        for name, value in attributes.items():
            if record.is_declared_field(name):
                object.__setattr__(record, name, value)
            elif name in columns:
                record._attributes[name] = value
        record._pk = record.get_primary_key()
        record.attach_behaviors(record.behaviors())
        if call_after_find:
            record.after_find()
        return record

    def populate_records(self, data: List[Mapping[str, Any]], call_after_find: bool = True, index: Optional[str] = None) -> Any:
        records: Any = [] if index is None else {}
        for attributes in data:
            record = self.populate_record(attributes, call_after_find)
            if record is None:
                continue
            if index is None:
                records.append(record)
            else:
                records[getattr(record, index)] = record
        return records
