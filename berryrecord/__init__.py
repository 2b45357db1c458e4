"""BerryRecord public API and lazy exports.

Record classes import relation helpers from here at class-definition time,
so the heavier modules (record, finder, database) load on first attribute
access.

Exposes:
- ActiveRecord, Criteria, Database
- Relation helpers: relation, belongs_to, has_one, has_many, many_many, stat
- Events and behaviors: hooks, LifecycleEvent, ModelEvent, Behavior, RecordBehavior
- Validators: Validator, RequiredValidator, LengthValidator
- set_active_database / get_active_database
- Errors: BerryRecordError, ConfigurationError, SchemaMismatchError, StateError
"""
from __future__ import annotations

from .errors import BerryRecordError, ConfigurationError, SchemaMismatchError, StateError

_LAZY = {
    'ActiveRecord': 'record',
    'Database': 'database',
    'set_active_database': 'database',
    'get_active_database': 'database',
    'Criteria': 'core.criteria',
    'relation': 'core.relations',
    'belongs_to': 'core.relations',
    'has_one': 'core.relations',
    'has_many': 'core.relations',
    'many_many': 'core.relations',
    'stat': 'core.relations',
    'RelationKind': 'core.relations',
    'hooks': 'core.events',
    'LifecycleEvent': 'core.events',
    'ModelEvent': 'core.events',
    'Behavior': 'core.behaviors',
    'RecordBehavior': 'core.behaviors',
    'Validator': 'core.validation',
    'RequiredValidator': 'core.validation',
    'LengthValidator': 'core.validation',
    'registry': 'core.metadata',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(f"{__name__}.{module}"), name)


__all__ = [
    'ActiveRecord', 'Criteria', 'Database',
    'relation', 'belongs_to', 'has_one', 'has_many', 'many_many', 'stat', 'RelationKind',
    'hooks', 'LifecycleEvent', 'ModelEvent', 'Behavior', 'RecordBehavior',
    'Validator', 'RequiredValidator', 'LengthValidator',
    'set_active_database', 'get_active_database', 'registry',
    'BerryRecordError', 'ConfigurationError', 'SchemaMismatchError', 'StateError',
]
