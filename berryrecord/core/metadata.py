from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Dict, Mapping, Optional, Type

from ..errors import ConfigurationError, SchemaMismatchError
from .relations import RelationDeclaration, RelationDescriptor, compile_relation
from .schema import ColumnSchema, TableSchema

__all__ = ['ClassMetadata', 'MetadataRegistry', 'registry']

logger = logging.getLogger(__name__)


def _declared_relations(record_cls: type) -> Dict[str, RelationDeclaration]:
    """Relation declarations placed as class attributes, base classes first."""
    out: Dict[str, RelationDeclaration] = {}
    for klass in reversed(record_cls.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, RelationDeclaration):
                out[name] = value
            elif name in out:
                # redefined by a subclass as something else
                del out[name]
    return out


class ClassMetadata:
    """Schema, relations and attribute defaults of one record class.

    Built once per class by :class:`MetadataRegistry`; treat as read-only after
    construction.
    """

    def __init__(self, record_cls: type, schema_provider: Any):
        self.record_class = record_cls
        table_name = record_cls.table_name()
        table = schema_provider.get_table(table_name)
        if table is None:
            raise SchemaMismatchError(
                f"The table {table_name!r} for active record class {record_cls.__name__!r} cannot be found in the database."
            )
        table = copy.deepcopy(table)
        if table.primary_key is None:
            table.primary_key = record_cls.primary_key()
            for name in table.primary_key_names():
                col = table.columns.get(name)
                if col is not None:
                    col.is_primary_key = True
        self.table_schema: TableSchema = table
        self.columns: Dict[str, ColumnSchema] = table.columns
        self.attribute_defaults: Dict[str, Any] = {
            name: column.default_value
            for name, column in table.columns.items()
            if not column.is_primary_key and column.default_value is not None
        }
        self.relations: Dict[str, RelationDescriptor] = {}
        declared = _declared_relations(record_cls)
        hooked = record_cls.relations() or {}
        both = sorted(set(declared) & set(hooked))
        if both:
            raise ConfigurationError(f"{record_cls.__name__} declares relation(s) twice: {', '.join(both)}")
        for name, decl in declared.items():
            self.add_relation(name, decl)
        for name, config in hooked.items():
            self.add_relation(name, config)
        logger.debug("built metadata for %s: table=%s relations=%s", record_cls.__name__, table.name, list(self.relations))

    def add_relation(self, name: str, config: Any) -> RelationDescriptor:
        owner = self.record_class.__name__
        if isinstance(config, RelationDeclaration):
            descriptor = config.build(owner, name)
        elif isinstance(config, RelationDescriptor):
            descriptor = config.copy()
            descriptor.name = name
        elif isinstance(config, (tuple, list)):
            if len(config) < 3:
                raise ConfigurationError(
                    f"Active record {owner!r} has an invalid configuration for relation {name!r}. "
                    "It must specify the relation type, the related active record class and the foreign key."
                )
            options = config[3] if len(config) > 3 else {}
            if not isinstance(options, Mapping):
                raise ConfigurationError(f"Options of relation {owner}.{name} must be a mapping")
            descriptor = compile_relation(owner, name, config[0], config[1], config[2], options)
        else:
            raise ConfigurationError(f"Unsupported declaration for relation {owner}.{name}: {config!r}")
        self.relations[name] = descriptor
        return descriptor

    def has_relation(self, name: str) -> bool:
        return name in self.relations


class MetadataRegistry:
    """Process-wide registry of record classes, their metadata and static finder instances.

    Metadata is built at most once per class under a lock and then published
    read-only; :meth:`refresh` rebuilds it explicitly.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._metadata: Dict[type, ClassMetadata] = {}
        self._models: Dict[type, Any] = {}
        self._classes: Dict[str, type] = {}

    def register_class(self, record_cls: type) -> None:
        with self._lock:
            self._classes[record_cls.__name__] = record_cls
            self._classes[f"{record_cls.__module__}.{record_cls.__qualname__}"] = record_cls

    def resolve_class(self, ref: Any) -> Type[Any]:
        if isinstance(ref, type):
            return ref
        cls = self._classes.get(str(ref))
        if cls is None:
            raise ConfigurationError(f"Unknown active record class {ref!r}")
        return cls

    def get(self, record_cls: type) -> ClassMetadata:
        md = self._metadata.get(record_cls)
        if md is not None:
            return md
        with self._lock:
            md = self._metadata.get(record_cls)
            if md is None:
                md = ClassMetadata(record_cls, record_cls.get_db().schema)
                self._metadata[record_cls] = md
            return md

    def refresh(self, record_cls: type) -> ClassMetadata:
        with self._lock:
            self._metadata.pop(record_cls, None)
            return self.get(record_cls)

    def model(self, record_cls: type) -> Any:
        inst = self._models.get(record_cls)
        if inst is not None:
            return inst
        with self._lock:
            inst = self._models.get(record_cls)
            if inst is None:
                inst = record_cls(scenario=None)
                inst.attach_behaviors(inst.behaviors())
                self._models[record_cls] = inst
            return inst

    def clear(self) -> None:
        """Forget built metadata and static instances (classes stay registered)."""
        with self._lock:
            self._metadata.clear()
            self._models.clear()


registry = MetadataRegistry()
