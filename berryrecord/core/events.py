from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List

__all__ = ['LifecycleEvent', 'ModelEvent', 'EventHandlers', 'HooksDescriptor', 'hooks']

Handler = Callable[['ModelEvent'], Any]


class LifecycleEvent(Enum):
    AFTER_CONSTRUCT = 'after_construct'
    BEFORE_VALIDATE = 'before_validate'
    AFTER_VALIDATE = 'after_validate'
    BEFORE_SAVE = 'before_save'
    AFTER_SAVE = 'after_save'
    BEFORE_DELETE = 'before_delete'
    AFTER_DELETE = 'after_delete'
    BEFORE_FIND = 'before_find'
    AFTER_FIND = 'after_find'

    @classmethod
    def parse(cls, value: Any) -> 'LifecycleEvent':
        if isinstance(value, LifecycleEvent):
            return value
        return cls(str(value).lower())


@dataclass
class ModelEvent:
    """Outcome object passed to every lifecycle handler.

    Attributes:
        sender: The record raising the event.
        event: Which lifecycle event is being dispatched.
        is_valid: Cleared by a before-handler to cancel the operation.
        handled: Set by a handler to stop the remaining handlers.
        criteria: For BEFORE_FIND, the criteria about to be executed; handlers may mutate it.
    """

    sender: Any
    event: LifecycleEvent
    is_valid: bool = True
    handled: bool = False
    criteria: Any = None

    def cancel(self) -> None:
        self.is_valid = False


class EventHandlers:
    """Ordered handler lists keyed by :class:`LifecycleEvent`.

    Handlers run in registration order. Dispatch stops at the first handler
    that marks the event handled or cancels it.
    """

    def __init__(self):
        self._handlers: Dict[LifecycleEvent, List[Handler]] = {}

    def add(self, event: Any, handler: Handler) -> None:
        if not callable(handler):
            raise TypeError(f"Event handler for {event!r} must be callable, got {handler!r}")
        self._handlers.setdefault(LifecycleEvent.parse(event), []).append(handler)

    def remove(self, event: Any, handler: Handler) -> bool:
        lst = self._handlers.get(LifecycleEvent.parse(event))
        if not lst or handler not in lst:
            return False
        lst.remove(handler)
        return True

    def has(self, event: Any) -> bool:
        return bool(self._handlers.get(LifecycleEvent.parse(event)))

    def handlers(self, event: Any) -> List[Handler]:
        return list(self._handlers.get(LifecycleEvent.parse(event), ()))

    def dispatch(self, event: ModelEvent) -> ModelEvent:
        for handler in self.handlers(event.event):
            handler(event)
            if event.handled or not event.is_valid:
                break
        return event


# --- Public hook descriptor to attach lifecycle callbacks declaratively ----
class HooksDescriptor:
    """Descriptor that registers lifecycle handlers on a record class.

    Usage inside a record class body:

        from app.records.audit import stamp_times, write_audit

        class Post(ActiveRecord):
            hooks = hooks(before_save=stamp_times, after_save=[write_audit])

    Each keyword is a lifecycle event name; values are a callable or a list of
    callables receiving the :class:`ModelEvent`. Several descriptors on the
    same class accumulate in declaration order, after the hooks inherited from
    base classes.
    """

    def __init__(self, **callbacks: Any):
        self._callbacks: Dict[LifecycleEvent, List[Handler]] = {}
        for name, value in callbacks.items():
            self._callbacks[LifecycleEvent.parse(name)] = self._iter_funcs(value)

    def _iter_funcs(self, val: Any) -> List[Handler]:
        if val is None:
            return []
        if isinstance(val, (list, tuple)):
            funcs = list(val)
        else:
            funcs = [val]
        for f in funcs:
            if not callable(f):
                raise TypeError(f"Hook {f!r} is not callable")
        return funcs

    def __set_name__(self, owner, name):
        existing: Dict[LifecycleEvent, tuple] = dict(owner.__dict__.get('__record_hooks__') or {})
        if not existing:
            # start from the hooks inherited from base classes
            for base in reversed(owner.__mro__[1:]):
                for ev, funcs in (base.__dict__.get('__record_hooks__') or {}).items():
                    existing[ev] = tuple(existing.get(ev, ())) + tuple(f for f in funcs if f not in existing.get(ev, ()))
        for ev, funcs in self._callbacks.items():
            current = list(existing.get(ev, ()))
            for f in funcs:
                if f not in current:
                    current.append(f)
            existing[ev] = tuple(current)
        setattr(owner, '__record_hooks__', existing)

    def __get__(self, instance, owner=None):
        return self


def hooks(**callbacks: Any) -> HooksDescriptor:
    """Return a descriptor that registers lifecycle handlers when set on a record class.

    Example:
        class Post(ActiveRecord):
            hooks = hooks(before_save=check_author, after_find=[decode_body])
    """
    return HooksDescriptor(**callbacks)


def class_hooks(cls: type) -> Dict[LifecycleEvent, tuple]:
    """Hooks registered on ``cls`` (or inherited from its closest declaring base)."""
    for klass in cls.__mro__:
        found = klass.__dict__.get('__record_hooks__')
        if found is not None:
            return dict(found)
    return {}


def iter_class_hooks(cls: type) -> Iterable[tuple]:
    for ev, funcs in class_hooks(cls).items():
        for f in funcs:
            yield ev, f
