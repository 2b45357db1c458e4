from __future__ import annotations

from typing import Any, Dict, Protocol, Tuple, runtime_checkable

from .events import LifecycleEvent, ModelEvent

__all__ = ['Capability', 'Behavior', 'RecordBehavior']


@runtime_checkable
class Capability(Protocol):
    """Property access contract consulted as the record's last accessor tier."""

    def get_property(self, name: str) -> Tuple[Any, bool]:
        ...

    def set_property(self, name: str, value: Any) -> bool:
        ...


class Behavior:
    """Extension object attached to a record.

    A behavior contributes the properties listed in ``exposes`` (read through
    :meth:`get_property`, written through :meth:`set_property`) and subscribes
    the methods named by :meth:`events` to the owner's lifecycle events.
    Disabled behaviors neither answer property lookups nor receive events.
    """

    exposes: Tuple[str, ...] = ()

    def __init__(self, **config: Any):
        self.owner: Any = None
        self._enabled = True
        self._subscribed: Dict[LifecycleEvent, Any] = {}
        for key, value in config.items():
            setattr(self, key, value)

    def events(self) -> Dict[LifecycleEvent, str]:
        return {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        value = bool(value)
        if value == self._enabled:
            return
        self._enabled = value
        if self.owner is None:
            return
        if value:
            self._subscribe(self.owner)
        else:
            self._unsubscribe(self.owner)

    def attach(self, owner: Any) -> None:
        self.owner = owner
        if self._enabled:
            self._subscribe(owner)

    def detach(self, owner: Any) -> None:
        self._unsubscribe(owner)
        self.owner = None

    def _subscribe(self, owner: Any) -> None:
        for event, method in self.events().items():
            handler = getattr(self, method)
            owner.on(event, handler)
            self._subscribed[LifecycleEvent.parse(event)] = handler

    def _unsubscribe(self, owner: Any) -> None:
        for event, handler in self._subscribed.items():
            owner.off(event, handler)
        self._subscribed = {}

    def get_property(self, name: str) -> Tuple[Any, bool]:
        if self._enabled and name in self.exposes:
            return getattr(self, name), True
        return None, False

    def set_property(self, name: str, value: Any) -> bool:
        if not self._enabled or name not in self.exposes:
            return False
        if callable(getattr(type(self), name, None)):
            return False
        setattr(self, name, value)
        return True


class RecordBehavior(Behavior):
    """Behavior subscribed to the persistence events of a record.

    Override any of the handler methods; each receives the :class:`ModelEvent`
    and may cancel a before-event with ``event.cancel()``.
    """

    def events(self) -> Dict[LifecycleEvent, str]:
        return {
            LifecycleEvent.BEFORE_SAVE: 'before_save',
            LifecycleEvent.AFTER_SAVE: 'after_save',
            LifecycleEvent.BEFORE_DELETE: 'before_delete',
            LifecycleEvent.AFTER_DELETE: 'after_delete',
            LifecycleEvent.BEFORE_FIND: 'before_find',
            LifecycleEvent.AFTER_FIND: 'after_find',
        }

    def before_save(self, event: ModelEvent) -> None:
        pass

    def after_save(self, event: ModelEvent) -> None:
        pass

    def before_delete(self, event: ModelEvent) -> None:
        pass

    def after_delete(self, event: ModelEvent) -> None:
        pass

    def before_find(self, event: ModelEvent) -> None:
        pass

    def after_find(self, event: ModelEvent) -> None:
        pass
