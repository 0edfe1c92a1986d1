"""Observable values: boxed state that reports its reads and writes.

A Property holds one value and fires GET, SET, and UPDATE events to observers
registered for those kinds. Observers run synchronously, in registration
order, on the thread doing the read or write. The database uses a SET/UPDATE
observer to notice changes without polling.

Identity is the key: Property does not define __eq__, so two properties with
equal contents are distinct dict keys.

A Property built with a Mutator is read-only from the outside. Only that
Mutator may write it:

    mutator = Mutator()
    health = Property(100, mutator=mutator)

    health.get()              # 100
    mutator.set(health, 80)   # ok
    health.set(0)             # AccessViolation
"""

from __future__ import annotations

import copy
import threading
from enum import Enum
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class EventType(Enum):
    GET = "get"
    SET = "set"
    UPDATE = "update"


Observer = Callable[["Property", EventType], None]


class AccessViolation(PermissionError):
    """A write was attempted without the capability that owns the property."""


class Property(Generic[T]):
    """A single observable value."""

    __slots__ = ("_value", "_mutator", "_copy_on_read", "_observers", "_lock")

    def __init__(
        self,
        value: T,
        *,
        mutator: Mutator | None = None,
        copy_on_read: bool = False,
    ) -> None:
        self._value = value
        self._mutator = mutator
        self._copy_on_read = copy_on_read
        # event kind -> observers in registration order
        self._observers: dict[EventType, list[Observer]] = {kind: [] for kind in EventType}
        self._lock = threading.Lock()

    @property
    def mutable(self) -> bool:
        """True when anyone may call set(); False when bound to a Mutator."""
        return self._mutator is None

    @property
    def copy_on_read(self) -> bool:
        return self._copy_on_read

    def get(self) -> T:
        """Read the value. Returns a deep copy when built with copy_on_read."""
        value = copy.deepcopy(self._value) if self._copy_on_read else self._value
        self._notify(EventType.GET)
        return value

    def set(self, value: T) -> None:
        """Replace the value and fire SET."""
        if self._mutator is not None:
            raise AccessViolation("Property is read-only; write it through its Mutator")
        self._set_internal(value)

    def update(self) -> None:
        """Signal that the held value was changed in place.

        Usage:
            names = Property([])
            names.get().append("ada")
            names.update()  # observers see UPDATE; the database re-saves
        """
        self._notify(EventType.UPDATE)

    def _set_internal(self, value: T) -> None:
        self._value = value
        self._notify(EventType.SET)

    def _get_internal(self) -> T:
        self._notify(EventType.GET)
        return self._value

    # --- Observers ---

    def add_observer(self, observer: Observer, *types: EventType) -> None:
        """Register observer for the given event kinds.

        observer(prop, event_type) is called synchronously after each event.
        """
        if not types:
            raise ValueError("add_observer() needs at least one EventType")
        with self._lock:
            for kind in types:
                self._observers[kind].append(observer)

    def remove_observer(self, observer: Observer) -> None:
        """Remove observer from every event kind. Removing twice is a no-op."""
        with self._lock:
            for observers in self._observers.values():
                while observer in observers:
                    observers.remove(observer)

    def _notify(self, kind: EventType) -> None:
        with self._lock:
            observers = tuple(self._observers[kind])
        for observer in observers:
            observer(self, kind)

    def __repr__(self) -> str:
        flags = "" if self._mutator is None else ", read-only"
        return f"Property({self._value!r}{flags})"


class Mutator:
    """Write capability for properties constructed with mutator=self.

    Also accepted for directly mutable properties, so owners can treat both
    kinds the same way.
    """

    __slots__ = ()

    def _check(self, prop: Property) -> None:
        if prop._mutator is not None and prop._mutator is not self:
            raise AccessViolation("Mutator does not own this property")

    def get(self, prop: Property[T]) -> T:
        """Internal value, never a copy, even for copy_on_read properties."""
        self._check(prop)
        return prop._get_internal()

    def set(self, prop: Property[T], value: T) -> T:
        self._check(prop)
        prop._set_internal(value)
        return value

    def update(self, prop: Property) -> None:
        self._check(prop)
        prop.update()
