"""
Thread-safe registries of live resource objects.

Resource wrappers register themselves here when created and deregister when
released, so the checker can ask "which objects of this kind are alive"
without walking the whole heap. Entries are normally held weakly so an object that
is garbage collected drops out on its own; a strong registry keeps objects
alive until they are explicitly released.

Concrete purpose: one lock-guarded mapping per resource kind.
Easy to use correctly: register() on creation, discard() on release.
Hard to use incorrectly: reads take a snapshot copy, never a live view.
"""
import weakref
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

import fasteners

T = TypeVar("T")


class ObjectRegistry(Generic[T]):
    """Mapping of live objects to per-object metadata, weak by default."""

    def __init__(self, name: str, weak: bool = True):
        self.name = name
        self._entries: Dict[T, Any] = weakref.WeakKeyDictionary() if weak else {}
        self._lock = fasteners.ReaderWriterLock()

    def register(self, obj: T, info: Any = None) -> T:
        with self._lock.write_lock():
            self._entries[obj] = info
        return obj

    def discard(self, obj: T) -> None:
        with self._lock.write_lock():
            self._entries.pop(obj, None)

    def info(self, obj: T) -> Optional[Any]:
        with self._lock.read_lock():
            return self._entries.get(obj)

    def __contains__(self, obj: object) -> bool:
        with self._lock.read_lock():
            try:
                return obj in self._entries
            except TypeError:
                return False

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._entries)

    def items(self) -> List[Tuple[T, Any]]:
        """Copy of (object, info) pairs for objects still alive."""
        with self._lock.read_lock():
            return list(self._entries.items())

    def objects(self) -> List[T]:
        return [obj for obj, _ in self.items()]

    def clear(self) -> None:
        with self._lock.write_lock():
            self._entries.clear()

    def __repr__(self) -> str:
        return f"<ObjectRegistry {self.name} entries={len(self)}>"


class Counter:
    """Monotonic counter safe to bump from any thread."""

    def __init__(self):
        self._value = 0
        self._lock = fasteners.ReaderWriterLock()

    def increment(self) -> int:
        with self._lock.write_lock():
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock.read_lock():
            return self._value
