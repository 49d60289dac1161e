from __future__ import annotations

import threading
from typing import FrozenSet, Set


class TypeRegistry:
    """
    Append-only set of classes the binary format may instantiate.

    Classes declared in a record's field annotations are resolved
    automatically; only values stored behind polymorphic fields (``Any``,
    ``object``, a base class) need to be registered here before loading.
    Registration is idempotent and there is no way to unregister.
    """

    def __init__(self) -> None:
        self._types: Set[type] = set()
        self._lock = threading.Lock()

    def register(self, *types: type) -> None:
        for t in types:
            if not isinstance(t, type):
                raise TypeError(f"register expects classes, got {t!r}")
        with self._lock:
            self._types.update(types)

    def types(self) -> FrozenSet[type]:
        with self._lock:
            return frozenset(self._types)

    def __contains__(self, item: object) -> bool:
        with self._lock:
            return item in self._types

    def __len__(self) -> int:
        with self._lock:
            return len(self._types)


# Process-wide registry used when a manager is not given its own.
default_registry = TypeRegistry()


def register_types(*types: type) -> None:
    """Register classes on the process-wide registry (must run on every start)."""
    default_registry.register(*types)
