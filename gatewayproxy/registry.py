"""Thread-safe registers keyed by name, optionally grouped in namespaces."""

from __future__ import annotations

import threading
from typing import Any

_MISSING = object()


class Untyped:
    """A simple name-to-value register, safe for concurrent access."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.RLock()

    def register(self, name: str, value: Any) -> None:
        """Store ``value`` under ``name``, replacing any previous value."""
        with self._lock:
            self._data[name] = value

    def get(self, name: str, default: Any = _MISSING) -> Any:
        """Return the value stored under ``name``.

        Raises KeyError when the name is unknown and no default is given.
        """
        with self._lock:
            if name in self._data:
                return self._data[name]
        if default is _MISSING:
            raise KeyError(name)
        return default

    def clone(self) -> dict[str, Any]:
        """Return a snapshot of the register."""
        with self._lock:
            return dict(self._data)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class Namespaced:
    """A register of values stored under a namespace and a name."""

    def __init__(self) -> None:
        self._data = Untyped()
        self._lock = threading.RLock()

    def get(self, namespace: str) -> Untyped | None:
        """Return the register of ``namespace``, or None if there is none."""
        value = self._data.get(namespace, None)
        return value if isinstance(value, Untyped) else None

    def register(self, namespace: str, name: str, value: Any) -> None:
        """Store ``value`` under ``name`` in ``namespace``, creating it if needed."""
        with self._lock:
            registry = self.get(namespace)
            if registry is None:
                registry = Untyped()
                self._data.register(namespace, registry)
            registry.register(name, value)

    def add_namespace(self, namespace: str) -> None:
        """Add an empty register for ``namespace`` unless it already exists."""
        with self._lock:
            if self.get(namespace) is None:
                self._data.register(namespace, Untyped())