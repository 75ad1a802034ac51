from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

VariableListener = Callable[[str, Any], None]


class FlowContext:
    """Run-scoped storage slots and named variables shared between actors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._storage: Dict[str, Any] = {}
        self._variables: Dict[str, Any] = {}
        self._listeners: List[VariableListener] = []

    # storage
    def put(self, name: str, value: Any) -> None:
        with self._lock:
            self._storage[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._storage.get(name, default)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._storage

    def remove(self, name: str) -> Optional[Any]:
        with self._lock:
            return self._storage.pop(name, None)

    # variables
    def add_listener(self, listener: VariableListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: VariableListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def variable(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._variables.get(name, default)

    def set_variable(self, name: str, value: Any) -> None:
        with self._lock:
            self._variables[name] = value
            listeners = list(self._listeners)
        for listener in listeners:
            listener(name, value)
