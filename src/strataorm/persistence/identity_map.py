"""
Identity map ensuring a single in-memory instance per row.
"""

from __future__ import annotations

from threading import RLock
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Type

from ..errors import IdentityConflictError


class IdentityKey(NamedTuple):
    """
    ``(entity type, primary-key tuple)``; addresses exactly one logical row.
    """

    entity_type: Type
    values: Tuple[Any, ...]

    @classmethod
    def of(cls, entity_type: Type, values: Any) -> "IdentityKey":
        if not isinstance(values, tuple):
            values = (values,)
        return cls(entity_type, values)

    @property
    def complete(self) -> bool:
        return all(value is not None for value in self.values)


class IdentityMap:
    """
    Stores entities keyed by :class:`IdentityKey` for one session.
    """

    def __init__(self) -> None:
        self._store: Dict[IdentityKey, Any] = {}
        self._lock = RLock()

    def lookup(self, key: IdentityKey) -> Optional[Any]:
        with self._lock:
            return self._store.get(key)

    def register(self, key: IdentityKey, entity: Any) -> None:
        with self._lock:
            existing = self._store.get(key)
            if existing is not None and existing is not entity:
                raise IdentityConflictError(key)
            self._store[key] = entity

    def evict(self, key: IdentityKey) -> Optional[Any]:
        with self._lock:
            return self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def values(self) -> List[Any]:
        with self._lock:
            return list(self._store.values())

    def keys(self) -> List[IdentityKey]:
        with self._lock:
            return list(self._store.keys())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
