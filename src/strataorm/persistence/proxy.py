"""
Placeholder objects standing in for relationships that have not been loaded.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ..errors import DetachedInstanceError
from ..mapping.descriptors import LoadStrategy, RelationshipDescriptor
from .state import InstanceState, ObjectState

UNLOADED = object()


class RelationshipProxy:
    """
    Deferred value of one relationship attribute.

    ``ensure_loaded()`` resolves the value through the owning session, writes
    it back onto the owner attribute and returns it. Once resolved the proxy
    keeps answering with the same value, even after its session closes.
    """

    __slots__ = ("_state", "relationship", "strategy", "_value")

    def __init__(self, state: InstanceState, relationship: RelationshipDescriptor, strategy: LoadStrategy) -> None:
        self._state = state
        self.relationship = relationship
        self.strategy = strategy
        self._value: Any = UNLOADED

    def __repr__(self) -> str:
        status = "loaded" if self.loaded else self.strategy.value
        return f"<RelationshipProxy {self._state.descriptor.name}.{self.relationship.name} ({status})>"

    @property
    def loaded(self) -> bool:
        return self._value is not UNLOADED

    @property
    def owner(self) -> Any:
        return self._state.entity

    def ensure_loaded(self) -> Any:
        if self.loaded:
            return self._value
        session = self._state.session
        if self._state.status is ObjectState.DETACHED or session is None or session.closed:
            raise DetachedInstanceError(
                f"Cannot load '{self._state.descriptor.name}.{self.relationship.name}': "
                "the owning entity is detached."
            )
        return session.loader.load_lazy(self)

    async def ensure_loaded_async(self) -> Any:
        if self.loaded:
            return self._value
        return await asyncio.to_thread(self.ensure_loaded)

    def _resolve(self, value: Any) -> Any:
        self._value = value
        return value


def relationship_value(entity: Any, relationship: RelationshipDescriptor) -> Any:
    """
    The in-memory value of a relationship attribute, or ``UNLOADED``.
    """
    value = getattr(entity, "__dict__", {}).get(relationship.name, UNLOADED)
    if isinstance(value, RelationshipProxy):
        return value._value
    return value


def resolve(value: Any) -> Any:
    """
    Return the related value whether or not it is still wrapped in a proxy.
    """
    if isinstance(value, RelationshipProxy):
        return value.ensure_loaded()
    return value
