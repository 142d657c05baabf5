"""
Per-entity session metadata: lifecycle state, snapshot and identity.
"""

from __future__ import annotations

import copy
import weakref
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..mapping.descriptors import EntityDescriptor
from .identity_map import IdentityKey

if TYPE_CHECKING:
    from .session import Session


STATE_ATTR = "_strata_state"


class ObjectState(str, Enum):
    TRANSIENT = "transient"
    PENDING = "pending"
    PERSISTENT_CLEAN = "persistent-clean"
    PERSISTENT_DIRTY = "persistent-dirty"
    REMOVED_PENDING = "removed-pending"
    DETACHED = "detached"

    @property
    def is_persistent(self) -> bool:
        return self in (ObjectState.PERSISTENT_CLEAN, ObjectState.PERSISTENT_DIRTY)


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, dict, set, bytearray)):
        return copy.deepcopy(value)
    return value


class InstanceState:
    """
    Session-scoped bookkeeping attached to a managed entity.

    ``snapshot`` holds the last column values known to be persisted and is
    only replaced at load time or after a successful flush.
    ``loaded_related`` records, per relationship, the identity (or tuple of
    identities) last loaded from or written to the database.
    """

    def __init__(self, entity: Any, descriptor: EntityDescriptor, session: "Session", order: int) -> None:
        self.entity = entity
        self.descriptor = descriptor
        self._session_ref = weakref.ref(session)
        self.order = order
        self.status = ObjectState.TRANSIENT
        self.snapshot: Optional[Dict[str, Any]] = None
        self.key: Optional[IdentityKey] = None
        self.loaded_related: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"<InstanceState {self.descriptor.name} {self.status.value} key={self.key}>"

    @property
    def session(self) -> Optional["Session"]:
        return self._session_ref()

    @property
    def detached(self) -> bool:
        return self.status is ObjectState.DETACHED

    def current_values(self) -> Dict[str, Any]:
        return self.descriptor.values_of(self.entity)

    def current_key(self) -> IdentityKey:
        return IdentityKey(self.descriptor.entity_type, self.descriptor.key_values(self.entity))

    def take_snapshot(self) -> None:
        self.snapshot = {name: _freeze(value) for name, value in self.current_values().items()}

    def changed_columns(self) -> Dict[str, Any]:
        current = self.current_values()
        if self.snapshot is None:
            return current
        return {
            name: value
            for name, value in current.items()
            if name not in self.snapshot or self.snapshot[name] != value
        }

    def is_modified(self) -> bool:
        return bool(self.changed_columns())


def instance_state(entity: Any) -> Optional[InstanceState]:
    return getattr(entity, STATE_ATTR, None)


def attach_state(entity: Any, state: InstanceState) -> None:
    object.__setattr__(entity, STATE_ATTR, state)


def detach_state(entity: Any) -> None:
    if STATE_ATTR in getattr(entity, "__dict__", {}):
        object.__delattr__(entity, STATE_ATTR)


def state_of(entity: Any) -> ObjectState:
    state = instance_state(entity)
    if state is None:
        return ObjectState.TRANSIENT
    if state.status.is_persistent:
        return ObjectState.PERSISTENT_DIRTY if state.is_modified() else ObjectState.PERSISTENT_CLEAN
    return state.status
