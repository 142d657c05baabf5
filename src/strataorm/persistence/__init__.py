"""
Persistence layer components: sessions, unit of work, identity map, loaders.
"""

from .factory import SessionFactory
from .identity_map import IdentityKey, IdentityMap
from .loading import RelationshipLoader
from .options import SessionOptions
from .proxy import RelationshipProxy, resolve
from .session import Session
from .state import InstanceState, ObjectState, instance_state, state_of
from .transaction import TransactionManager
from .unit_of_work import ChangeSet, UnitOfWork

__all__ = [
    "ChangeSet",
    "IdentityKey",
    "IdentityMap",
    "InstanceState",
    "ObjectState",
    "RelationshipLoader",
    "RelationshipProxy",
    "Session",
    "SessionFactory",
    "SessionOptions",
    "TransactionManager",
    "UnitOfWork",
    "instance_state",
    "resolve",
    "state_of",
]
