"""
strataorm public package initialization.

A Data-Mapper persistence core: schema registry, identity map, unit of work
and relationship loader coordinated by :class:`Session`.
"""

from .adapters import ConnectionConfig, PostgresAdapter, SQLiteAdapter  # noqa: F401
from .errors import (  # noqa: F401
    CircularDependencyError,
    ConcurrencyConflictError,
    ConfigurationError,
    ConstraintViolationError,
    DatabaseError,
    DetachedInstanceError,
    IdentityConflictError,
    InvalidQueryError,
    InvalidRequestError,
    LazyLoadForbiddenError,
    MultipleResultsError,
    NotFoundError,
    SessionClosedError,
    StrataError,
)
from .hooks import hooks  # noqa: F401
from .mapping import (  # noqa: F401
    Cardinality,
    ColumnDescriptor,
    EntityDescriptor,
    LoadStrategy,
    RelationshipDescriptor,
    SchemaRegistry,
)
from .persistence import (  # noqa: F401
    IdentityKey,
    ObjectState,
    RelationshipProxy,
    Session,
    SessionFactory,
    SessionOptions,
    resolve,
)
from .query import Q, Query, col  # noqa: F401
from .schema import SchemaBuilder, create_all  # noqa: F401

__all__ = [
    "Cardinality",
    "CircularDependencyError",
    "ColumnDescriptor",
    "ConcurrencyConflictError",
    "ConfigurationError",
    "ConnectionConfig",
    "ConstraintViolationError",
    "DatabaseError",
    "DetachedInstanceError",
    "EntityDescriptor",
    "IdentityConflictError",
    "IdentityKey",
    "InvalidQueryError",
    "InvalidRequestError",
    "LazyLoadForbiddenError",
    "LoadStrategy",
    "MultipleResultsError",
    "NotFoundError",
    "ObjectState",
    "PostgresAdapter",
    "Q",
    "Query",
    "RelationshipDescriptor",
    "RelationshipProxy",
    "SchemaBuilder",
    "SchemaRegistry",
    "SQLiteAdapter",
    "Session",
    "SessionClosedError",
    "SessionFactory",
    "SessionOptions",
    "StrataError",
    "col",
    "create_all",
    "hooks",
    "resolve",
]
