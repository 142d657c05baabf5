"""
Exception hierarchy shared by every strataorm layer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .persistence.identity_map import IdentityKey


class StrataError(Exception):
    """Base error for all strataorm failures."""


class ConfigurationError(StrataError):
    """Raised for bad or conflicting mapping metadata."""


class IdentityConflictError(ConfigurationError):
    """
    Raised when an identity key is already bound to a different object.

    Sessions always consult the identity map before hydrating, so this
    signals either a caller adding a second object for a persisted identity
    or an internal consistency bug.
    """

    def __init__(self, key: "IdentityKey") -> None:
        self.key = key
        super().__init__(
            f"Identity {key.entity_type.__name__}{key.values!r} is already bound "
            "to a different object in this session."
        )


class CircularDependencyError(ConfigurationError):
    """Raised when pending inserts reference each other in a cycle."""


class InvalidQueryError(StrataError, ValueError):
    """Raised when a statement references unknown columns or relationships."""


class NotFoundError(StrataError, LookupError):
    """Raised by ``Session.get`` when no row matches the requested key."""


class MultipleResultsError(StrataError, LookupError):
    """Raised by ``Query.one`` when more than one row matches."""


class InvalidRequestError(StrataError):
    """Raised when an operation does not apply to the entity's current state."""


class DetachedInstanceError(StrataError):
    """Raised when an operation targets an entity that is no longer attached."""


class SessionClosedError(StrataError):
    """Raised when a closed session is used."""


class LazyLoadForbiddenError(StrataError):
    """Raised when a relationship configured as forbidden is accessed lazily."""

    def __init__(self, entity_name: str, relationship: str) -> None:
        self.entity_name = entity_name
        self.relationship = relationship
        super().__init__(
            f"Relationship '{entity_name}.{relationship}' forbids lazy loading; "
            "request an eager strategy with Query.with_strategy()."
        )


class ConcurrencyConflictError(StrataError):
    """Raised when an optimistic version check matches no row."""

    def __init__(self, key: "IdentityKey", expected_version: Any) -> None:
        self.key = key
        self.expected_version = expected_version
        super().__init__(
            f"{key.entity_type.__name__}{key.values!r} was modified concurrently "
            f"(expected version {expected_version!r})."
        )


class DatabaseError(StrataError):
    """Generic storage driver failure."""


class ConstraintViolationError(DatabaseError):
    """
    Driver-reported foreign-key, unique or not-null violation.

    Sessions re-raise the adapter's error with the identity of the entity
    whose statement failed.
    """

    def __init__(
        self,
        message: str,
        *,
        identity: Optional["IdentityKey"] = None,
        statement: Optional[str] = None,
    ) -> None:
        self.identity = identity
        self.statement = statement
        super().__init__(message)

    def with_identity(self, identity: "IdentityKey | None", statement: str) -> "ConstraintViolationError":
        label = "pending entity" if identity is None else f"{identity.entity_type.__name__}{identity.values!r}"
        return ConstraintViolationError(
            f"{self.args[0]} (while flushing {label})",
            identity=identity,
            statement=statement,
        )


class TransactionError(DatabaseError):
    """Raised for invalid transaction state transitions."""


class AdapterConfigurationError(DatabaseError):
    """Raised when connection configuration or driver dependencies are invalid."""


class AdapterConnectionError(DatabaseError):
    """Raised when establishing or using a connection fails."""


__all__ = [
    "StrataError",
    "ConfigurationError",
    "IdentityConflictError",
    "CircularDependencyError",
    "InvalidQueryError",
    "NotFoundError",
    "MultipleResultsError",
    "InvalidRequestError",
    "DetachedInstanceError",
    "SessionClosedError",
    "LazyLoadForbiddenError",
    "ConcurrencyConflictError",
    "DatabaseError",
    "ConstraintViolationError",
    "TransactionError",
    "AdapterConfigurationError",
    "AdapterConnectionError",
]
