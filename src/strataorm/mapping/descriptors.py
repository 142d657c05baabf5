"""
Immutable mapping metadata: columns, relationships and entity descriptors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type


class LoadStrategy(str, Enum):
    """
    How a relationship is resolved when its owner is loaded.
    """

    LAZY = "lazy"
    JOIN = "join"
    SUBQUERY = "subquery"
    BATCHED_IN = "batched_in"
    FORBIDDEN = "forbidden"

    @classmethod
    def coerce(cls, value: "LoadStrategy | str") -> "LoadStrategy":
        if isinstance(value, LoadStrategy):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        aliases = {"joined": "join", "selectin": "batched_in", "in": "batched_in", "raise": "forbidden"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown load strategy '{value}'") from exc

    @property
    def is_eager(self) -> bool:
        return self in (LoadStrategy.JOIN, LoadStrategy.SUBQUERY, LoadStrategy.BATCHED_IN)


class Cardinality(str, Enum):
    MANY_TO_ONE = "many-to-one"
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"

    @classmethod
    def coerce(cls, value: "Cardinality | str") -> "Cardinality":
        if isinstance(value, Cardinality):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown relationship kind '{value}'") from exc


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    type: str = "TEXT"
    nullable: bool = True
    primary_key: bool = False
    version: bool = False
    autoincrement: Optional[bool] = None


@dataclass(frozen=True)
class RelationshipDescriptor:
    """
    Association between an owner entity and a target table.

    ``foreign_key`` lists the FK columns positionally matching the referenced
    primary key. Which table carries them depends on ``kind`` and
    ``owning``: the owner's table for many-to-one and owning one-to-one, the
    target's table for one-to-many and inverse one-to-one, and the join table
    (pointing at the owner) for many-to-many, where ``target_key`` holds the
    join-table columns pointing at the target.
    """

    name: str
    kind: Cardinality
    target_table: str
    foreign_key: Tuple[str, ...]
    owning: bool
    default_strategy: LoadStrategy = LoadStrategy.LAZY
    join_table: Optional[str] = None
    target_key: Tuple[str, ...] = ()

    @property
    def is_collection(self) -> bool:
        return self.kind in (Cardinality.ONE_TO_MANY, Cardinality.MANY_TO_MANY)

    @property
    def fk_on_owner(self) -> bool:
        """True when the owner's own row carries the foreign key columns."""
        return self.kind is Cardinality.MANY_TO_ONE or (
            self.kind is Cardinality.ONE_TO_ONE and self.owning
        )

    @property
    def fk_on_target(self) -> bool:
        return self.kind is Cardinality.ONE_TO_MANY or (
            self.kind is Cardinality.ONE_TO_ONE and not self.owning
        )


def _default_factory(entity_type: Type) -> Any:
    return entity_type.__new__(entity_type)


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Static metadata mapping one entity type to one table.
    """

    entity_type: Type
    table: str
    columns: Tuple[ColumnDescriptor, ...]
    relationships: Tuple[RelationshipDescriptor, ...] = ()
    factory: Callable[[Type], Any] = field(default=_default_factory, compare=False, repr=False)

    @property
    def name(self) -> str:
        return self.entity_type.__name__

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def primary_key(self) -> Tuple[ColumnDescriptor, ...]:
        return tuple(column for column in self.columns if column.primary_key)

    @property
    def primary_key_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.primary_key)

    @property
    def version_column(self) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.version:
                return column
        return None

    @property
    def generated_key(self) -> Optional[ColumnDescriptor]:
        """The single primary key column the database fills in, if any."""
        pk = self.primary_key
        if len(pk) != 1:
            return None
        column = pk[0]
        if column.autoincrement is None:
            return column if column.type.upper() in ("INTEGER", "INT", "BIGINT", "SERIAL") else None
        return column if column.autoincrement else None

    def column(self, name: str) -> ColumnDescriptor:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(f"Unknown column '{name}' on entity '{self.name}'")

    def has_column(self, name: str) -> bool:
        return any(column.name == name for column in self.columns)

    def relationship(self, name: str) -> RelationshipDescriptor:
        for rel in self.relationships:
            if rel.name == name:
                return rel
        raise KeyError(f"Unknown relationship '{name}' on entity '{self.name}'")

    def has_relationship(self, name: str) -> bool:
        return any(rel.name == name for rel in self.relationships)

    def create_instance(self) -> Any:
        return self.factory(self.entity_type)

    def values_of(self, entity: Any) -> Dict[str, Any]:
        return {name: getattr(entity, name, None) for name in self.column_names}

    def key_values(self, entity: Any) -> Tuple[Any, ...]:
        return tuple(getattr(entity, name, None) for name in self.primary_key_names)
