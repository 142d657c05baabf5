"""
Schema registry holding every entity descriptor known to the process.
"""

from __future__ import annotations

from threading import RLock
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Type

from ..errors import ConfigurationError
from ..utils import get_logger
from .config import descriptor_from_config
from .descriptors import Cardinality, EntityDescriptor, RelationshipDescriptor


class SchemaRegistry:
    """
    Maps entity types and table names to immutable descriptors.

    Registration happens at process start; writers are serialized by a lock
    and ``freeze()`` closes the registry so sessions can read it without
    synchronisation.
    """

    def __init__(self) -> None:
        self._by_type: Dict[Type, EntityDescriptor] = {}
        self._by_table: Dict[str, EntityDescriptor] = {}
        self._lock = RLock()
        self._frozen = False
        self.logger = get_logger("mapping.registry")

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def register(self, descriptor: EntityDescriptor) -> EntityDescriptor:
        self.register_all([descriptor])
        return descriptor

    def register_all(self, descriptors: Iterable[EntityDescriptor]) -> list[EntityDescriptor]:
        """
        Validate and register a batch; relationships may reference any member.

        Nothing is registered unless the whole batch validates.
        """
        batch = list(descriptors)
        with self._lock:
            if self._frozen:
                raise ConfigurationError("Schema registry is frozen; register entities at startup.")
            staged_tables: Dict[str, EntityDescriptor] = {}
            staged_types: set[Type] = set()
            for descriptor in batch:
                if descriptor.table in self._by_table or descriptor.table in staged_tables:
                    raise ConfigurationError(f"Table '{descriptor.table}' is already registered.")
                if descriptor.entity_type in self._by_type or descriptor.entity_type in staged_types:
                    raise ConfigurationError(f"Entity type '{descriptor.name}' is already registered.")
                self._validate_columns(descriptor)
                staged_tables[descriptor.table] = descriptor
                staged_types.add(descriptor.entity_type)

            def resolve(table: str) -> Optional[EntityDescriptor]:
                return staged_tables.get(table) or self._by_table.get(table)

            for descriptor in batch:
                self._validate_relationships(descriptor, resolve)

            for descriptor in batch:
                self._by_table[descriptor.table] = descriptor
                self._by_type[descriptor.entity_type] = descriptor
                self.logger.debug(
                    "Registered %s -> %s (%s columns, %s relationships)",
                    descriptor.name,
                    descriptor.table,
                    len(descriptor.columns),
                    len(descriptor.relationships),
                )
        return batch

    def map(
        self,
        entity_type: Type,
        config: Mapping[str, Any],
        *,
        factory: Optional[Callable[[Type], Any]] = None,
    ) -> EntityDescriptor:
        return self.register(descriptor_from_config(entity_type, config, factory=factory))

    def map_all(self, configs: Mapping[Type, Mapping[str, Any]]) -> list[EntityDescriptor]:
        return self.register_all(
            descriptor_from_config(entity_type, config) for entity_type, config in configs.items()
        )

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #
    def descriptor_for(self, entity_or_type: Any) -> EntityDescriptor:
        entity_type = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
        descriptor = self._by_type.get(entity_type)
        if descriptor is None:
            raise ConfigurationError(f"Type '{entity_type.__name__}' is not mapped.")
        return descriptor

    def descriptor_for_table(self, table: str) -> EntityDescriptor:
        descriptor = self._by_table.get(table)
        if descriptor is None:
            raise ConfigurationError(f"Table '{table}' is not registered.")
        return descriptor

    def target_of(self, relationship: RelationshipDescriptor) -> EntityDescriptor:
        return self.descriptor_for_table(relationship.target_table)

    def is_mapped(self, entity_or_type: Any) -> bool:
        entity_type = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
        return entity_type in self._by_type

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._by_type

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(list(self._by_table.values()))

    def __len__(self) -> int:
        return len(self._by_table)

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #
    @staticmethod
    def _validate_columns(descriptor: EntityDescriptor) -> None:
        name = descriptor.name
        if not descriptor.columns:
            raise ConfigurationError(f"Entity '{name}' declares no columns.")
        seen: set[str] = set()
        for column in descriptor.columns:
            if column.name in seen:
                raise ConfigurationError(f"Duplicate column '{column.name}' on entity '{name}'.")
            seen.add(column.name)
        if not descriptor.primary_key:
            raise ConfigurationError(f"Entity '{name}' declares no primary key.")
        versions = [column for column in descriptor.columns if column.version]
        if len(versions) > 1:
            raise ConfigurationError(f"Entity '{name}' declares more than one version column.")
        if versions and versions[0].primary_key:
            raise ConfigurationError(f"Version column on '{name}' cannot be part of the primary key.")
        rel_names: set[str] = set()
        for rel in descriptor.relationships:
            if rel.name in seen:
                raise ConfigurationError(
                    f"Relationship '{rel.name}' on '{name}' collides with a column of the same name."
                )
            if rel.name in rel_names:
                raise ConfigurationError(f"Duplicate relationship '{rel.name}' on entity '{name}'.")
            rel_names.add(rel.name)

    @staticmethod
    def _validate_relationships(
        descriptor: EntityDescriptor,
        resolve: Callable[[str], Optional[EntityDescriptor]],
    ) -> None:
        for rel in descriptor.relationships:
            label = f"{descriptor.name}.{rel.name}"
            target = resolve(rel.target_table)
            if target is None:
                raise ConfigurationError(
                    f"Relationship '{label}' references unregistered table '{rel.target_table}'."
                )
            if rel.kind is Cardinality.MANY_TO_MANY:
                if not rel.join_table:
                    raise ConfigurationError(f"Many-to-many relationship '{label}' needs a join table.")
                if len(rel.foreign_key) != len(descriptor.primary_key):
                    raise ConfigurationError(
                        f"Relationship '{label}' join-table key does not match the owner primary key."
                    )
                if len(rel.target_key) != len(target.primary_key):
                    raise ConfigurationError(
                        f"Relationship '{label}' join-table target key does not match '{target.name}'."
                    )
                continue
            carrier, referenced = (descriptor, target) if rel.fk_on_owner else (target, descriptor)
            missing = [column for column in rel.foreign_key if not carrier.has_column(column)]
            if missing:
                raise ConfigurationError(
                    f"Relationship '{label}' foreign key column(s) {missing} not found on '{carrier.table}'."
                )
            if len(rel.foreign_key) != len(referenced.primary_key):
                raise ConfigurationError(
                    f"Relationship '{label}' foreign key does not match the primary key of '{referenced.table}'."
                )
