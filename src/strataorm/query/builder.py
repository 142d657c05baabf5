"""
Construct abstract statements from registry metadata.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from ..errors import InvalidQueryError
from ..mapping.descriptors import EntityDescriptor, RelationshipDescriptor
from ..mapping.registry import SchemaRegistry
from .expressions import ColumnRef, Comparison, NullCheck, Predicate, combine, key_predicate
from .statements import CountColumn, Delete, Insert, Join, OrderBy, Select, SelectColumn, Update

LINK_ALIAS = "link"
OWNER_KEY_PREFIX = "__owner_"


def related_alias(relationship: str, column: str) -> str:
    return f"{relationship}__{column}"


def owner_key_alias(position: int) -> str:
    return f"{OWNER_KEY_PREFIX}{position}"


class QueryBuilder:
    """
    Build select/insert/update/delete statements for mapped entities.

    Column names are checked against the registry here, so an unknown column
    fails before any SQL is rendered.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #
    def validate_predicate(self, descriptor: EntityDescriptor, predicate: Optional[Predicate]) -> None:
        if predicate is None:
            return
        for ref in predicate.column_refs():
            if ref.table not in (None, descriptor.table):
                continue
            if not descriptor.has_column(ref.name):
                raise InvalidQueryError(
                    f"Unknown column '{ref.name}' on entity '{descriptor.name}'"
                )

    def ordering(self, descriptor: EntityDescriptor, fields: Iterable[str]) -> Tuple[OrderBy, ...]:
        clauses = []
        for field in fields:
            descending = field.startswith("-")
            name = field[1:] if descending else field
            if not descriptor.has_column(name):
                raise InvalidQueryError(f"Cannot order by unknown column '{name}' on '{descriptor.name}'")
            clauses.append(OrderBy(ColumnRef(name), descending))
        return tuple(clauses)

    # ------------------------------------------------------------------ #
    # Selects
    # ------------------------------------------------------------------ #
    def entity_columns(
        self,
        descriptor: EntityDescriptor,
        *,
        table: Optional[str] = None,
        prefix: Optional[str] = None,
    ) -> Tuple[SelectColumn, ...]:
        return tuple(
            SelectColumn(
                ColumnRef(name, table),
                related_alias(prefix, name) if prefix else None,
            )
            for name in descriptor.column_names
        )

    def select(
        self,
        descriptor: EntityDescriptor,
        where: Optional[Predicate] = None,
        *,
        order_by: Sequence[str] = (),
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Select:
        self.validate_predicate(descriptor, where)
        if limit is not None and limit < 0:
            raise InvalidQueryError("LIMIT must be non-negative.")
        if offset is not None and offset < 0:
            raise InvalidQueryError("OFFSET must be non-negative.")
        return Select(
            table=descriptor.table,
            columns=self.entity_columns(descriptor),
            where=where,
            order_by=self.ordering(descriptor, order_by),
            limit=limit,
            offset=offset,
        )

    def select_by_identity(self, descriptor: EntityDescriptor, keys: Sequence[Tuple[Any, ...]]) -> Select:
        columns = [ColumnRef(name) for name in descriptor.primary_key_names]
        return self.select(descriptor, key_predicate(columns, keys))

    def select_in(
        self,
        descriptor: EntityDescriptor,
        columns: Sequence[str],
        keys: Sequence[Tuple[Any, ...]],
        *,
        order_by: Sequence[str] = (),
    ) -> Select:
        refs = [ColumnRef(name) for name in columns]
        return self.select(descriptor, key_predicate(refs, keys), order_by=order_by)

    def count(self, descriptor: EntityDescriptor, where: Optional[Predicate] = None) -> Select:
        self.validate_predicate(descriptor, where)
        return Select(table=descriptor.table, columns=(CountColumn(),), where=where)

    def join_relationship(
        self,
        select: Select,
        owner: EntityDescriptor,
        relationship: RelationshipDescriptor,
        alias: str,
    ) -> Select:
        """
        Add a LEFT OUTER JOIN fetching ``relationship`` alongside its owners.

        Target columns come back aliased ``<relationship>__<column>``.
        """
        target = self.registry.target_of(relationship)
        source = select.source
        owner_pk = owner.primary_key_names
        target_pk = target.primary_key_names
        joins = []
        if relationship.fk_on_owner:
            joins.append(
                Join(
                    target.table,
                    alias,
                    tuple(
                        (ColumnRef(pk, alias), ColumnRef(fk, source))
                        for pk, fk in zip(target_pk, relationship.foreign_key)
                    ),
                )
            )
        elif relationship.fk_on_target:
            joins.append(
                Join(
                    target.table,
                    alias,
                    tuple(
                        (ColumnRef(fk, alias), ColumnRef(pk, source))
                        for fk, pk in zip(relationship.foreign_key, owner_pk)
                    ),
                )
            )
        else:
            link = f"{alias}_{LINK_ALIAS}"
            joins.append(
                Join(
                    relationship.join_table,
                    link,
                    tuple(
                        (ColumnRef(fk, link), ColumnRef(pk, source))
                        for fk, pk in zip(relationship.foreign_key, owner_pk)
                    ),
                )
            )
            joins.append(
                Join(
                    target.table,
                    alias,
                    tuple(
                        (ColumnRef(pk, alias), ColumnRef(tk, link))
                        for pk, tk in zip(target_pk, relationship.target_key)
                    ),
                )
            )
        columns = self.entity_columns(target, table=alias, prefix=relationship.name)
        joined = select
        for index, join in enumerate(joins):
            joined = joined.with_join(join, columns if index == len(joins) - 1 else ())
        return joined

    def select_linked(
        self,
        relationship: RelationshipDescriptor,
        owner_filter: Predicate,
    ) -> Select:
        """
        Targets of a many-to-many relationship, each row tagged with its owner key.

        ``owner_filter`` is expressed over the join table's owner columns,
        qualified with :data:`LINK_ALIAS`.
        """
        target = self.registry.target_of(relationship)
        on = tuple(
            (ColumnRef(tk, LINK_ALIAS), ColumnRef(pk, target.table))
            for tk, pk in zip(relationship.target_key, target.primary_key_names)
        )
        owner_columns = tuple(
            SelectColumn(ColumnRef(fk, LINK_ALIAS), owner_key_alias(position))
            for position, fk in enumerate(relationship.foreign_key)
        )
        return Select(
            table=target.table,
            columns=self.entity_columns(target) + owner_columns,
            joins=(Join(relationship.join_table, LINK_ALIAS, on, kind="INNER"),),
            where=owner_filter,
            order_by=tuple(OrderBy(ColumnRef(pk)) for pk in target.primary_key_names),
        )

    def link_columns(self, relationship: RelationshipDescriptor) -> Tuple[ColumnRef, ...]:
        return tuple(ColumnRef(fk, LINK_ALIAS) for fk in relationship.foreign_key)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def insert(
        self,
        descriptor: EntityDescriptor,
        values: Mapping[str, Any],
        *,
        returning: Sequence[str] = (),
    ) -> Insert:
        unknown = [name for name in values if not descriptor.has_column(name)]
        if unknown:
            raise InvalidQueryError(f"Unknown column(s) {unknown} on entity '{descriptor.name}'")
        return Insert(descriptor.table, dict(values), tuple(returning))

    def _identity_predicate(
        self,
        descriptor: EntityDescriptor,
        key: Tuple[Any, ...],
        expected_version: Any = None,
    ) -> Predicate:
        predicate = key_predicate([ColumnRef(name) for name in descriptor.primary_key_names], [key])
        version = descriptor.version_column
        if version is not None:
            if expected_version is None:
                check: Predicate = NullCheck(ColumnRef(version.name))
            else:
                check = Comparison(ColumnRef(version.name), "=", expected_version)
            predicate = combine(predicate, check)
        return predicate

    def update(
        self,
        descriptor: EntityDescriptor,
        key: Tuple[Any, ...],
        changes: Mapping[str, Any],
        *,
        expected_version: Any = None,
    ) -> Update:
        """
        UPDATE the changed columns of one row.

        Versioned entities also match ``version = expected_version``; the
        caller supplies the incremented value among ``changes``.
        """
        unknown = [name for name in changes if not descriptor.has_column(name)]
        if unknown:
            raise InvalidQueryError(f"Unknown column(s) {unknown} on entity '{descriptor.name}'")
        return Update(
            descriptor.table,
            dict(changes),
            self._identity_predicate(descriptor, key, expected_version),
        )

    def delete(
        self,
        descriptor: EntityDescriptor,
        key: Tuple[Any, ...],
        *,
        expected_version: Any = None,
    ) -> Delete:
        return Delete(descriptor.table, self._identity_predicate(descriptor, key, expected_version))

    def associate(
        self,
        relationship: RelationshipDescriptor,
        owner_key: Tuple[Any, ...],
        target_key: Tuple[Any, ...],
    ) -> Insert:
        values: Dict[str, Any] = dict(zip(relationship.foreign_key, owner_key))
        values.update(zip(relationship.target_key, target_key))
        return Insert(relationship.join_table, values)

    def dissociate(
        self,
        relationship: RelationshipDescriptor,
        owner_key: Tuple[Any, ...],
        target_key: Tuple[Any, ...],
    ) -> Delete:
        columns = [ColumnRef(name) for name in relationship.foreign_key + relationship.target_key]
        return Delete(relationship.join_table, key_predicate(columns, [owner_key + target_key]))

    def clear_associations(self, relationship: RelationshipDescriptor, owner_key: Tuple[Any, ...]) -> Delete:
        columns = [ColumnRef(name) for name in relationship.foreign_key]
        return Delete(relationship.join_table, key_predicate(columns, [owner_key]))
