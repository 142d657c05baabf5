"""
Schema builder converting registry metadata into DDL statements.

Only table creation is covered; there is no diffing or migration support.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..dialects.base import Dialect
from ..mapping.descriptors import EntityDescriptor, RelationshipDescriptor
from ..mapping.registry import SchemaRegistry
from ..utils import get_logger

if TYPE_CHECKING:
    from ..persistence.session import Session

ForeignKey = Tuple[Tuple[str, ...], str, Tuple[str, ...]]


class SchemaBuilder:
    """
    Produces dialect-specific CREATE/DROP TABLE statements.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, descriptor: EntityDescriptor, registry: Optional[SchemaRegistry] = None) -> str:
        pieces = self._render_columns(descriptor)
        pk = descriptor.primary_key_names
        generated = descriptor.generated_key
        if generated is None:
            pieces.append(f"PRIMARY KEY ({self._column_list(pk)})")
        if registry is not None:
            for columns, table, referenced in self.foreign_keys(descriptor, registry):
                pieces.append(
                    f"FOREIGN KEY ({self._column_list(columns)}) "
                    f"REFERENCES {self.dialect.format_table(table)} ({self._column_list(referenced)})"
                )
        table_name = self.dialect.format_table(descriptor.table)
        return f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(pieces)})"

    def create_join_table_sql(self, registry: SchemaRegistry, descriptor: EntityDescriptor) -> List[str]:
        statements: List[str] = []
        for rel in descriptor.relationships:
            if not rel.join_table:
                continue
            target = registry.target_of(rel)
            pieces: List[str] = []
            for column, source in zip(rel.foreign_key, descriptor.primary_key):
                pieces.append(self.dialect.render_column_definition(column, source.type, nullable=False))
            for column, source in zip(rel.target_key, target.primary_key):
                pieces.append(self.dialect.render_column_definition(column, source.type, nullable=False))
            pieces.append(f"PRIMARY KEY ({self._column_list(rel.foreign_key + rel.target_key)})")
            pieces.append(
                f"FOREIGN KEY ({self._column_list(rel.foreign_key)}) REFERENCES "
                f"{self.dialect.format_table(descriptor.table)} ({self._column_list(descriptor.primary_key_names)})"
            )
            pieces.append(
                f"FOREIGN KEY ({self._column_list(rel.target_key)}) REFERENCES "
                f"{self.dialect.format_table(target.table)} ({self._column_list(target.primary_key_names)})"
            )
            table_name = self.dialect.format_table(rel.join_table)
            statements.append(f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(pieces)})")
        return statements

    def drop_table_sql(self, table: str) -> str:
        table_name = self.dialect.format_table(table)
        self.logger.warning("DROP TABLE generated for %s", table_name)
        return f"DROP TABLE IF EXISTS {table_name}"

    def create_all_sql(self, registry: SchemaRegistry) -> List[str]:
        """
        CREATE statements for every registered table, referenced tables first.
        """
        statements: List[str] = []
        join_tables: Dict[str, str] = {}
        for descriptor in self._dependency_order(registry):
            statements.append(self.create_table_sql(descriptor, registry))
            for rel, sql in zip(self._join_relationships(descriptor), self.create_join_table_sql(registry, descriptor)):
                join_tables.setdefault(rel.join_table, sql)
        statements.extend(join_tables.values())
        return statements

    def foreign_keys(self, descriptor: EntityDescriptor, registry: SchemaRegistry) -> List[ForeignKey]:
        """
        Foreign keys carried by ``descriptor``'s table, declared from either side.
        """
        found: Dict[Tuple[str, ...], ForeignKey] = {}
        for rel in descriptor.relationships:
            if rel.fk_on_owner:
                target = registry.target_of(rel)
                found.setdefault(rel.foreign_key, (rel.foreign_key, target.table, target.primary_key_names))
        for other in registry:
            for rel in other.relationships:
                if rel.fk_on_target and rel.target_table == descriptor.table:
                    found.setdefault(rel.foreign_key, (rel.foreign_key, other.table, other.primary_key_names))
        return list(found.values())

    # Helpers -----------------------------------------------------------
    def _render_columns(self, descriptor: EntityDescriptor) -> List[str]:
        pieces: List[str] = []
        generated = descriptor.generated_key
        for column in descriptor.columns:
            if generated is not None and column.name == generated.name:
                pieces.append(self.dialect.render_generated_key(column.name, column.type))
                continue
            pieces.append(
                self.dialect.render_column_definition(
                    column.name,
                    column.type,
                    nullable=column.nullable and not column.primary_key,
                )
            )
        return pieces

    def _column_list(self, columns: Tuple[str, ...]) -> str:
        return ", ".join(self.dialect.quote_identifier(column) for column in columns)

    @staticmethod
    def _join_relationships(descriptor: EntityDescriptor) -> List[RelationshipDescriptor]:
        return [rel for rel in descriptor.relationships if rel.join_table]

    def _dependency_order(self, registry: SchemaRegistry) -> List[EntityDescriptor]:
        ordered: List[EntityDescriptor] = []
        placed: set[str] = set()
        visiting: set[str] = set()

        def visit(descriptor: EntityDescriptor) -> None:
            if descriptor.table in placed or descriptor.table in visiting:
                return
            visiting.add(descriptor.table)
            for _, table, _ in self.foreign_keys(descriptor, registry):
                if table != descriptor.table:
                    visit(registry.descriptor_for_table(table))
            visiting.discard(descriptor.table)
            placed.add(descriptor.table)
            ordered.append(descriptor)

        for descriptor in registry:
            visit(descriptor)
        return ordered


def create_all(session: "Session", registry: Optional[SchemaRegistry] = None) -> List[str]:
    """
    Create every table known to ``registry`` (default: the session's) and return the DDL.
    """
    registry = registry or session.registry
    statements = SchemaBuilder(session.dialect).create_all_sql(registry)
    for sql in statements:
        session.execute(sql)
    return statements
