"""
PostgreSQL dialect implementation.
"""

from __future__ import annotations

from typing import Any, Final, Sequence

from .base import DialectCapabilities, quote_double


class PostgresDialect:
    """
    PostgreSQL dialect using psycopg's ``%s`` placeholders and RETURNING for keys.
    """

    name: Final[str] = "postgresql"
    param_style: Final[str] = "pyformat"
    capabilities: Final[DialectCapabilities] = DialectCapabilities(
        supports_returning=True,
        supports_savepoints=True,
        supports_row_values=True,
        supports_schema_namespaces=True,
    )

    def quote_identifier(self, identifier: str) -> str:
        return quote_double(identifier)

    def format_table(self, table_name: str) -> str:
        if "." in table_name:
            schema, table = table_name.split(".", 1)
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table_name)

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "%s"

    def limit_clause(self, limit: int | None, offset: int | None) -> tuple[str, list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        if limit is not None:
            parts.append("LIMIT %s")
            params.append(int(limit))
        if offset is not None:
            parts.append("OFFSET %s")
            params.append(int(offset))
        return " ".join(parts), params

    def returning_clause(self, columns: Sequence[str]) -> str:
        if not columns:
            return ""
        return "RETURNING " + ", ".join(self.quote_identifier(column) for column in columns)

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        null_clause = "" if nullable else " NOT NULL"
        return f"{self.quote_identifier(column)} {column_type}{null_clause}"

    def render_generated_key(self, column: str, column_type: str) -> str:
        base = "BIGINT" if column_type.upper() == "BIGINT" else "INTEGER"
        return f"{self.quote_identifier(column)} {base} GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY"
