"""
SQLite dialect implementation.
"""

from __future__ import annotations

from typing import Any, Final, Sequence

from .base import DialectCapabilities, quote_double


class SQLiteDialect:
    """
    SQLite dialect using qmark param style.
    """

    name: Final[str] = "sqlite"
    param_style: Final[str] = "qmark"
    capabilities: Final[DialectCapabilities] = DialectCapabilities(
        supports_returning=False,
        supports_savepoints=True,
        supports_row_values=True,
        supports_schema_namespaces=False,
    )

    def quote_identifier(self, identifier: str) -> str:
        return quote_double(identifier)

    def format_table(self, table_name: str) -> str:
        return self.quote_identifier(table_name)

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "?"

    def limit_clause(self, limit: int | None, offset: int | None) -> tuple[str, list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        if limit is not None:
            parts.append("LIMIT ?")
            params.append(int(limit))
        if offset is not None:
            if limit is None:
                parts.append("LIMIT -1")
            parts.append("OFFSET ?")
            params.append(int(offset))
        return " ".join(parts), params

    def returning_clause(self, columns: Sequence[str]) -> str:
        return ""

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        null_clause = "" if nullable else " NOT NULL"
        return f"{self.quote_identifier(column)} {column_type}{null_clause}"

    def render_generated_key(self, column: str, column_type: str) -> str:
        # INTEGER PRIMARY KEY aliases the rowid, which SQLite assigns on insert.
        return f"{self.quote_identifier(column)} INTEGER PRIMARY KEY AUTOINCREMENT"
