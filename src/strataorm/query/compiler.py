"""
SQL compilation utilities translating abstract statements into SQL strings.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

from ..dialects.base import Dialect
from ..errors import InvalidQueryError
from .expressions import (
    BooleanClause,
    ColumnRef,
    Comparison,
    InSelect,
    InValues,
    Negation,
    NullCheck,
    Predicate,
)
from .statements import CompiledStatement, CountColumn, Delete, Insert, Select, SelectColumn, Update


class _Params:
    """Accumulates bound values so positional placeholders stay in order."""

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.values: List[Any] = []

    def bind(self, value: Any) -> str:
        self.values.append(value)
        return self.dialect.parameter_placeholder(len(self.values))

    def extend(self, values: List[Any]) -> None:
        self.values.extend(values)


class StatementCompiler:
    """
    Compile statements into SQL text plus a separate parameter list.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    def compile(self, statement: Any) -> CompiledStatement:
        params = _Params(self.dialect)
        if isinstance(statement, Select):
            sql = self._compile_select(statement, params)
        elif isinstance(statement, Insert):
            sql = self._compile_insert(statement, params)
        elif isinstance(statement, Update):
            sql = self._compile_update(statement, params)
        elif isinstance(statement, Delete):
            sql = self._compile_delete(statement, params)
        else:
            raise InvalidQueryError(f"Cannot compile {type(statement).__name__}")
        return CompiledStatement(sql, params.values, statement.kind)

    # Statements --------------------------------------------------------
    def _compile_select(self, select: Select, params: _Params) -> str:
        source = select.source
        parts: List[str] = [
            "SELECT DISTINCT" if select.distinct else "SELECT",
            ", ".join(self._select_item(item, source) for item in select.columns),
            "FROM",
            self._table_reference(select.table, select.alias),
        ]
        for join in select.joins:
            conditions = " AND ".join(
                f"{self._column(left, source)} = {self._column(right, source)}" for left, right in join.on
            )
            parts.append(
                f"{join.kind} JOIN {self._table_reference(join.table, join.alias)} ON {conditions}"
            )
        if select.where is not None and not select.where.is_empty():
            parts.append("WHERE")
            parts.append(self._predicate(select.where, source, params))
        if select.order_by:
            parts.append("ORDER BY")
            parts.append(
                ", ".join(
                    self._column(order.column, source) + (" DESC" if order.descending else "")
                    for order in select.order_by
                )
            )
        limit_sql, limit_params = self.dialect.limit_clause(select.limit, select.offset)
        if limit_sql:
            parts.append(limit_sql)
            params.extend(limit_params)
        return " ".join(parts)

    def _compile_insert(self, insert: Insert, params: _Params) -> str:
        table = self.dialect.format_table(insert.table)
        if not insert.values:
            sql = f"INSERT INTO {table} DEFAULT VALUES"
        else:
            columns = ", ".join(self.dialect.quote_identifier(name) for name in insert.values)
            placeholders = ", ".join(params.bind(value) for value in insert.values.values())
            sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        if insert.returning:
            returning = self.dialect.returning_clause(insert.returning)
            if returning:
                sql = f"{sql} {returning}"
        return sql

    def _compile_update(self, update: Update, params: _Params) -> str:
        if not update.assignments:
            raise InvalidQueryError("UPDATE requires at least one assignment.")
        assignments = ", ".join(
            f"{self.dialect.quote_identifier(name)} = {params.bind(value)}"
            for name, value in update.assignments.items()
        )
        where = self._predicate(update.where, None, params)
        return f"UPDATE {self.dialect.format_table(update.table)} SET {assignments} WHERE {where}"

    def _compile_delete(self, delete: Delete, params: _Params) -> str:
        where = self._predicate(delete.where, None, params)
        return f"DELETE FROM {self.dialect.format_table(delete.table)} WHERE {where}"

    # Fragments ---------------------------------------------------------
    def _table_reference(self, table: str, alias: Optional[str]) -> str:
        formatted = self.dialect.format_table(table)
        if alias and alias != table:
            return f"{formatted} AS {self.dialect.quote_identifier(alias)}"
        return formatted

    def _column(self, ref: ColumnRef, default_table: Optional[str]) -> str:
        column = self.dialect.quote_identifier(ref.name)
        table = ref.table or default_table
        if table is None:
            return column
        return f"{self.dialect.quote_identifier(table)}.{column}"

    def _select_item(self, item: Any, source: str) -> str:
        if isinstance(item, CountColumn):
            return f"COUNT(*) AS {self.dialect.quote_identifier(item.alias)}"
        if isinstance(item, SelectColumn):
            rendered = self._column(item.column, source)
            if item.alias:
                rendered = f"{rendered} AS {self.dialect.quote_identifier(item.alias)}"
            return rendered
        raise InvalidQueryError(f"Unsupported select item {item!r}")

    def _predicate(self, predicate: Predicate, source: Optional[str], params: _Params) -> str:
        if isinstance(predicate, Comparison):
            column = self._column(predicate.column, source)
            return f"{column} {predicate.operator} {params.bind(predicate.value)}"
        if isinstance(predicate, NullCheck):
            column = self._column(predicate.column, source)
            return f"{column} IS NOT NULL" if predicate.negated else f"{column} IS NULL"
        if isinstance(predicate, InValues):
            return self._in_values(predicate, source, params)
        if isinstance(predicate, InSelect):
            subquery = self._compile_select(predicate.select, params)
            return f"{self._column_tuple(predicate.columns, source)} IN ({subquery})"
        if isinstance(predicate, BooleanClause):
            parts = [
                f"({self._predicate(child, source, params)})"
                for child in predicate.children
                if not child.is_empty()
            ]
            if not parts:
                return "1 = 1"
            if len(parts) == 1:
                return parts[0][1:-1]
            return f" {predicate.connector} ".join(parts)
        if isinstance(predicate, Negation):
            return f"NOT ({self._predicate(predicate.child, source, params)})"
        raise InvalidQueryError(f"Unsupported predicate {predicate!r}")

    def _column_tuple(self, columns: Tuple[ColumnRef, ...], source: Optional[str]) -> str:
        rendered = [self._column(column, source) for column in columns]
        if len(rendered) == 1:
            return rendered[0]
        return f"({', '.join(rendered)})"

    def _in_values(self, predicate: InValues, source: Optional[str], params: _Params) -> str:
        if not predicate.values:
            return "1 = 0"
        if len(predicate.columns) == 1:
            column = self._column(predicate.columns[0], source)
            placeholders = ", ".join(params.bind(key[0]) for key in predicate.values)
            return f"{column} IN ({placeholders})"
        alternatives = []
        for key in predicate.values:
            conditions = " AND ".join(
                f"{self._column(column, source)} = {params.bind(value)}"
                for column, value in zip(predicate.columns, key)
            )
            alternatives.append(f"({conditions})")
        return " OR ".join(alternatives)
