"""
Abstract statement objects produced by the query builder.

Statements carry table and column names only; quoting, placeholders and
clause syntax are the compiler's concern.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .expressions import ColumnRef, Predicate


@dataclass(frozen=True)
class SelectColumn:
    column: ColumnRef
    alias: Optional[str] = None


@dataclass(frozen=True)
class CountColumn:
    alias: str = "count"


@dataclass(frozen=True)
class Join:
    """
    ``LEFT OUTER JOIN table AS alias ON left = right [AND ...]``.
    """

    table: str
    alias: str
    on: Tuple[Tuple[ColumnRef, ColumnRef], ...]
    kind: str = "LEFT OUTER"


@dataclass(frozen=True)
class OrderBy:
    column: ColumnRef
    descending: bool = False


@dataclass(frozen=True)
class Select:
    table: str
    columns: Tuple[Any, ...]
    alias: Optional[str] = None
    where: Optional[Predicate] = None
    joins: Tuple[Join, ...] = ()
    order_by: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    distinct: bool = False

    kind = "select"

    @property
    def source(self) -> str:
        """Name columns of the primary table are qualified with."""
        return self.alias or self.table

    def with_join(self, join: Join, columns: Tuple[Any, ...]) -> "Select":
        return replace(self, joins=self.joins + (join,), columns=self.columns + tuple(columns))

    def with_where(self, where: Optional[Predicate]) -> "Select":
        return replace(self, where=where)

    def project(self, columns: Tuple[ColumnRef, ...]) -> "Select":
        """
        Same rows restricted to ``columns`` of the primary table, without joins.
        """
        return replace(
            self,
            columns=tuple(SelectColumn(column) for column in columns),
            joins=(),
        )


@dataclass(frozen=True)
class Insert:
    table: str
    values: Dict[str, Any] = field(default_factory=dict)
    returning: Tuple[str, ...] = ()

    kind = "insert"


@dataclass(frozen=True)
class Update:
    table: str
    assignments: Dict[str, Any]
    where: Predicate

    kind = "update"


@dataclass(frozen=True)
class Delete:
    table: str
    where: Predicate

    kind = "delete"


@dataclass(frozen=True)
class CompiledStatement:
    """
    Dialect-specific SQL text with its ordered parameter list.
    """

    sql: str
    params: List[Any]
    kind: str

    def __iter__(self):
        yield self.sql
        yield self.params
