"""
Statement construction and compilation.
"""

from .builder import QueryBuilder
from .compiler import StatementCompiler
from .expressions import (
    BooleanClause,
    Column,
    ColumnRef,
    Comparison,
    InSelect,
    InValues,
    Negation,
    NullCheck,
    Predicate,
    Q,
    col,
)
from .query import Query
from .statements import CompiledStatement, Delete, Insert, Join, Select, Update

__all__ = [
    "BooleanClause",
    "Column",
    "ColumnRef",
    "Comparison",
    "CompiledStatement",
    "Delete",
    "InSelect",
    "InValues",
    "Insert",
    "Join",
    "Negation",
    "NullCheck",
    "Predicate",
    "Q",
    "Query",
    "QueryBuilder",
    "Select",
    "StatementCompiler",
    "Update",
    "col",
]
