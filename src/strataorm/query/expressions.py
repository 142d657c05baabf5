"""
Expression tree primitives for query construction.

Predicates are built either from column expressions::

    (col("age") >= 18) & ~col("email").is_null()

or from Django-style lookups::

    Q(name="ada", age__gte=18) | Q(role__in=["admin", "owner"])
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator, Optional, Sequence, Tuple

from ..errors import InvalidQueryError

if TYPE_CHECKING:
    from .statements import Select


AND = "AND"
OR = "OR"

COMPARISON_OPERATORS = ("=", "!=", "<", "<=", ">", ">=", "LIKE")

LOOKUP_OPERATORS = {
    "exact": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "like": "LIKE",
    "contains": "LIKE",
    "startswith": "LIKE",
    "endswith": "LIKE",
}


@dataclass(frozen=True)
class ColumnRef:
    """
    A column qualified by the table (or alias) it is read from.

    ``table`` of ``None`` means the statement's primary table.
    """

    name: str
    table: Optional[str] = None


class Predicate:
    """
    Base class for boolean expression nodes.
    """

    def __and__(self, other: "Predicate") -> "Predicate":
        return BooleanClause(AND, (self, other))

    def __or__(self, other: "Predicate") -> "Predicate":
        return BooleanClause(OR, (self, other))

    def __invert__(self) -> "Predicate":
        return Negation(self)

    def column_refs(self) -> Iterator[ColumnRef]:
        return iter(())

    def is_empty(self) -> bool:
        return False


@dataclass(frozen=True, eq=False)
class Comparison(Predicate):
    column: ColumnRef
    operator: str
    value: Any

    def __post_init__(self) -> None:
        if self.operator not in COMPARISON_OPERATORS:
            raise InvalidQueryError(f"Unsupported operator '{self.operator}'")

    def column_refs(self) -> Iterator[ColumnRef]:
        yield self.column


@dataclass(frozen=True, eq=False)
class NullCheck(Predicate):
    column: ColumnRef
    negated: bool = False

    def column_refs(self) -> Iterator[ColumnRef]:
        yield self.column


@dataclass(frozen=True, eq=False)
class InValues(Predicate):
    """
    ``(c1, c2) IN ((v1, v2), ...)``; single-column lists hold 1-tuples.
    """

    columns: Tuple[ColumnRef, ...]
    values: Tuple[Tuple[Any, ...], ...]

    def column_refs(self) -> Iterator[ColumnRef]:
        yield from self.columns


@dataclass(frozen=True, eq=False)
class InSelect(Predicate):
    columns: Tuple[ColumnRef, ...]
    select: "Select"

    def column_refs(self) -> Iterator[ColumnRef]:
        yield from self.columns


@dataclass(frozen=True, eq=False)
class BooleanClause(Predicate):
    connector: str
    children: Tuple[Predicate, ...]

    def column_refs(self) -> Iterator[ColumnRef]:
        for child in self.children:
            yield from child.column_refs()

    def is_empty(self) -> bool:
        return all(child.is_empty() for child in self.children)


@dataclass(frozen=True, eq=False)
class Negation(Predicate):
    child: Predicate

    def column_refs(self) -> Iterator[ColumnRef]:
        return self.child.column_refs()

    def is_empty(self) -> bool:
        return self.child.is_empty()


class Q(BooleanClause):
    """
    Boolean expression container similar to Django-style Q objects.
    """

    def __init__(self, *children: Predicate, **lookups: Any) -> None:
        nodes = list(children)
        nodes.extend(lookup(key, value) for key, value in lookups.items())
        super().__init__(AND, tuple(nodes))


class Column:
    """
    Column expression producing predicates through operator overloads.
    """

    def __init__(self, name: str, table: Optional[str] = None) -> None:
        self.ref = ColumnRef(name, table)

    def __repr__(self) -> str:
        return f"Column({self.ref.name!r}, table={self.ref.table!r})"

    def __eq__(self, other: Any) -> Predicate:  # type: ignore[override]
        if other is None:
            return NullCheck(self.ref)
        return Comparison(self.ref, "=", other)

    def __ne__(self, other: Any) -> Predicate:  # type: ignore[override]
        if other is None:
            return NullCheck(self.ref, negated=True)
        return Comparison(self.ref, "!=", other)

    def __lt__(self, other: Any) -> Predicate:
        return Comparison(self.ref, "<", other)

    def __le__(self, other: Any) -> Predicate:
        return Comparison(self.ref, "<=", other)

    def __gt__(self, other: Any) -> Predicate:
        return Comparison(self.ref, ">", other)

    def __ge__(self, other: Any) -> Predicate:
        return Comparison(self.ref, ">=", other)

    __hash__ = object.__hash__

    def like(self, pattern: str) -> Predicate:
        return Comparison(self.ref, "LIKE", pattern)

    def in_(self, values: Sequence[Any]) -> Predicate:
        return InValues((self.ref,), tuple((value,) for value in values))

    def is_null(self) -> Predicate:
        return NullCheck(self.ref)

    def is_not_null(self) -> Predicate:
        return NullCheck(self.ref, negated=True)


def col(name: str, table: Optional[str] = None) -> Column:
    return Column(name, table)


def lookup(key: str, value: Any) -> Predicate:
    """
    Translate a ``field__lookup=value`` keyword into a predicate node.
    """
    if "__" in key:
        name, kind = key.split("__", 1)
    else:
        name, kind = key, "exact"
    ref = ColumnRef(name)

    if kind == "in":
        return InValues((ref,), tuple((item,) for item in value))
    if kind == "isnull":
        return NullCheck(ref, negated=not value)
    if value is None:
        if kind == "exact":
            return NullCheck(ref)
        if kind == "ne":
            return NullCheck(ref, negated=True)
        raise InvalidQueryError("NULL comparison only supported for exact and ne lookups.")

    operator = LOOKUP_OPERATORS.get(kind)
    if operator is None:
        raise InvalidQueryError(f"Unsupported lookup '{kind}'")
    if kind == "contains":
        value = f"%{value}%"
    elif kind == "startswith":
        value = f"{value}%"
    elif kind == "endswith":
        value = f"%{value}"
    return Comparison(ref, operator, value)


def key_predicate(columns: Sequence[ColumnRef], keys: Sequence[Tuple[Any, ...]]) -> Predicate:
    """
    Match rows whose ``columns`` equal any of ``keys``.
    """
    columns = tuple(columns)
    keys = tuple(tuple(key) for key in keys)
    if len(keys) == 1 and len(columns) == 1:
        return Comparison(columns[0], "=", keys[0][0])
    if len(keys) == 1:
        return BooleanClause(
            AND, tuple(Comparison(column, "=", value) for column, value in zip(columns, keys[0]))
        )
    return InValues(columns, keys)


def combine(*predicates: Optional[Predicate]) -> Optional[Predicate]:
    nodes = tuple(p for p in predicates if p is not None and not p.is_empty())
    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    return BooleanClause(AND, nodes)
