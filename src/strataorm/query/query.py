"""
Chainable query API bound to a session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple, Type

from ..errors import InvalidQueryError, MultipleResultsError, NotFoundError
from ..mapping.descriptors import EntityDescriptor, LoadStrategy
from .expressions import Predicate, Q, combine
from .statements import CompiledStatement, Select

if TYPE_CHECKING:
    from ..persistence.session import Session


class Query:
    """
    Immutable description of an entity query; every builder method returns a copy.

    Execution is delegated to the session, which routes rows through its
    identity map and applies the effective load strategies.
    """

    def __init__(
        self,
        session: "Session",
        entity_type: Type,
        *,
        where: Optional[Predicate] = None,
        ordering: Tuple[str, ...] = (),
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        strategies: Tuple[Tuple[str, LoadStrategy], ...] = (),
    ) -> None:
        self.session = session
        self.entity_type = entity_type
        self.descriptor: EntityDescriptor = session.registry.descriptor_for(entity_type)
        self._where = where
        self._ordering = ordering
        self._limit = limit
        self._offset = offset
        self._strategies = strategies

    def __repr__(self) -> str:
        return f"<Query {self.descriptor.name} where={self._where!r}>"

    # Public API --------------------------------------------------------
    def filter(self, *predicates: Predicate, **lookups: Any) -> "Query":
        predicate = Q(*predicates, **lookups)
        self.session.builder.validate_predicate(self.descriptor, predicate)
        return self._clone(where=combine(self._where, predicate))

    def filter_by(self, **values: Any) -> "Query":
        return self.filter(**values)

    def exclude(self, **lookups: Any) -> "Query":
        predicate = ~Q(**lookups)
        self.session.builder.validate_predicate(self.descriptor, predicate)
        return self._clone(where=combine(self._where, predicate))

    def order_by(self, *fields: str) -> "Query":
        self.session.builder.ordering(self.descriptor, fields)
        return self._clone(ordering=tuple(fields))

    def limit(self, value: int) -> "Query":
        return self._clone(limit=value)

    def offset(self, value: int) -> "Query":
        return self._clone(offset=value)

    def with_strategy(self, strategy: LoadStrategy | str, *relationships: str) -> "Query":
        """
        Override the load strategy for the named relationships (all when none named).
        """
        try:
            resolved = LoadStrategy.coerce(strategy)
        except ValueError as exc:
            raise InvalidQueryError(str(exc)) from exc
        names = relationships or tuple(rel.name for rel in self.descriptor.relationships)
        for name in names:
            if not self.descriptor.has_relationship(name):
                raise InvalidQueryError(
                    f"Unknown relationship '{name}' on entity '{self.descriptor.name}'"
                )
        overrides = tuple((name, resolved) for name in names)
        return self._clone(strategies=self._strategies + overrides)

    def effective_strategies(self) -> Dict[str, LoadStrategy]:
        strategies = {rel.name: rel.default_strategy for rel in self.descriptor.relationships}
        strategies.update(dict(self._strategies))
        return strategies

    def to_select(self) -> Select:
        return self.session.builder.select(
            self.descriptor,
            self._where,
            order_by=self._ordering,
            limit=self._limit,
            offset=self._offset,
        )

    def to_sql(self) -> CompiledStatement:
        return self.session.compiler.compile(self.to_select())

    # Execution ---------------------------------------------------------
    def all(self) -> List[Any]:
        return self.session.loader.load_query(self)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.all())

    def first(self) -> Optional[Any]:
        results = self.limit(1).all()
        return results[0] if results else None

    def one(self) -> Any:
        results = self.limit(2).all()
        if not results:
            raise NotFoundError(f"No {self.descriptor.name} matches {self._where!r}")
        if len(results) > 1:
            raise MultipleResultsError(f"More than one {self.descriptor.name} matches {self._where!r}")
        return results[0]

    def count(self) -> int:
        statement = self.session.builder.count(self.descriptor, self._where)
        rows = self.session._fetch(statement)
        return int(rows[0]["count"]) if rows else 0

    # Internal helpers --------------------------------------------------
    @property
    def limited(self) -> bool:
        return self._limit is not None or self._offset is not None

    def _clone(self, **overrides: Any) -> "Query":
        return Query(
            self.session,
            self.entity_type,
            where=overrides.get("where", self._where),
            ordering=overrides.get("ordering", self._ordering),
            limit=overrides.get("limit", self._limit),
            offset=overrides.get("offset", self._offset),
            strategies=overrides.get("strategies", self._strategies),
        )
