"""
Relationship loading strategies.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..errors import LazyLoadForbiddenError
from ..mapping.descriptors import EntityDescriptor, LoadStrategy, RelationshipDescriptor
from ..query.builder import owner_key_alias
from ..query.expressions import ColumnRef, InSelect, key_predicate
from ..query.statements import Select
from ..utils import get_logger
from .identity_map import IdentityKey
from .proxy import UNLOADED, RelationshipProxy, relationship_value
from .state import instance_state

if TYPE_CHECKING:
    from ..query.query import Query
    from .session import Session

Visited = Set[Tuple[str, str]]


def chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _unique(items: Iterable[Any]) -> List[Any]:
    seen: Set[int] = set()
    result = []
    for item in items:
        if id(item) not in seen:
            seen.add(id(item))
            result.append(item)
    return result


class RelationshipLoader:
    """
    Resolves relationships for freshly loaded entities.

    Every row passes through the session's identity map, so an object
    reached by several paths is materialised once. Eager strategies cascade
    into the targets' own eager relationships; each ``(table, relationship)``
    pair is applied at most once per load operation.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session
        self.logger = get_logger("persistence.loading")

    @property
    def batch_size(self) -> int:
        return self.session.options.batch_size

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #
    def load_query(self, query: "Query") -> List[Any]:
        session = self.session
        descriptor = query.descriptor
        strategies = query.effective_strategies()
        primary = query.to_select()

        joined: List[RelationshipDescriptor] = []
        for rel in descriptor.relationships:
            if strategies[rel.name] is not LoadStrategy.JOIN:
                continue
            if rel.is_collection and query.limited:
                # LIMIT would count joined rows instead of owners
                strategies[rel.name] = LoadStrategy.SUBQUERY
                continue
            joined.append(rel)

        select = primary
        for position, rel in enumerate(joined, start=1):
            select = session.builder.join_relationship(select, descriptor, rel, f"j{position}")

        rows = session._fetch(select)
        owners: List[Any] = []
        seen: Set[int] = set()
        buckets: Dict[str, Dict[int, Any]] = {rel.name: {} for rel in joined}
        for row in rows:
            owner = session._hydrate(descriptor, row)
            if id(owner) not in seen:
                seen.add(id(owner))
                owners.append(owner)
            for rel in joined:
                target = session._hydrate(session.registry.target_of(rel), row, prefix=rel.name)
                bucket = buckets[rel.name]
                if rel.is_collection:
                    members = bucket.setdefault(id(owner), [])
                    if target is not None and all(m is not target for m in members):
                        members.append(target)
                elif target is not None:
                    bucket[id(owner)] = target

        visited: Visited = {
            (descriptor.table, rel.name)
            for rel in descriptor.relationships
            if strategies[rel.name].is_eager
        }
        for rel in joined:
            targets = []
            for owner in owners:
                if relationship_value(owner, rel) is not UNLOADED:
                    continue
                value = buckets[rel.name].get(id(owner), [] if rel.is_collection else None)
                self._assign(owner, rel, value)
                targets.extend(value if rel.is_collection else [value] if value is not None else [])
            self._populate(session.registry.target_of(rel), _unique(targets), visited)

        for rel in descriptor.relationships:
            strategy = strategies[rel.name]
            if strategy is LoadStrategy.SUBQUERY:
                targets = self.load_subquery(owners, rel, primary)
            elif strategy is LoadStrategy.BATCHED_IN:
                targets = self.load_batched(owners, rel)
            else:
                continue
            self._populate(session.registry.target_of(rel), targets, visited)

        self.install_proxies(owners, strategies)
        return owners

    def load_lazy(self, proxy: RelationshipProxy) -> Any:
        state = proxy._state
        rel = proxy.relationship
        if proxy.strategy is LoadStrategy.FORBIDDEN:
            raise LazyLoadForbiddenError(state.descriptor.name, rel.name)

        session = self.session
        session._ensure_open()
        entity = state.entity
        target = session.registry.target_of(rel)
        self.logger.debug("Lazy loading %s.%s", state.descriptor.name, rel.name)

        if rel.fk_on_owner:
            fk = tuple(getattr(entity, column, None) for column in rel.foreign_key)
            value = None
            if all(part is not None for part in fk):
                value = session.identity_map.lookup(IdentityKey(target.entity_type, fk))
                if value is None:
                    rows = session._fetch(session.builder.select_by_identity(target, [fk]))
                    value = session._hydrate(target, rows[0]) if rows else None
                    if value is not None:
                        self._populate(target, [value], set())
        else:
            statement = self._collection_select(state.descriptor, rel, [state.descriptor.key_values(entity)])
            targets = _unique(session._hydrate(target, row) for row in session._fetch(statement))
            self._populate(target, targets, set())
            value = targets if rel.is_collection else (targets[0] if targets else None)

        proxy._resolve(value)
        if entity.__dict__.get(rel.name) is proxy:
            self._assign(entity, rel, value)
        return value

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #
    def load_batched(self, owners: Sequence[Any], rel: RelationshipDescriptor) -> List[Any]:
        """
        Resolve ``rel`` for ``owners`` with one IN statement per batch of keys.
        """
        owners = [owner for owner in owners if relationship_value(owner, rel) is UNLOADED]
        if not owners:
            return []
        session = self.session
        target = session.registry.target_of(rel)

        if rel.fk_on_owner:
            keys = self._distinct(self._foreign_key(owner, rel) for owner in owners)
            missing = [
                key for key in keys if session.identity_map.lookup(IdentityKey(target.entity_type, key)) is None
            ]
            for chunk in chunked(missing, self.batch_size):
                for row in session._fetch(session.builder.select_by_identity(target, chunk)):
                    session._hydrate(target, row)
            return self._assign_referenced(owners, rel, target)

        owner_descriptor = session.registry.descriptor_for(owners[0])
        keys = self._distinct(owner_descriptor.key_values(owner) for owner in owners)
        grouped: Dict[Tuple[Any, ...], List[Any]] = defaultdict(list)
        for chunk in chunked(keys, self.batch_size):
            statement = self._collection_select(owner_descriptor, rel, chunk)
            self._group_rows(rel, target, session._fetch(statement), grouped)
        return self._distribute(owners, owner_descriptor, rel, grouped)

    def load_subquery(self, owners: Sequence[Any], rel: RelationshipDescriptor, primary: Optional[Select]) -> List[Any]:
        """
        Resolve ``rel`` with one statement filtered by ``IN (<primary query keys>)``.

        Composite keys, or a missing primary query, fall back to batched-in.
        """
        owners = [owner for owner in owners if relationship_value(owner, rel) is UNLOADED]
        if not owners:
            return []
        session = self.session
        owner_descriptor = session.registry.descriptor_for(owners[0])
        key_columns = rel.foreign_key if rel.fk_on_owner else owner_descriptor.primary_key_names
        if primary is None or len(key_columns) != 1:
            return self.load_batched(owners, rel)

        target = session.registry.target_of(rel)
        inner = primary.project(tuple(ColumnRef(column) for column in key_columns))
        if rel.fk_on_owner:
            where = InSelect(tuple(ColumnRef(pk) for pk in target.primary_key_names), inner)
            for row in session._fetch(session.builder.select(target, where)):
                session._hydrate(target, row)
            return self._assign_referenced(owners, rel, target)

        grouped: Dict[Tuple[Any, ...], List[Any]] = defaultdict(list)
        if rel.fk_on_target:
            where = InSelect(tuple(ColumnRef(fk) for fk in rel.foreign_key), inner)
            statement = session.builder.select(target, where, order_by=target.primary_key_names)
        else:
            statement = session.builder.select_linked(rel, InSelect(session.builder.link_columns(rel), inner))
        self._group_rows(rel, target, session._fetch(statement), grouped)
        return self._distribute(owners, owner_descriptor, rel, grouped)

    def install_proxies(self, entities: Iterable[Any], strategies: Mapping[str, LoadStrategy]) -> None:
        """
        Give every relationship attribute not yet present a deferred proxy.
        """
        for entity in entities:
            state = instance_state(entity)
            if state is None:
                continue
            for rel in state.descriptor.relationships:
                if rel.name in entity.__dict__:
                    continue
                strategy = strategies.get(rel.name, rel.default_strategy)
                if strategy is not LoadStrategy.FORBIDDEN:
                    strategy = LoadStrategy.LAZY
                setattr(entity, rel.name, RelationshipProxy(state, rel, strategy))

    def expire(self, entity: Any) -> None:
        """
        Replace every relationship attribute with a fresh default proxy.
        """
        state = instance_state(entity)
        if state is None:
            return
        for rel in state.descriptor.relationships:
            entity.__dict__.pop(rel.name, None)
        state.loaded_related.clear()
        self.install_proxies([entity], {})

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _populate(self, descriptor: EntityDescriptor, entities: List[Any], visited: Visited) -> None:
        """
        Apply default eager strategies to targets reached by a load, then proxy the rest.
        """
        if not entities:
            return
        for rel in descriptor.relationships:
            if not rel.default_strategy.is_eager:
                continue
            marker = (descriptor.table, rel.name)
            if marker in visited:
                continue
            visited.add(marker)
            targets = self.load_batched(entities, rel)
            self._populate(self.session.registry.target_of(rel), targets, visited)
        self.install_proxies(entities, {})

    def _collection_select(
        self,
        owner: EntityDescriptor,
        rel: RelationshipDescriptor,
        keys: Sequence[Tuple[Any, ...]],
    ) -> Select:
        builder = self.session.builder
        target = self.session.registry.target_of(rel)
        if rel.fk_on_target:
            return builder.select_in(target, rel.foreign_key, keys, order_by=target.primary_key_names)
        return builder.select_linked(rel, key_predicate(builder.link_columns(rel), keys))

    def _group_rows(
        self,
        rel: RelationshipDescriptor,
        target: EntityDescriptor,
        rows: List[Dict[str, Any]],
        grouped: Dict[Tuple[Any, ...], List[Any]],
    ) -> None:
        for row in rows:
            entity = self.session._hydrate(target, row)
            if rel.fk_on_target:
                owner_key = tuple(row[column] for column in rel.foreign_key)
            else:
                owner_key = tuple(row[owner_key_alias(position)] for position in range(len(rel.foreign_key)))
            members = grouped[owner_key]
            if all(member is not entity for member in members):
                members.append(entity)

    def _distribute(
        self,
        owners: Sequence[Any],
        owner_descriptor: EntityDescriptor,
        rel: RelationshipDescriptor,
        grouped: Mapping[Tuple[Any, ...], List[Any]],
    ) -> List[Any]:
        loaded: List[Any] = []
        for owner in owners:
            members = grouped.get(owner_descriptor.key_values(owner), [])
            if rel.is_collection:
                self._assign(owner, rel, list(members))
            else:
                self._assign(owner, rel, members[0] if members else None)
            loaded.extend(members)
        return _unique(loaded)

    def _assign_referenced(self, owners: Sequence[Any], rel: RelationshipDescriptor, target: EntityDescriptor) -> List[Any]:
        loaded = []
        for owner in owners:
            key = self._foreign_key(owner, rel)
            value = None
            if key is not None:
                value = self.session.identity_map.lookup(IdentityKey(target.entity_type, key))
            self._assign(owner, rel, value)
            if value is not None:
                loaded.append(value)
        return _unique(loaded)

    def _assign(self, entity: Any, rel: RelationshipDescriptor, value: Any) -> None:
        current = entity.__dict__.get(rel.name)
        if isinstance(current, RelationshipProxy) and not current.loaded:
            current._resolve(value)
        setattr(entity, rel.name, value)
        state = instance_state(entity)
        if state is not None:
            state.loaded_related[rel.name] = self.session._identity_of_related(rel, value)

    @staticmethod
    def _foreign_key(owner: Any, rel: RelationshipDescriptor) -> Optional[Tuple[Any, ...]]:
        key = tuple(getattr(owner, column, None) for column in rel.foreign_key)
        if any(part is None for part in key):
            return None
        return key

    @staticmethod
    def _distinct(keys: Iterable[Optional[Tuple[Any, ...]]]) -> List[Tuple[Any, ...]]:
        return list(dict.fromkeys(key for key in keys if key is not None))
