"""
Unit of Work: change tracking and dependency-ordered flush planning.
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Set, Tuple

from ..errors import CircularDependencyError
from ..mapping.descriptors import RelationshipDescriptor
from ..mapping.registry import SchemaRegistry
from .identity_map import IdentityKey
from .journal import UndoLog
from .proxy import UNLOADED, relationship_value
from .state import InstanceState, instance_state

ParentLink = Tuple[InstanceState, RelationshipDescriptor]


@dataclass
class ChangeSet:
    """
    Ordered write plan for one flush.
    """

    inserts: List[InstanceState] = field(default_factory=list)
    updates: List[InstanceState] = field(default_factory=list)
    associations: List[Tuple[InstanceState, RelationshipDescriptor]] = field(default_factory=list)
    deletes: List[InstanceState] = field(default_factory=list)
    parent_links: Dict[int, List[ParentLink]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.associations or self.deletes)

    def parents_of(self, state: InstanceState) -> List[ParentLink]:
        return self.parent_links.get(id(state), [])


def related_entities(state: InstanceState) -> Iterator[Tuple[RelationshipDescriptor, Any]]:
    """
    Yield ``(relationship, entity)`` for every loaded related object.
    """
    for rel in state.descriptor.relationships:
        value = relationship_value(state.entity, rel)
        if value is UNLOADED or value is None:
            continue
        if rel.is_collection or isinstance(value, (list, tuple, set)):
            for item in value:
                if item is not None:
                    yield rel, item
        else:
            yield rel, value


class UnitOfWork:
    """
    Tracks new, dirty and removed instance states within a session.

    The three sets are disjoint and keyed by object identity, so entities
    with custom ``__eq__``/``__hash__`` are still tracked individually.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self.new: Dict[int, InstanceState] = {}
        self.dirty: Dict[int, InstanceState] = {}
        self.removed: Dict[int, InstanceState] = {}

    # Registration methods ----------------------------------------------
    def mark_new(self, state: InstanceState) -> None:
        self.dirty.pop(id(state), None)
        self.removed.pop(id(state), None)
        self.new[id(state)] = state

    def mark_dirty(self, state: InstanceState) -> None:
        if id(state) not in self.new and id(state) not in self.removed:
            self.dirty[id(state)] = state

    def mark_removed(self, state: InstanceState) -> None:
        self.new.pop(id(state), None)
        self.dirty.pop(id(state), None)
        self.removed[id(state)] = state

    def discard(self, state: InstanceState) -> None:
        self.new.pop(id(state), None)
        self.dirty.pop(id(state), None)
        self.removed.pop(id(state), None)

    def is_new(self, state: InstanceState) -> bool:
        return id(state) in self.new

    def is_removed(self, state: InstanceState) -> bool:
        return id(state) in self.removed

    def collect_dirty(self, candidates: Iterable[InstanceState]) -> None:
        for state in candidates:
            if id(state) in self.new or id(state) in self.removed:
                continue
            if state.status.is_persistent and state.is_modified():
                self.mark_dirty(state)
            else:
                self.dirty.pop(id(state), None)

    def clear(self) -> None:
        self.new.clear()
        self.dirty.clear()
        self.removed.clear()

    def __bool__(self) -> bool:
        return bool(self.new or self.dirty or self.removed)

    # ------------------------------------------------------------------ #
    # Foreign-key synchronisation
    # ------------------------------------------------------------------ #
    def synchronize(self, state: InstanceState, undo: UndoLog, parents: Iterable[ParentLink] = ()) -> None:
        """
        Copy related primary keys into ``state``'s foreign-key columns.

        Collections holding ``state`` are applied first, then the entity's
        own many-to-one / owning one-to-one values, which win on conflict.
        A relationship set to ``None`` nulls its columns only when a related
        row had been loaded.
        """
        entity = state.entity
        for parent_state, rel in parents:
            parent_key = parent_state.descriptor.key_values(parent_state.entity)
            if any(value is None for value in parent_key):
                continue
            for column, value in zip(rel.foreign_key, parent_key):
                if getattr(entity, column, None) != value:
                    undo.set(entity, column, value)

        for rel in state.descriptor.relationships:
            if not rel.fk_on_owner:
                continue
            value = relationship_value(entity, rel)
            if value is UNLOADED:
                continue
            if value is None:
                if state.loaded_related.get(rel.name) is None:
                    continue
                for column in rel.foreign_key:
                    if getattr(entity, column, None) is not None:
                        undo.set(entity, column, None)
                continue
            target_key = self.registry.descriptor_for(value).key_values(value)
            if any(part is None for part in target_key):
                continue
            for column, part in zip(rel.foreign_key, target_key):
                if getattr(entity, column, None) != part:
                    undo.set(entity, column, part)

    # ------------------------------------------------------------------ #
    # Planning
    # ------------------------------------------------------------------ #
    def compute_change_set(self, persistent: Iterable[InstanceState], undo: UndoLog) -> ChangeSet:
        """
        Build the ordered write plan for the tracked states.

        ``persistent`` lists every persistent state of the session (the
        identity map's contents); foreign keys are synchronised through
        ``undo`` before dirty detection runs.
        """
        new_states = sorted(self.new.values(), key=lambda s: s.order)
        live = [s for s in persistent if s.status.is_persistent and id(s) not in self.removed]
        live.sort(key=lambda s: s.order)
        removed_states = sorted(self.removed.values(), key=lambda s: s.order)

        parent_links = self._parent_links(new_states + live)
        for state in new_states + live:
            self.synchronize(state, undo, parent_links.get(id(state), ()))
        self.collect_dirty(live)

        change_set = ChangeSet(parent_links=parent_links)
        change_set.inserts = self._order_inserts(new_states, parent_links)
        change_set.updates = [
            state
            for state in live
            if id(state) in self.dirty or self._awaits_new_key(state, parent_links)
        ]
        change_set.associations = [
            (state, rel)
            for state in new_states + live
            for rel in state.descriptor.relationships
            if rel.join_table and relationship_value(state.entity, rel) is not UNLOADED
        ]
        change_set.deletes = self._order_deletes(removed_states)
        return change_set

    def _parent_links(self, states: List[InstanceState]) -> Dict[int, List[ParentLink]]:
        links: Dict[int, List[ParentLink]] = defaultdict(list)
        for state in states:
            for rel in state.descriptor.relationships:
                if not rel.fk_on_target:
                    continue
                value = relationship_value(state.entity, rel)
                if value is UNLOADED or value is None:
                    continue
                children = value if rel.is_collection else [value]
                for child in children:
                    child_state = instance_state(child)
                    if child_state is not None and child_state is not state:
                        links[id(child_state)].append((state, rel))
        return dict(links)

    def _awaits_new_key(self, state: InstanceState, parent_links: Dict[int, List[ParentLink]]) -> bool:
        if any(id(parent) in self.new for parent, _ in parent_links.get(id(state), ())):
            return True
        for rel in state.descriptor.relationships:
            if not rel.fk_on_owner:
                continue
            target = relationship_value(state.entity, rel)
            if target is UNLOADED or target is None:
                continue
            target_state = instance_state(target)
            if target_state is not None and id(target_state) in self.new:
                return True
        return False

    def _references(self, state: InstanceState, index: Dict[IdentityKey, InstanceState]) -> Set[int]:
        """
        States in ``index`` whose key matches one of ``state``'s foreign keys.
        """
        found: Set[int] = set()
        values = state.current_values()
        for rel in state.descriptor.relationships:
            if not rel.fk_on_owner:
                continue
            fk = tuple(values.get(column) for column in rel.foreign_key)
            if any(part is None for part in fk):
                continue
            key = IdentityKey(self.registry.target_of(rel).entity_type, fk)
            target_state = index.get(key)
            if target_state is not None:
                found.add(id(target_state))
        found.discard(id(state))
        return found

    def _order_inserts(
        self,
        states: List[InstanceState],
        parent_links: Dict[int, List[ParentLink]],
    ) -> List[InstanceState]:
        index = self._key_index(states)
        new_ids = {id(state) for state in states}
        dependencies: Dict[int, Set[int]] = {}
        for state in states:
            deps = self._references(state, index)
            for target in self._pending_targets(state, new_ids):
                deps.add(target)
            for parent, _ in parent_links.get(id(state), ()):
                if id(parent) in new_ids:
                    deps.add(id(parent))
            deps.discard(id(state))
            dependencies[id(state)] = deps
        return _topological_order(states, dependencies, "insert")

    def _pending_targets(self, state: InstanceState, new_ids: Set[int]) -> Iterator[int]:
        for rel in state.descriptor.relationships:
            if not rel.fk_on_owner:
                continue
            target = relationship_value(state.entity, rel)
            if target is UNLOADED or target is None:
                continue
            target_state = instance_state(target)
            if target_state is not None and id(target_state) in new_ids:
                yield id(target_state)

    def _order_deletes(self, states: List[InstanceState]) -> List[InstanceState]:
        index: Dict[IdentityKey, InstanceState] = {}
        for state in states:
            if state.key is not None:
                index[state.key] = state
        removed_ids = {id(state) for state in states}
        dependencies: Dict[int, Set[int]] = {id(state): set() for state in states}
        for child in states:
            values = dict(child.snapshot or child.current_values())
            for rel in child.descriptor.relationships:
                if not rel.fk_on_owner:
                    continue
                fk = tuple(values.get(column) for column in rel.foreign_key)
                if any(part is None for part in fk):
                    continue
                parent = index.get(IdentityKey(self.registry.target_of(rel).entity_type, fk))
                if parent is not None and parent is not child:
                    dependencies[id(parent)].add(id(child))
            for rel, member in related_entities(child):
                member_state = instance_state(member)
                if member_state is None or id(member_state) not in removed_ids or member_state is child:
                    continue
                if rel.fk_on_target:
                    # members of a collection reference its owner
                    dependencies[id(child)].add(id(member_state))
        return _topological_order(states, dependencies, "delete")

    @staticmethod
    def _key_index(states: List[InstanceState]) -> Dict[IdentityKey, InstanceState]:
        index: Dict[IdentityKey, InstanceState] = {}
        for state in states:
            key = state.current_key()
            if key.complete:
                index[key] = state
        return index


def _topological_order(
    states: List[InstanceState],
    dependencies: Dict[int, Set[int]],
    operation: str,
) -> List[InstanceState]:
    """
    Kahn's algorithm; ties are broken by registration order.
    """
    by_id = {id(state): state for state in states}
    remaining = {sid: set(deps) & by_id.keys() for sid, deps in dependencies.items()}
    dependents: Dict[int, Set[int]] = defaultdict(set)
    for sid, deps in remaining.items():
        for dep in deps:
            dependents[dep].add(sid)

    ready = [(by_id[sid].order, sid) for sid, deps in remaining.items() if not deps]
    heapq.heapify(ready)
    ordered: List[InstanceState] = []
    while ready:
        _, sid = heapq.heappop(ready)
        ordered.append(by_id[sid])
        for dependent in dependents.get(sid, ()):
            pending = remaining[dependent]
            pending.discard(sid)
            if not pending:
                heapq.heappush(ready, (by_id[dependent].order, dependent))

    if len(ordered) != len(states):
        stuck = sorted(
            (by_id[sid] for sid, deps in remaining.items() if deps),
            key=lambda s: s.order,
        )
        names = ", ".join(f"{s.descriptor.name}{s.current_key().values!r}" for s in stuck)
        raise CircularDependencyError(f"Cannot order {operation}s; circular dependency between {names}")
    return ordered

