"""
Session management coordinating adapters, unit of work, and identity map.
"""

from __future__ import annotations

import copy
import itertools
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

from ..adapters.base import DatabaseAdapter, fetch_dicts
from ..adapters.config import ConnectionConfig
from ..errors import (
    DetachedInstanceError,
    InvalidQueryError,
    InvalidRequestError,
    NotFoundError,
    SessionClosedError,
)
from ..hooks import HookDispatcher
from ..hooks import hooks as default_hooks
from ..mapping.descriptors import EntityDescriptor, RelationshipDescriptor
from ..mapping.registry import SchemaRegistry
from ..query.builder import QueryBuilder, related_alias
from ..query.compiler import StatementCompiler
from ..query.expressions import ColumnRef, key_predicate
from ..query.query import Query
from ..query.statements import CompiledStatement
from ..utils import StatementTracker, get_logger, redact_params, time_call
from .flush import FlushExecutor
from .identity_map import IdentityKey, IdentityMap
from .journal import JournalEntry, TransactionJournal, UndoLog, restore_attribute
from .loading import RelationshipLoader
from .options import SessionOptions
from .proxy import UNLOADED, RelationshipProxy, relationship_value
from .state import (
    InstanceState,
    ObjectState,
    attach_state,
    detach_state,
    instance_state,
    state_of,
)
from .transaction import TransactionManager
from .unit_of_work import ChangeSet, UnitOfWork, related_entities


class Session:
    """
    Coordinates persistence operations for a set of mapped entities.

    A session owns one identity map and one unit of work and is meant to be
    used from a single thread; run independent sessions for concurrency.
    Reads and flushes begin a transaction on demand; ``commit()`` flushes and
    commits it, ``rollback()`` abandons it and restores in-memory state.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        registry: SchemaRegistry,
        *,
        connection_config: Optional[ConnectionConfig] = None,
        options: Optional[SessionOptions] = None,
        hooks: Optional[HookDispatcher] = None,
    ) -> None:
        self.adapter = adapter
        self.registry = registry
        self.dialect = adapter.dialect
        self.connection_config = connection_config or ConnectionConfig(url="sqlite:///:memory:")
        self.options = options or SessionOptions()
        self.hooks = hooks if hooks is not None else default_hooks
        self.identity_map = IdentityMap()
        self.unit_of_work = UnitOfWork(registry)
        self.transaction_manager = TransactionManager(adapter, self.dialect)
        self.journal = TransactionJournal()
        self.builder = QueryBuilder(registry)
        self.compiler = StatementCompiler(self.dialect)
        self.loader = RelationshipLoader(self)
        self.logger = get_logger("persistence.session")
        self.tracker = StatementTracker(
            get_logger("performance"),
            n_plus_one_threshold=self.options.n_plus_one_threshold,
        )
        self._order = itertools.count(1)
        self._closed = False
        self._flushing = False
        self.adapter.connect(self.connection_config)

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type:
                self.rollback()
            else:
                self.commit()
        finally:
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        self._ensure_open()
        self.transaction_manager.begin()
        self.journal.push()

    @contextmanager
    def transaction(self) -> Iterator["Session"]:
        """
        Provide nested transaction context with savepoint support.
        """
        self.begin()
        try:
            yield self
        except BaseException:
            if self.transaction_manager.active:
                self.rollback()
            raise
        else:
            self.commit()

    def commit(self) -> None:
        self._ensure_open()
        if not self.transaction_manager.active:
            self.begin()
        self.flush()
        try:
            self.transaction_manager.commit()
        except BaseException:
            self._abort_transaction()
            raise
        self.journal.commit_frame()
        if not self.transaction_manager.active:
            self.logger.debug("Transaction committed")
            self.hooks.fire("after_commit", None, session=self)

    def rollback(self) -> None:
        """
        Abandon the current transaction level.

        Entities inserted by it become transient again, deleted ones return
        to persistent, updated ones get their column values back. Rolling
        back the outermost level also drops changes that were never flushed.
        """
        self._ensure_open()
        manager = self.transaction_manager
        try:
            if manager.active:
                manager.rollback()
        finally:
            if manager.active:
                self._restore(self.journal.rollback_frame(), retry=False)
            else:
                self._restore(self.journal.drain(), retry=False)
                self._discard_unflushed()
        self.logger.debug("Transaction rolled back (depth=%s)", manager.depth)
        self.hooks.fire("after_rollback", None, session=self)

    def close(self) -> None:
        if self._closed:
            return
        try:
            self.transaction_manager.rollback_all()
        finally:
            self.journal.drain()
            self.expunge_all()
            self._closed = True
            self.adapter.close()
            self.logger.debug("Session closed")

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def add(self, entity: Any) -> None:
        """
        Track ``entity`` for insertion, along with transient entities it references.
        """
        self._ensure_open()
        self._attach(entity)
        self._cascade([entity])

    def add_all(self, entities: Iterable[Any]) -> None:
        for entity in entities:
            self.add(entity)

    def remove(self, entity: Any) -> None:
        self._ensure_open()
        state = self._own_state(entity)
        if state.status is ObjectState.PENDING:
            self._make_transient(state)
            return
        if state.status is ObjectState.REMOVED_PENDING:
            return
        state.status = ObjectState.REMOVED_PENDING
        self.unit_of_work.mark_removed(state)

    def expunge(self, entity: Any) -> None:
        self._ensure_open()
        state = self._own_state(entity)
        if state.status is ObjectState.PENDING:
            self._make_transient(state)
            return
        if state.key is not None and self.identity_map.lookup(state.key) is entity:
            self.identity_map.evict(state.key)
        self.unit_of_work.discard(state)
        state.status = ObjectState.DETACHED

    def expunge_all(self) -> None:
        """
        Detach every tracked entity; pending ones become transient.
        """
        self._ensure_open()
        for state in list(self.unit_of_work.new.values()):
            self._make_transient(state)
        for entity in self.identity_map.values():
            state = instance_state(entity)
            if state is not None:
                state.status = ObjectState.DETACHED
        for state in self.unit_of_work.removed.values():
            state.status = ObjectState.DETACHED
        self.identity_map.clear()
        self.unit_of_work.clear()

    def state_of(self, entity: Any) -> ObjectState:
        return state_of(entity)

    def is_modified(self, entity: Any) -> bool:
        state = instance_state(entity)
        return state is not None and state.status.is_persistent and state.is_modified()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def query(self, entity_type: Type) -> Query:
        self._ensure_open()
        return Query(self, entity_type)

    def get(self, entity_type: Type, key: Any) -> Any:
        entity = self.find(entity_type, key)
        if entity is None:
            raise NotFoundError(f"{entity_type.__name__} with key {key!r} does not exist")
        return entity

    def find(self, entity_type: Type, key: Any) -> Optional[Any]:
        """
        Like :meth:`get` but returns ``None`` when no row matches.
        """
        self._ensure_open()
        descriptor = self.registry.descriptor_for(entity_type)
        values = self._normalize_key(descriptor, key)
        cached = self.identity_map.lookup(IdentityKey(descriptor.entity_type, values))
        if cached is not None:
            if instance_state(cached).status is ObjectState.REMOVED_PENDING:
                return None
            return cached
        columns = [ColumnRef(name) for name in descriptor.primary_key_names]
        return self.query(descriptor.entity_type).filter(key_predicate(columns, [values])).first()

    def refresh(self, entity: Any) -> None:
        """
        Reload column values from the database, discarding unflushed changes.
        """
        self._ensure_open()
        state = self._own_state(entity)
        if state.key is None or state.status is ObjectState.PENDING:
            raise InvalidRequestError(f"Cannot refresh pending {state.descriptor.name}")
        rows = self._fetch(self.builder.select_by_identity(state.descriptor, [state.key.values]))
        if not rows:
            raise NotFoundError(f"{state.descriptor.name}{state.key.values!r} no longer exists")
        for name in state.descriptor.column_names:
            setattr(entity, name, rows[0][name])
        state.take_snapshot()
        self.unit_of_work.dirty.pop(id(state), None)
        self.loader.expire(entity)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """
        Run raw SQL through the adapter; no transaction is begun on its behalf.
        """
        self._ensure_open()
        return self._run(CompiledStatement(sql, list(params or ()), "raw"))

    def query_stats(self) -> Dict[str, Any]:
        return {
            "total": self.tracker.count(),
            "by_kind": dict(self.tracker.totals),
            "queries": self.tracker.summary(),
        }

    # ------------------------------------------------------------------ #
    # Flush
    # ------------------------------------------------------------------ #
    def flush(self) -> None:
        """
        Write pending changes inside the current transaction.

        On any failure, including cancellation, the transaction is rolled
        back, attribute writes made by the flush are undone, and every
        entity returns to its unflushed state so the flush can be retried.
        """
        self._ensure_open()
        if self._flushing:
            raise InvalidRequestError("Session is already flushing")
        self._flushing = True
        try:
            self._flush()
        finally:
            self._flushing = False

    def _flush(self) -> None:
        self.hooks.fire("before_flush", None, session=self)
        undo = UndoLog()
        executor: Optional[FlushExecutor] = None
        try:
            self._cascade(state.entity for state in self._tracked_states())
            change_set = self.unit_of_work.compute_change_set(self._persistent_states(), undo)
            if change_set.is_empty:
                return
            if not self.transaction_manager.active:
                self.begin()
            executor = FlushExecutor(self, change_set, undo)
            entries = executor.run()
        except BaseException:
            undo.revert()
            if executor is not None and executor.started:
                self._abort_transaction()
            raise
        self._apply_flush(entries, change_set)
        self.journal.record(entries)
        self.logger.debug(
            "Flushed %s insert(s), %s update(s), %s delete(s)",
            sum(1 for e in entries if e.action == "insert"),
            sum(1 for e in entries if e.action == "update"),
            sum(1 for e in entries if e.action == "delete"),
        )
        self.hooks.fire("after_flush", None, session=self)

    def _apply_flush(self, entries: List[JournalEntry], change_set: ChangeSet) -> None:
        touched: Dict[int, InstanceState] = {}
        inserted: List[Any] = []
        for entry in entries:
            state = entry.state
            if entry.action == "delete":
                if self.identity_map.lookup(state.key) is state.entity:
                    self.identity_map.evict(state.key)
                state.status = ObjectState.DETACHED
                self.unit_of_work.discard(state)
                continue
            if entry.action == "insert":
                key = state.current_key()
                if state.key is not None and state.key != key:
                    self.identity_map.evict(state.key)
                self.identity_map.register(key, state.entity)
                state.key = key
                inserted.append(state.entity)
            if entry.action in ("insert", "update"):
                state.status = ObjectState.PERSISTENT_CLEAN
                state.take_snapshot()
                self.unit_of_work.discard(state)
            touched[id(state)] = state
        for state in change_set.updates:
            self.unit_of_work.dirty.pop(id(state), None)
        for state in touched.values():
            for rel in state.descriptor.relationships:
                value = relationship_value(state.entity, rel)
                if value is not UNLOADED:
                    state.loaded_related[rel.name] = self._identity_of_related(rel, value)
        self.loader.install_proxies(inserted, {})

    def _abort_transaction(self) -> None:
        try:
            self.transaction_manager.rollback_all()
        finally:
            self._restore(self.journal.drain(), retry=True)
        self.logger.warning("Flush failed; transaction rolled back")
        self.hooks.fire("after_rollback", None, session=self)

    def _restore(self, entries: List[JournalEntry], *, retry: bool) -> None:
        """
        Undo the in-memory effects of flushed entries, newest first.

        ``retry`` returns entities to their unflushed intent (pending, dirty,
        removed-pending); otherwise the changes are abandoned.
        """
        for entry in reversed(entries):
            state = entry.state
            entity = state.entity
            for attribute, previous in reversed(entry.writes):
                restore_attribute(entity, attribute, previous)
            state.loaded_related = dict(entry.prior_related)

            if entry.action == "insert":
                if state.key is not None and self.identity_map.lookup(state.key) is entity:
                    self.identity_map.evict(state.key)
                state.snapshot = entry.prior_snapshot
                state.key = entry.prior_key
                state.status = ObjectState.PENDING
                self._drop_unloaded_proxies(entity)
                if retry:
                    if state.key is not None:
                        self.identity_map.register(state.key, entity)
                    self.unit_of_work.mark_new(state)
                else:
                    self._make_transient(state)
            elif entry.action == "update":
                state.snapshot = entry.prior_snapshot
                state.status = entry.prior_status
                if not retry:
                    self._revert_columns(state)
            elif entry.action == "delete":
                state.snapshot = entry.prior_snapshot
                state.key = entry.prior_key
                self.identity_map.register(state.key, entity)
                if retry:
                    state.status = ObjectState.REMOVED_PENDING
                    self.unit_of_work.mark_removed(state)
                else:
                    state.status = ObjectState.PERSISTENT_CLEAN
                    self.unit_of_work.discard(state)
            elif not retry:
                self.loader.expire(entity)

    def _discard_unflushed(self) -> None:
        for state in list(self.unit_of_work.new.values()):
            self._make_transient(state)
        for state in list(self.unit_of_work.removed.values()):
            state.status = ObjectState.PERSISTENT_CLEAN
        for state in self._persistent_states():
            if state.is_modified() or self._relationships_changed(state):
                self._revert_columns(state)
        self.unit_of_work.clear()

    # ------------------------------------------------------------------ #
    # Execution helpers
    # ------------------------------------------------------------------ #
    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")

    def _autobegin(self) -> None:
        if not self.transaction_manager.active:
            self.begin()

    def _run(self, compiled: CompiledStatement) -> Any:
        timer = time_call(
            f"session.{compiled.kind}",
            self.logger,
            sql=compiled.sql,
            params=redact_params(compiled.params),
            threshold_ms=self.options.slow_query_ms,
        )
        with timer:
            cursor = self.adapter.execute(compiled.sql, compiled.params)
        self.tracker.record(compiled.kind, compiled.sql, compiled.params, timer.elapsed_ms)
        return cursor

    def _execute(self, statement: Any) -> Any:
        self._ensure_open()
        return self._run(self.compiler.compile(statement))

    def _fetch(self, statement: Any) -> List[Dict[str, Any]]:
        self._ensure_open()
        self._autobegin()
        return fetch_dicts(self._execute(statement))

    # ------------------------------------------------------------------ #
    # State helpers
    # ------------------------------------------------------------------ #
    def _hydrate(self, descriptor: EntityDescriptor, row: Mapping[str, Any], prefix: Optional[str] = None) -> Any:
        """
        Materialise one row, reusing the identity map's instance when present.

        Returns ``None`` when the row's key columns are all NULL (an outer
        join without a match).
        """

        def value(name: str) -> Any:
            return row[related_alias(prefix, name) if prefix else name]

        key_values = tuple(value(name) for name in descriptor.primary_key_names)
        if all(part is None for part in key_values):
            return None
        key = IdentityKey(descriptor.entity_type, key_values)
        existing = self.identity_map.lookup(key)
        if existing is not None:
            return existing

        entity = descriptor.create_instance()
        for name in descriptor.column_names:
            setattr(entity, name, value(name))
        state = InstanceState(entity, descriptor, self, next(self._order))
        state.status = ObjectState.PERSISTENT_CLEAN
        state.key = key
        state.take_snapshot()
        attach_state(entity, state)
        self.identity_map.register(key, entity)
        return entity

    def _attach(self, entity: Any) -> InstanceState:
        descriptor = self.registry.descriptor_for(entity)
        state = instance_state(entity)
        if state is not None:
            owner = state.session
            if state.status is ObjectState.DETACHED or owner is None or owner.closed:
                raise DetachedInstanceError(f"{descriptor.name} is detached and cannot be re-added")
            if owner is not self:
                raise InvalidRequestError(f"{descriptor.name} is already attached to another session")
            if state.status is ObjectState.REMOVED_PENDING:
                state.status = ObjectState.PERSISTENT_CLEAN
                self.unit_of_work.discard(state)
            return state

        state = InstanceState(entity, descriptor, self, next(self._order))
        key = state.current_key()
        if key.complete:
            self.identity_map.register(key, entity)
            state.key = key
        state.status = ObjectState.PENDING
        attach_state(entity, state)
        self.unit_of_work.mark_new(state)
        return state

    def _cascade(self, entities: Iterable[Any]) -> None:
        """
        Add transient entities reachable through loaded relationship values.
        """
        stack = list(entities)
        seen = {id(entity) for entity in stack}
        while stack:
            state = instance_state(stack.pop())
            if state is None:
                continue
            for _, related in related_entities(state):
                if id(related) in seen:
                    continue
                seen.add(id(related))
                if instance_state(related) is None:
                    self._attach(related)
                    stack.append(related)

    def _own_state(self, entity: Any) -> InstanceState:
        state = instance_state(entity)
        name = type(entity).__name__
        if state is None:
            raise InvalidRequestError(f"{name} is not tracked by this session")
        if state.status is ObjectState.DETACHED:
            raise DetachedInstanceError(f"{name} is detached")
        if state.session is not self:
            raise InvalidRequestError(f"{name} belongs to another session")
        return state

    def _make_transient(self, state: InstanceState) -> None:
        if state.key is not None and self.identity_map.lookup(state.key) is state.entity:
            self.identity_map.evict(state.key)
        self.unit_of_work.discard(state)
        state.status = ObjectState.TRANSIENT
        state.key = None
        state.snapshot = None
        self._drop_unloaded_proxies(state.entity)
        detach_state(state.entity)

    def _revert_columns(self, state: InstanceState) -> None:
        for name, value in (state.snapshot or {}).items():
            setattr(state.entity, name, copy.deepcopy(value))
        self.loader.expire(state.entity)

    def _relationships_changed(self, state: InstanceState) -> bool:
        for rel in state.descriptor.relationships:
            value = relationship_value(state.entity, rel)
            if value is UNLOADED:
                continue
            if self._identity_of_related(rel, value) != state.loaded_related.get(rel.name):
                return True
        return False

    @staticmethod
    def _drop_unloaded_proxies(entity: Any) -> None:
        for name, value in list(entity.__dict__.items()):
            if isinstance(value, RelationshipProxy) and not value.loaded:
                del entity.__dict__[name]

    def _identity_of_related(self, rel: RelationshipDescriptor, value: Any) -> Any:
        if value is None:
            return None
        target = self.registry.target_of(rel)
        if rel.is_collection:
            return tuple(IdentityKey(target.entity_type, target.key_values(item)) for item in value)
        return IdentityKey(target.entity_type, target.key_values(value))

    def _tracked_states(self) -> List[InstanceState]:
        return list(self.unit_of_work.new.values()) + self._persistent_states()

    def _persistent_states(self) -> List[InstanceState]:
        states = []
        for entity in self.identity_map.values():
            state = instance_state(entity)
            if state is not None and state.status.is_persistent:
                states.append(state)
        return states

    @staticmethod
    def _normalize_key(descriptor: EntityDescriptor, key: Any) -> Tuple[Any, ...]:
        names = descriptor.primary_key_names
        if isinstance(key, Mapping):
            missing = [name for name in names if name not in key]
            if missing:
                raise InvalidQueryError(f"Key for {descriptor.name} is missing {missing}")
            values = tuple(key[name] for name in names)
        elif isinstance(key, (tuple, list)):
            values = tuple(key)
        else:
            values = (key,)
        if len(values) != len(names):
            raise InvalidQueryError(
                f"{descriptor.name} key has {len(names)} column(s); got {len(values)} value(s)"
            )
        if any(value is None for value in values):
            raise InvalidQueryError(f"Key for {descriptor.name} contains NULL")
        return values
