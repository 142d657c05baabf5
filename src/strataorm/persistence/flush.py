"""
Execution of a computed change set against the storage driver.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from ..errors import ConcurrencyConflictError, ConstraintViolationError, InvalidRequestError
from ..mapping.descriptors import RelationshipDescriptor
from .identity_map import IdentityKey
from .journal import JournalEntry, UndoLog
from .proxy import UNLOADED, relationship_value
from .state import InstanceState, instance_state
from .unit_of_work import ChangeSet

if TYPE_CHECKING:
    from .session import Session


def journal_entry(action: str, state: InstanceState) -> JournalEntry:
    return JournalEntry(
        action=action,
        state=state,
        prior_status=state.status,
        prior_snapshot=dict(state.snapshot) if state.snapshot is not None else None,
        prior_key=state.key,
        prior_related=dict(state.loaded_related),
    )


class FlushExecutor:
    """
    Runs one change set: inserts, updates, association rows, then deletes.

    Every attribute written on an entity goes through ``undo`` so a failure
    part-way leaves the in-memory graph exactly as it was before the flush.
    Instance states themselves are not touched here; the session applies the
    returned journal entries once every statement has succeeded.
    """

    def __init__(self, session: "Session", change_set: ChangeSet, undo: UndoLog) -> None:
        self.session = session
        self.change_set = change_set
        self.undo = undo
        self.builder = session.builder
        self.started = False

    def run(self) -> List[JournalEntry]:
        entries: List[JournalEntry] = []
        for state in self.change_set.inserts:
            entries.append(self._insert(state))
        for state in self.change_set.updates:
            entry = self._update(state)
            if entry is not None:
                entries.append(entry)
        for state, rel in self.change_set.associations:
            entry = self._associate(state, rel)
            if entry is not None:
                entries.append(entry)
        for state in self.change_set.deletes:
            entries.append(self._delete(state))
        return entries

    # ------------------------------------------------------------------ #
    def _execute(self, statement: Any, state: InstanceState) -> Any:
        self.started = True
        try:
            return self.session._execute(statement)
        except ConstraintViolationError as exc:
            compiled = self.session.compiler.compile(statement)
            identity = state.key or state.current_key()
            raise exc.with_identity(identity if identity.complete else None, compiled.sql) from exc

    def _insert(self, state: InstanceState) -> JournalEntry:
        entity = state.entity
        descriptor = state.descriptor
        entry = journal_entry("insert", state)
        self.session.hooks.fire("before_insert", entity, session=self.session)
        self.session.unit_of_work.synchronize(state, self.undo, self.change_set.parents_of(state))

        version = descriptor.version_column
        if version is not None and getattr(entity, version.name, None) is None:
            entry.writes.append((version.name, getattr(entity, version.name, None)))
            self.undo.set(entity, version.name, 1)

        values = descriptor.values_of(entity)
        generated = descriptor.generated_key
        needs_key = generated is not None and values.get(generated.name) is None
        returning: Tuple[str, ...] = ()
        if needs_key:
            values.pop(generated.name)
            if self.session.dialect.capabilities.supports_returning:
                returning = (generated.name,)
        cursor = self._execute(self.builder.insert(descriptor, values, returning=returning), state)
        if needs_key:
            key = self.session.adapter.last_insert_id(cursor, descriptor.table, generated.name)
            entry.writes.append((generated.name, None))
            self.undo.set(entity, generated.name, key)

        self.session.hooks.fire("after_insert", entity, session=self.session)
        return entry

    def _update(self, state: InstanceState) -> Optional[JournalEntry]:
        entity = state.entity
        descriptor = state.descriptor
        self.session.unit_of_work.synchronize(state, self.undo, self.change_set.parents_of(state))
        if not state.changed_columns():
            return None
        self.session.hooks.fire("before_update", entity, session=self.session)
        changes = state.changed_columns()
        if not changes:
            return None
        moved = [name for name in descriptor.primary_key_names if name in changes]
        if moved:
            raise InvalidRequestError(
                f"Cannot change primary key column(s) {moved} of {descriptor.name}{state.key.values!r}"
            )

        entry = journal_entry("update", state)
        version = descriptor.version_column
        expected = None
        if version is not None:
            expected = state.snapshot.get(version.name) if state.snapshot else None
            bumped = (expected or 0) + 1
            entry.writes.append((version.name, getattr(entity, version.name, None)))
            self.undo.set(entity, version.name, bumped)
            changes[version.name] = bumped

        statement = self.builder.update(descriptor, state.key.values, changes, expected_version=expected)
        cursor = self._execute(statement, state)
        if version is not None and cursor.rowcount == 0:
            raise ConcurrencyConflictError(state.key, expected)
        self.session.hooks.fire("after_update", entity, session=self.session)
        return entry

    def _associate(self, state: InstanceState, rel: RelationshipDescriptor) -> Optional[JournalEntry]:
        members = relationship_value(state.entity, rel)
        if members is UNLOADED:
            return None
        target = self.session.registry.target_of(rel)
        current: List[IdentityKey] = []
        for member in members or ():
            member_state = instance_state(member)
            if member_state is not None and self.session.unit_of_work.is_removed(member_state):
                continue
            key = IdentityKey(target.entity_type, target.key_values(member))
            if key.complete and key not in current:
                current.append(key)
        previous = tuple(state.loaded_related.get(rel.name) or ())
        added = [key for key in current if key not in previous]
        dropped = [key for key in previous if key not in current]
        if not added and not dropped:
            return None

        entry = journal_entry("associate", state)
        owner_key = state.descriptor.key_values(state.entity)
        for key in dropped:
            self._execute(self.builder.dissociate(rel, owner_key, key.values), state)
        for key in added:
            self._execute(self.builder.associate(rel, owner_key, key.values), state)
        return entry

    def _delete(self, state: InstanceState) -> JournalEntry:
        entity = state.entity
        descriptor = state.descriptor
        entry = journal_entry("delete", state)
        self.session.hooks.fire("before_delete", entity, session=self.session)
        key = state.key.values
        for rel in descriptor.relationships:
            if rel.join_table:
                self._execute(self.builder.clear_associations(rel, key), state)

        version = descriptor.version_column
        expected = None
        if version is not None:
            expected = (state.snapshot or {}).get(version.name)
        cursor = self._execute(self.builder.delete(descriptor, key, expected_version=expected), state)
        if version is not None and cursor.rowcount == 0:
            raise ConcurrencyConflictError(state.key, expected)
        self.session.hooks.fire("after_delete", entity, session=self.session)
        return entry
