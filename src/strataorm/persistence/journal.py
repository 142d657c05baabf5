"""
Bookkeeping that lets a session restore entity state after a rollback.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .identity_map import IdentityKey
from .state import InstanceState, ObjectState

_MISSING = object()


class UndoLog:
    """
    Attribute writes made on entities while a flush is in flight.

    ``revert()`` puts every attribute back, newest write first.
    """

    def __init__(self) -> None:
        self._entries: List[Tuple[Any, str, Any]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def set(self, entity: Any, attribute: str, value: Any) -> None:
        previous = entity.__dict__.get(attribute, _MISSING)
        if previous is value:
            return
        self._entries.append((entity, attribute, previous))
        setattr(entity, attribute, value)

    def writes_for(self, entity: Any) -> List[Tuple[str, Any]]:
        return [(attribute, previous) for owner, attribute, previous in self._entries if owner is entity]

    def revert(self) -> None:
        while self._entries:
            entity, attribute, previous = self._entries.pop()
            restore_attribute(entity, attribute, previous)


def restore_attribute(entity: Any, attribute: str, previous: Any) -> None:
    if previous is _MISSING:
        entity.__dict__.pop(attribute, None)
    else:
        setattr(entity, attribute, previous)


@dataclass
class JournalEntry:
    """
    One flushed write, with the state needed to undo its in-memory effects.
    """

    action: str
    state: InstanceState
    prior_status: ObjectState
    prior_snapshot: Optional[Dict[str, Any]]
    prior_key: Optional[IdentityKey]
    prior_related: Dict[str, Any]
    writes: List[Tuple[str, Any]] = field(default_factory=list)


class TransactionJournal:
    """
    Flushed writes grouped by transaction level.

    Committing a nested level folds its entries into the enclosing level;
    committing the outermost level discards them.
    """

    def __init__(self) -> None:
        self._frames: List[List[JournalEntry]] = []

    @property
    def depth(self) -> int:
        return len(self._frames)

    def push(self) -> None:
        self._frames.append([])

    def record(self, entries: List[JournalEntry]) -> None:
        if not self._frames:
            self.push()
        self._frames[-1].extend(entries)

    def commit_frame(self) -> None:
        if not self._frames:
            return
        entries = self._frames.pop()
        if self._frames:
            self._frames[-1].extend(entries)

    def rollback_frame(self) -> List[JournalEntry]:
        if not self._frames:
            return []
        return self._frames.pop()

    def drain(self) -> List[JournalEntry]:
        entries = [entry for frame in self._frames for entry in frame]
        self._frames.clear()
        return entries
