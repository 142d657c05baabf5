"""
Transaction levels for a session connection.

The outermost level is a database transaction (BEGIN/COMMIT/ROLLBACK);
every nested level is a savepoint named ``sp_N``.
"""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..adapters.base import DatabaseAdapter
from ..dialects.base import Dialect
from ..errors import TransactionError
from ..utils import get_logger


@dataclass(frozen=True)
class TransactionLevel:
    depth: int
    savepoint: Optional[str] = None

    @property
    def is_outermost(self) -> bool:
        return self.savepoint is None


class TransactionManager:
    def __init__(self, adapter: DatabaseAdapter, dialect: Dialect) -> None:
        self.adapter = adapter
        self.dialect = dialect
        self.logger = get_logger("persistence.transaction")
        self._levels: List[TransactionLevel] = []
        self._savepoint_ids = itertools.count(1)

    @property
    def depth(self) -> int:
        return len(self._levels)

    @property
    def active(self) -> bool:
        return bool(self._levels)

    @property
    def current(self) -> Optional[TransactionLevel]:
        return self._levels[-1] if self._levels else None

    def begin(self) -> TransactionLevel:
        if not self._levels:
            self.adapter.begin()
            level = TransactionLevel(depth=1)
        else:
            if not self.dialect.capabilities.supports_savepoints:
                raise TransactionError(f"{self.dialect.name} does not support nested transactions.")
            name = f"sp_{next(self._savepoint_ids)}"
            self.adapter.execute(f"SAVEPOINT {name}")
            level = TransactionLevel(depth=self.depth + 1, savepoint=name)
        self._levels.append(level)
        self.logger.debug("Began transaction level %s", level.depth)
        return level

    def commit(self) -> None:
        level = self._pop("commit")
        if level.is_outermost:
            self.adapter.commit()
        else:
            self.adapter.execute(f"RELEASE SAVEPOINT {level.savepoint}")

    def rollback(self) -> None:
        level = self._pop("roll back")
        if level.is_outermost:
            self.adapter.rollback()
            return
        self.adapter.execute(f"ROLLBACK TO SAVEPOINT {level.savepoint}")
        self.adapter.execute(f"RELEASE SAVEPOINT {level.savepoint}")

    def rollback_all(self) -> None:
        """
        Abandon every open level with a single outer ROLLBACK.
        """
        if not self._levels:
            return
        abandoned = self.depth
        self._levels.clear()
        self.adapter.rollback()
        self.logger.debug("Rolled back %s transaction level(s)", abandoned)

    @contextmanager
    def transaction(self) -> Iterator[TransactionLevel]:
        level = self.begin()
        try:
            yield level
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    def _pop(self, action: str) -> TransactionLevel:
        if not self._levels:
            raise TransactionError(f"No active transaction to {action}.")
        return self._levels.pop()
