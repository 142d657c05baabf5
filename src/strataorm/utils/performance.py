"""
Statement accounting and N+1 detection.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Deque, List, Sequence


@dataclass(frozen=True)
class ExecutedStatement:
    kind: str
    sql: str
    params: tuple
    elapsed_ms: float


@dataclass
class QueryStat:
    sql: str
    count: int = 0
    total_ms: float = 0.0
    fingerprints: set[str] = field(default_factory=set)

    def record(self, fingerprint: str, elapsed_ms: float) -> None:
        self.count += 1
        self.total_ms += elapsed_ms
        if fingerprint:
            self.fingerprints.add(fingerprint)

    @property
    def average_ms(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_ms / self.count


class StatementTracker:
    """
    Records statements executed by a session and warns about N+1 patterns.

    The same normalized SQL running ``n_plus_one_threshold`` times with
    distinct parameters is reported once per tracker lifetime.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        n_plus_one_threshold: int = 5,
        history_size: int = 1000,
    ) -> None:
        self.logger = logger
        self.n_plus_one_threshold = n_plus_one_threshold
        self.stats: dict[str, QueryStat] = {}
        self.history: Deque[ExecutedStatement] = deque(maxlen=history_size)
        self.totals: Counter[str] = Counter()
        self._reported: set[str] = set()

    def record(self, kind: str, sql: str, params: Sequence[object], elapsed_ms: float) -> None:
        normalized_sql = self._normalize_sql(sql)
        self.history.append(ExecutedStatement(kind, normalized_sql, tuple(params), elapsed_ms))
        self.totals[kind] += 1
        stat = self.stats.setdefault(normalized_sql, QueryStat(sql=normalized_sql))
        stat.record(self._fingerprint(params), elapsed_ms)
        if self._should_report(stat):
            self._report(stat)

    def statements(self, kind: str | None = None) -> List[ExecutedStatement]:
        if kind is None:
            return list(self.history)
        return [entry for entry in self.history if entry.kind == kind]

    def count(self, kind: str | None = None) -> int:
        """
        Statements recorded since the last reset; not bounded by the history size.
        """
        if kind is None:
            return sum(self.totals.values())
        return self.totals[kind]

    def summary(self) -> List[dict[str, object]]:
        return [
            {
                "sql": stat.sql,
                "count": stat.count,
                "total_ms": stat.total_ms,
                "average_ms": stat.average_ms,
                "distinct_params": len(stat.fingerprints),
            }
            for stat in self.stats.values()
        ]

    def reset(self) -> None:
        self.stats.clear()
        self.history.clear()
        self.totals.clear()
        self._reported.clear()

    def _should_report(self, stat: QueryStat) -> bool:
        if stat.count < self.n_plus_one_threshold:
            return False
        if len(stat.fingerprints) < 2:
            return False
        return stat.sql not in self._reported

    def _report(self, stat: QueryStat) -> None:
        self._reported.add(stat.sql)
        self.logger.warning(
            "Potential N+1 detected for SQL '%s' (%s executions, %s distinct params)",
            self._abbreviate(stat.sql),
            stat.count,
            len(stat.fingerprints),
            extra={"sql": stat.sql, "count": stat.count, "distinct_params": len(stat.fingerprints)},
        )

    @staticmethod
    def _normalize_sql(sql: str) -> str:
        return " ".join(sql.strip().split())

    @staticmethod
    def _fingerprint(params: Sequence[object]) -> str:
        if not params:
            return ""
        return repr(tuple(params))

    @staticmethod
    def _abbreviate(sql: str, max_length: int = 80) -> str:
        if len(sql) <= max_length:
            return sql
        return sql[: max_length - 3] + "..."
