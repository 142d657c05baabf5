"""
Storage driver contract consumed by the persistence core.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol, Sequence

from ..dialects.base import Dialect
from .config import ConnectionConfig


class DatabaseAdapter(Protocol):
    """
    Adapter interface exposing the database operations sessions rely on.

    Implementations translate driver exceptions into
    :class:`~strataorm.errors.ConstraintViolationError` for integrity
    failures and :class:`~strataorm.errors.DatabaseError` otherwise.
    """

    dialect: Dialect

    def connect(self, config: ConnectionConfig) -> Any:
        """
        Establish a connection handle using the supplied configuration.
        """

    def close(self) -> None:
        """
        Close underlying resources. Implementations should be idempotent.
        """

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """
        Execute one statement, returning a DB-API cursor.
        """

    def begin(self) -> None:
        """
        Start a transaction.
        """

    def commit(self) -> None:
        """
        Commit the current transaction.
        """

    def rollback(self) -> None:
        """
        Roll back the current transaction.
        """

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        """
        Retrieve the primary key value generated by the previous insert.
        """


def row_to_dict(cursor: Any, row: Any) -> Dict[str, Any]:
    if hasattr(row, "keys"):
        return {key: row[key] for key in row.keys()}
    description = getattr(cursor, "description", None)
    if description:
        columns = [col[0] for col in description]
        return {col: row[idx] for idx, col in enumerate(columns)}
    raise ValueError("Unable to map database row to dictionary.")


def fetch_dicts(cursor: Any) -> list[Dict[str, Any]]:
    if getattr(cursor, "description", None) is None:
        return []
    return [row_to_dict(cursor, row) for row in cursor.fetchall()]
