"""
PostgreSQL database adapter implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from ..dialects.postgres import PostgresDialect
from ..errors import (
    AdapterConfigurationError,
    AdapterConnectionError,
    ConstraintViolationError,
    DatabaseError,
)
from ..utils import get_logger
from .base import DatabaseAdapter
from .config import ConnectionConfig


ISOLATION_LEVELS = {
    "read uncommitted": "READ UNCOMMITTED",
    "read committed": "READ COMMITTED",
    "repeatable read": "REPEATABLE READ",
    "serializable": "SERIALIZABLE",
}


def isolation_level_sql(value: str) -> str:
    normalized = " ".join(value.replace("_", " ").split()).lower()
    level = ISOLATION_LEVELS.get(normalized)
    if level is None:
        raise AdapterConfigurationError(f"Unsupported isolation level: {value!r}")
    return level


def _load_driver():
    try:
        import psycopg

        return psycopg
    except ImportError:
        return None


@dataclass
class PostgresConnectionState:
    connection: Any
    config: ConnectionConfig
    driver: Any


class PostgresAdapter(DatabaseAdapter):
    """
    Adapter wrapping the psycopg 3 PostgreSQL driver.
    """

    def __init__(self) -> None:
        self.dialect = PostgresDialect()
        self._state: PostgresConnectionState | None = None
        self.logger = get_logger("adapters.postgres")

    def connect(self, config: ConnectionConfig) -> Any:
        isolation = isolation_level_sql(config.isolation_level) if config.isolation_level else None
        driver = _load_driver()
        if driver is None:
            raise AdapterConfigurationError("psycopg is required to use PostgresAdapter.")

        options = dict(config.options or {})
        if config.timeout and "connect_timeout" not in options:
            options["connect_timeout"] = int(config.timeout)

        self.logger.info(
            "Connecting to PostgreSQL %s (autocommit=%s)",
            config.descriptive_label(),
            config.autocommit,
        )
        try:
            connection = driver.connect(config.url, **options)
        except driver.Error as exc:
            raise AdapterConnectionError("Failed to connect to PostgreSQL.") from exc
        # Transactions are driven explicitly through begin/commit/rollback.
        connection.autocommit = True
        self._state = PostgresConnectionState(connection, config, driver)
        if isolation:
            self.execute(f"SET SESSION CHARACTERISTICS AS TRANSACTION ISOLATION LEVEL {isolation}")
        return connection

    def close(self) -> None:
        if self._state:
            try:
                self._state.connection.close()
            finally:
                self._state = None

    def _ensure_state(self) -> PostgresConnectionState:
        if not self._state:
            raise AdapterConnectionError("PostgresAdapter is not connected.")
        if getattr(self._state.connection, "closed", False):
            raise AdapterConnectionError("PostgreSQL connection was closed.")
        return self._state

    def execute(self, sql: str, params: Sequence[Any] | None = None):
        state = self._ensure_state()
        cursor = state.connection.cursor()
        errors = state.driver.errors
        try:
            cursor.execute(sql, tuple(params or ()))
        except errors.IntegrityError as exc:
            raise ConstraintViolationError(str(exc), statement=sql) from exc
        except state.driver.Error as exc:
            raise DatabaseError(f"PostgreSQL error: {exc}") from exc
        return cursor

    def begin(self) -> None:
        self.execute("BEGIN")

    def commit(self) -> None:
        self.execute("COMMIT")

    def rollback(self) -> None:
        self.execute("ROLLBACK")

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        row = cursor.fetchone()
        if not row:
            raise DatabaseError(f"INSERT into {table} returned no {pk_column} value.")
        return row[0]
