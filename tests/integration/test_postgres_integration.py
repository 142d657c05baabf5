import os
import uuid

import pytest

from strataorm import ConcurrencyConflictError, SchemaRegistry, SessionFactory, create_all
from strataorm.schema import SchemaBuilder

pytestmark = pytest.mark.integration


class Note:
    def __init__(self, body):
        self.id = None
        self.body = body
        self.version = None


def _require_factory():
    try:
        import psycopg  # noqa: F401
    except ImportError:
        pytest.skip("psycopg driver not installed")
    dsn = os.getenv("STRATAORM_POSTGRES_DSN")
    if not dsn:
        pytest.skip("STRATAORM_POSTGRES_DSN not set; skipping Postgres integration test")
    table = f"strata_pg_{uuid.uuid4().hex[:8]}"
    registry = SchemaRegistry()
    registry.map(
        Note,
        {
            "table": table,
            "columns": [
                {"name": "id", "type": "INTEGER", "primary_key": True},
                {"name": "body", "type": "TEXT", "nullable": False},
                {"name": "version", "type": "INTEGER", "version": True},
            ],
        },
    )
    return SessionFactory.from_dsn(registry, dsn), table


def test_postgres_roundtrip_with_returning_and_versions():
    factory, table = _require_factory()
    session = factory()
    try:
        create_all(session)
        note = Note("pg-ok")
        session.add(note)
        session.commit()
        assert note.id is not None
        assert note.version == 1

        other = factory()
        try:
            copy = other.get(Note, note.id)
            copy.body = "changed elsewhere"
            other.commit()
        finally:
            other.close()

        note.body = "stale"
        with pytest.raises(ConcurrencyConflictError):
            session.commit()
    finally:
        session.execute(SchemaBuilder(session.dialect).drop_table_sql(table))
        session.close()
