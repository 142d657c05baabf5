import pytest

from strataorm import SchemaRegistry, Session, SessionOptions, create_all
from strataorm.adapters import ConnectionConfig, SQLiteAdapter
from strataorm.hooks import hooks


@pytest.fixture(autouse=True)
def clear_hooks():
    hooks.clear()
    yield
    hooks.clear()


@pytest.fixture
def open_session(tmp_path):
    """
    Open a SQLite-backed session for a mapping dict or an existing registry.

    Tables are created on first use; every session is closed at teardown.
    """
    sessions = []

    def factory(mappings, *, name="test.db", **options):
        if isinstance(mappings, SchemaRegistry):
            registry = mappings
        else:
            registry = SchemaRegistry()
            registry.map_all(mappings)
        config = ConnectionConfig(url=f"sqlite:///{tmp_path / name}")
        session = Session(
            SQLiteAdapter(),
            registry,
            connection_config=config,
            options=SessionOptions(**options),
        )
        create_all(session)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()
