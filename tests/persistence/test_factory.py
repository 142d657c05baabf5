import pytest

from strataorm import (
    ConfigurationError,
    SchemaRegistry,
    SessionFactory,
    SessionOptions,
    SQLiteAdapter,
    create_all,
)
from strataorm.errors import AdapterConfigurationError


class Note:
    def __init__(self, body):
        self.id = None
        self.body = body


MAPPINGS = {
    Note: {
        "table": "note",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "body", "type": "TEXT"},
        ],
    },
}


@pytest.fixture
def factory(tmp_path):
    registry = SchemaRegistry()
    registry.map_all(MAPPINGS)
    factory = SessionFactory.from_dsn(registry, f"sqlite:///{tmp_path / 'factory.db'}")
    with factory.scope() as session:
        create_all(session)
    return factory


def count_notes(factory):
    with factory.scope() as session:
        return session.query(Note).count()


def test_from_dsn_picks_adapter_and_freezes_registry(factory):
    session = factory()
    try:
        assert isinstance(session.adapter, SQLiteAdapter)
    finally:
        session.close()
    assert factory.registry.frozen
    with pytest.raises(ConfigurationError):
        factory.registry.map(Note, MAPPINGS[Note])


def test_sessions_are_independent(factory):
    first, second = factory(), factory()
    try:
        assert first is not second
        assert first.identity_map is not second.identity_map
    finally:
        first.close()
        second.close()


def test_scope_commits_on_success(factory):
    with factory.scope() as session:
        session.add(Note("kept"))
    assert session.closed
    assert count_notes(factory) == 1


def test_scope_rolls_back_on_error(factory):
    with pytest.raises(RuntimeError):
        with factory.scope() as session:
            session.add(Note("lost"))
            session.flush()
            raise RuntimeError("boom")
    assert session.closed
    assert count_notes(factory) == 0


def test_unknown_driver_is_rejected():
    with pytest.raises(AdapterConfigurationError):
        SessionFactory.from_dsn(SchemaRegistry(), "oracle://db.example.com/app")


def test_session_options_validation():
    with pytest.raises(ConfigurationError):
        SessionOptions(batch_size=0)
    with pytest.raises(ConfigurationError):
        SessionOptions(n_plus_one_threshold=1)


def test_session_options_from_env(monkeypatch):
    monkeypatch.setenv("STRATAORM_BATCH_SIZE", "25")
    monkeypatch.setenv("STRATAORM_N_PLUS_ONE_THRESHOLD", "3")
    options = SessionOptions.from_env(slow_query_ms=50)

    assert options.batch_size == 25
    assert options.n_plus_one_threshold == 3
    assert options.slow_query_ms == 50


def test_session_options_reject_non_integer_env(monkeypatch):
    monkeypatch.setenv("STRATAORM_BATCH_SIZE", "lots")
    with pytest.raises(ConfigurationError):
        SessionOptions.from_env()
