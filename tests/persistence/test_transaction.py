import pytest

from strataorm.errors import TransactionError
from strataorm.dialects import DialectCapabilities, SQLiteDialect
from strataorm.persistence import TransactionManager


class RecordingAdapter:
    def __init__(self):
        self.calls = []

    def begin(self):
        self.calls.append("BEGIN")

    def commit(self):
        self.calls.append("COMMIT")

    def rollback(self):
        self.calls.append("ROLLBACK")

    def execute(self, sql, params=None):
        self.calls.append(sql)


class NoSavepointDialect(SQLiteDialect):
    capabilities = DialectCapabilities(supports_savepoints=False)


@pytest.fixture
def adapter():
    return RecordingAdapter()


def test_nested_levels_use_savepoints(adapter):
    manager = TransactionManager(adapter, SQLiteDialect())
    manager.begin()
    manager.begin()
    manager.begin()
    assert manager.depth == 3
    manager.rollback()
    manager.commit()
    manager.commit()

    assert adapter.calls == [
        "BEGIN",
        "SAVEPOINT sp_1",
        "SAVEPOINT sp_2",
        "ROLLBACK TO SAVEPOINT sp_2",
        "RELEASE SAVEPOINT sp_2",
        "RELEASE SAVEPOINT sp_1",
        "COMMIT",
    ]
    assert not manager.active


def test_transaction_context_rolls_back_on_error(adapter):
    manager = TransactionManager(adapter, SQLiteDialect())
    with pytest.raises(RuntimeError):
        with manager.transaction():
            raise RuntimeError("boom")
    assert adapter.calls == ["BEGIN", "ROLLBACK"]


def test_rollback_all_issues_one_rollback(adapter):
    manager = TransactionManager(adapter, SQLiteDialect())
    manager.begin()
    manager.begin()
    manager.rollback_all()
    manager.rollback_all()

    assert adapter.calls == ["BEGIN", "SAVEPOINT sp_1", "ROLLBACK"]
    assert manager.depth == 0


def test_commit_without_transaction(adapter):
    manager = TransactionManager(adapter, SQLiteDialect())
    with pytest.raises(TransactionError):
        manager.commit()
    with pytest.raises(TransactionError):
        manager.rollback()


def test_nesting_requires_savepoint_support(adapter):
    manager = TransactionManager(adapter, NoSavepointDialect())
    manager.begin()
    with pytest.raises(TransactionError):
        manager.begin()
