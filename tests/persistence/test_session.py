import pytest

from strataorm import (
    ConcurrencyConflictError,
    ConstraintViolationError,
    DetachedInstanceError,
    InvalidRequestError,
    NotFoundError,
    ObjectState,
    SessionClosedError,
    resolve,
)


class Author:
    def __init__(self, name, id=None):
        self.id = id
        self.name = name


class Article:
    def __init__(self, title, author=None, id=None):
        self.id = id
        self.title = title
        self.author_id = None
        self.version = None
        if author is not None:
            self.author = author


class Warehouse:
    def __init__(self, region, code, city):
        self.region = region
        self.code = code
        self.city = city


MAPPINGS = {
    Author: {
        "table": "author",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "name", "type": "TEXT", "nullable": False},
        ],
        "relationships": [
            {"name": "articles", "kind": "one-to-many", "target_table": "article", "foreign_key": "author_id"},
        ],
    },
    Article: {
        "table": "article",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "title", "type": "TEXT", "nullable": False},
            {"name": "author_id", "type": "INTEGER"},
            {"name": "version", "type": "INTEGER", "version": True},
        ],
        "relationships": [
            {"name": "author", "kind": "many-to-one", "target_table": "author", "foreign_key": "author_id"},
        ],
    },
    Warehouse: {
        "table": "warehouse",
        "columns": [
            {"name": "region", "type": "TEXT", "primary_key": True},
            {"name": "code", "type": "INTEGER", "primary_key": True},
            {"name": "city", "type": "TEXT"},
        ],
    },
}


def row_count(session, table):
    return session.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]


def seed_author(session, name="Ann", articles=0):
    author = Author(name)
    session.add(author)
    for index in range(articles):
        session.add(Article(f"article-{index}", author=author))
    session.commit()
    return author


def test_add_and_commit_inserts_parent_before_child(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ann")
    article = Article("Hello", author=author)
    session.add(article)
    session.commit()

    assert author.id is not None
    assert article.author_id == author.id
    assert article.version == 1
    tables = [entry.sql.split()[2] for entry in session.tracker.statements("insert")]
    assert tables == ['"author"', '"article"']
    assert session.state_of(author) is ObjectState.PERSISTENT_CLEAN
    assert session.state_of(article) is ObjectState.PERSISTENT_CLEAN
    row = session.execute('SELECT title, author_id, version FROM "article"').fetchone()
    assert (row["title"], row["author_id"], row["version"]) == ("Hello", author.id, 1)


def test_get_returns_identity_mapped_instance(open_session):
    session = open_session(MAPPINGS)
    session.execute('INSERT INTO "author" (name) VALUES (?)', ("Bob",))

    first = session.get(Author, 1)
    second = session.get(Author, {"id": 1})
    assert first is second
    assert first.name == "Bob"
    assert session.tracker.count("select") == 1


def test_get_missing_row(open_session):
    session = open_session(MAPPINGS)
    with pytest.raises(NotFoundError):
        session.get(Author, 42)
    assert session.find(Author, 42) is None


def test_query_filters_and_counts(open_session):
    session = open_session(MAPPINGS)
    author = seed_author(session, articles=3)

    titles = [a.title for a in session.query(Article).filter(title__startswith="article").order_by("-id")]
    assert titles == ["article-2", "article-1", "article-0"]
    assert session.query(Article).filter(author_id=author.id).count() == 3
    assert session.query(Article).exclude(title="article-0").count() == 2
    assert session.query(Article).filter(title="article-1").one().title == "article-1"
    assert session.query(Article).filter(title="missing").first() is None


def test_flush_without_changes_issues_no_statements(open_session):
    session = open_session(MAPPINGS)
    seed_author(session, articles=2)
    session.expunge_all()
    session.query(Article).all()
    session.tracker.reset()

    session.flush()
    session.commit()
    assert session.tracker.count() == 0


def test_update_writes_only_changed_columns(open_session):
    session = open_session(MAPPINGS)
    author = seed_author(session)
    session.tracker.reset()

    author.name = "Annie"
    assert session.state_of(author) is ObjectState.PERSISTENT_DIRTY
    session.commit()

    updates = session.tracker.statements("update")
    assert len(updates) == 1
    assert updates[0].sql == 'UPDATE "author" SET "name" = ? WHERE "id" = ?'
    assert updates[0].params == ("Annie", author.id)
    assert session.state_of(author) is ObjectState.PERSISTENT_CLEAN


def test_versioned_update_bumps_version(open_session):
    session = open_session(MAPPINGS)
    author = seed_author(session, articles=1)
    article = session.query(Article).one()
    session.tracker.reset()

    article.title = "Renamed"
    session.commit()

    update = session.tracker.statements("update")[0]
    assert update.sql.startswith('UPDATE "article" SET "title" = ?, "version" = ? WHERE')
    assert update.params == ("Renamed", 2, article.id, 1)
    assert article.version == 2
    assert article.author_id == author.id


def test_rows_without_a_version_can_be_updated_and_deleted(open_session):
    session = open_session(MAPPINGS)
    session.execute('INSERT INTO "article" (id, title, version) VALUES (?, ?, NULL)', (1, "legacy"))
    session.execute('INSERT INTO "article" (id, title, version) VALUES (?, ?, NULL)', (2, "stale"))

    legacy = session.get(Article, 1)
    legacy.title = "migrated"
    session.remove(session.get(Article, 2))
    session.commit()

    assert legacy.version == 1
    row = session.execute('SELECT title, version FROM "article" WHERE id = 1').fetchone()
    assert (row["title"], row["version"]) == ("migrated", 1)
    assert row_count(session, "article") == 1


def test_explicit_keys_inserted_in_dependency_order(open_session):
    session = open_session(MAPPINGS)
    article = Article("Hello", id=10)
    article.author_id = 1
    session.add(article)
    session.add(Author("Ann", id=1))
    session.commit()

    assert [entry.sql.split()[2] for entry in session.tracker.statements("insert")] == ['"author"', '"article"']
    session.expunge_all()
    loaded = session.get(Article, 10)
    assert resolve(loaded.author) is session.get(Author, 1)


def test_version_conflict_between_sessions(open_session):
    first = open_session(MAPPINGS)
    seed_author(first, articles=1)
    stale = first.query(Article).one()
    first.commit()

    second = open_session(first.registry)
    fresh = second.query(Article).one()
    fresh.title = "Second wins"
    second.commit()

    stale.title = "First loses"
    with pytest.raises(ConcurrencyConflictError):
        first.commit()
    assert stale.version == 1
    assert first.is_modified(stale)
    assert row_count(first, "article") == 1


def test_remove_deletes_children_before_parent(open_session):
    session = open_session(MAPPINGS)
    seed_author(session, articles=2)
    session.expunge_all()

    author = session.get(Author, 1)
    articles = resolve(author.articles)
    session.remove(author)
    for article in articles:
        session.remove(article)
    assert session.find(Author, 1) is None
    session.commit()

    tables = [entry.sql.split()[2] for entry in session.tracker.statements("delete")]
    assert tables == ['"article"', '"article"', '"author"']
    assert session.state_of(author) is ObjectState.DETACHED
    assert row_count(session, "author") == 0


def test_remove_pending_entity_makes_it_transient(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ghost")
    session.add(author)
    session.remove(author)
    session.commit()

    assert session.state_of(author) is ObjectState.TRANSIENT
    assert session.tracker.count("insert") == 0


def test_rollback_returns_flushed_insert_to_transient(open_session):
    session = open_session(MAPPINGS)
    session.begin()
    author = Author("Temp")
    session.add(author)
    session.flush()
    assert author.id is not None

    session.rollback()
    assert session.state_of(author) is ObjectState.TRANSIENT
    assert author.id is None
    assert row_count(session, "author") == 0


def test_rollback_discards_unflushed_changes(open_session):
    session = open_session(MAPPINGS)
    seed_author(session, name="Original")
    session.expunge_all()

    author = session.get(Author, 1)
    author.name = "Changed"
    session.rollback()

    assert author.name == "Original"
    assert session.state_of(author) is ObjectState.PERSISTENT_CLEAN


def test_nested_rollback_keeps_outer_work(open_session):
    session = open_session(MAPPINGS)
    session.begin()
    kept = Author("Kept")
    session.add(kept)
    session.flush()

    session.begin()
    dropped = Author("Dropped")
    session.add(dropped)
    session.flush()
    session.rollback()

    assert session.state_of(dropped) is ObjectState.TRANSIENT
    assert session.state_of(kept) is ObjectState.PERSISTENT_CLEAN
    session.commit()
    assert [row["name"] for row in session.execute('SELECT name FROM "author"')] == ["Kept"]


def test_failed_flush_restores_state_and_can_be_retried(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ann")
    good = Article("good", author=author)
    bad = Article("bad")
    bad.author_id = 999
    session.add(good)
    session.add(bad)

    with pytest.raises(ConstraintViolationError):
        session.flush()
    assert author.id is None
    assert good.author_id is None
    assert good.version is None
    assert session.state_of(author) is ObjectState.PENDING
    assert row_count(session, "author") == 0

    bad.author_id = None
    session.commit()
    assert good.author_id == author.id
    assert row_count(session, "article") == 2


def test_primary_key_change_is_rejected(open_session):
    session = open_session(MAPPINGS)
    author = seed_author(session)
    author.id = 99
    with pytest.raises(InvalidRequestError):
        session.flush()


def test_composite_key_round_trip(open_session):
    session = open_session(MAPPINGS)
    session.add_all([Warehouse("eu", 1, "Dublin"), Warehouse("eu", 2, "Riga")])
    session.commit()
    session.expunge_all()

    warehouse = session.get(Warehouse, ("eu", 2))
    assert warehouse.city == "Riga"
    assert session.get(Warehouse, {"region": "eu", "code": 2}) is warehouse
    found = session.query(Warehouse).filter(region="eu").order_by("code").all()
    assert [w.code for w in found] == [1, 2]


def test_context_manager_commits_and_closes(open_session):
    session = open_session(MAPPINGS)
    with session:
        session.add(Author("Scoped"))
    assert session.closed

    reader = open_session(session.registry)
    assert reader.query(Author).count() == 1


def test_closed_session_detaches_entities(open_session):
    session = open_session(MAPPINGS)
    seed_author(session, articles=1)
    session.expunge_all()
    author = session.get(Author, 1)
    session.close()

    assert session.state_of(author) is ObjectState.DETACHED
    with pytest.raises(DetachedInstanceError):
        author.articles.ensure_loaded()
    with pytest.raises(SessionClosedError):
        session.query(Author)


def test_adding_detached_entity_is_rejected(open_session):
    session = open_session(MAPPINGS)
    author = seed_author(session)
    session.expunge(author)
    with pytest.raises(DetachedInstanceError):
        session.add(author)
