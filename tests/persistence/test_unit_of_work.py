import pytest

from strataorm import CircularDependencyError, ObjectState
from strataorm.persistence.journal import UndoLog


class Author:
    def __init__(self, name):
        self.id = None
        self.name = name


class Article:
    def __init__(self, title, author=None):
        self.id = None
        self.title = title
        self.author_id = None
        if author is not None:
            self.author = author


class Comment:
    def __init__(self, text, article):
        self.id = None
        self.text = text
        self.article_id = None
        self.article = article


class Node:
    def __init__(self, label):
        self.id = None
        self.label = label
        self.peer_id = None


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
        ],
        "relationships": [
            {"name": "author", "kind": "many-to-one", "target_table": "author"},
        ],
    },
    Comment: {
        "table": "comment",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "text", "type": "TEXT"},
            {"name": "article_id", "type": "INTEGER"},
        ],
        "relationships": [
            {"name": "article", "kind": "many-to-one", "target_table": "article"},
        ],
    },
    Node: {
        "table": "node",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "label", "type": "TEXT"},
            {"name": "peer_id", "type": "INTEGER"},
        ],
        "relationships": [
            {"name": "peer", "kind": "many-to-one", "target_table": "node", "foreign_key": "peer_id"},
        ],
    },
}


def inserted_tables(session):
    return [entry.sql.split()[2].strip('"') for entry in session.tracker.statements("insert")]


def test_inserts_follow_dependencies_not_add_order(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ann")
    article = Article("Hello", author=author)
    comment = Comment("First!", article)
    session.add(comment)
    session.commit()

    assert inserted_tables(session) == ["author", "article", "comment"]
    assert comment.article_id == article.id
    assert article.author_id == author.id


def test_independent_inserts_keep_registration_order(open_session):
    session = open_session(MAPPINGS)
    names = ["c", "a", "b"]
    session.add_all(Author(name) for name in names)
    session.commit()

    rows = session.execute('SELECT name FROM "author" ORDER BY id').fetchall()
    assert [row["name"] for row in rows] == names


def test_collection_members_receive_owner_key(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ann")
    author.articles = [Article("one"), Article("two")]
    session.add(author)
    session.commit()

    assert inserted_tables(session) == ["author", "article", "article"]
    assert {article.author_id for article in author.articles} == {author.id}


def test_appending_to_loaded_collection_inserts_child(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ann")
    author.articles = [Article("one")]
    session.add(author)
    session.commit()
    session.tracker.reset()

    author.articles.append(Article("two"))
    session.commit()

    assert inserted_tables(session) == ["article"]
    assert session.query(Article).filter(author_id=author.id).count() == 2


def test_moving_child_between_collections_updates_foreign_key(open_session):
    session = open_session(MAPPINGS)
    first, second = Author("first"), Author("second")
    article = Article("moved")
    first.articles = [article]
    second.articles = []
    session.add_all([first, second])
    session.commit()
    session.tracker.reset()

    first.articles.remove(article)
    second.articles.append(article)
    session.commit()

    assert article.author_id == second.id
    assert session.tracker.count("update") == 1


def test_mutual_references_between_new_rows_are_rejected(open_session):
    session = open_session(MAPPINGS)
    left, right = Node("left"), Node("right")
    left.peer = right
    right.peer = left
    session.add(left)

    with pytest.raises(CircularDependencyError):
        session.flush()
    assert session.tracker.count("insert") == 0
    assert session.state_of(right) is ObjectState.PENDING
    assert left.id is None and right.id is None

    right.peer = None
    session.commit()
    assert left.peer_id == right.id

    right.peer = left
    session.commit()
    assert right.peer_id == left.id
    assert session.tracker.count("update") == 1


def test_deletes_run_children_first(open_session):
    session = open_session(MAPPINGS)
    author = Author("Ann")
    article = Article("Hello", author=author)
    comment = Comment("First!", article)
    session.add(comment)
    session.commit()
    session.tracker.reset()

    session.remove(author)
    session.remove(article)
    session.remove(comment)
    session.commit()

    tables = [entry.sql.split()[2].strip('"') for entry in session.tracker.statements("delete")]
    assert tables == ["comment", "article", "author"]


def test_undo_log_reverts_newest_write_first():
    author = Author("Ann")
    undo = UndoLog()
    undo.set(author, "name", "Bea")
    undo.set(author, "name", "Cy")
    undo.set(author, "nickname", "cy")
    undo.set(author, "id", None)

    assert len(undo) == 3
    assert undo.writes_for(author)[0] == ("name", "Ann")
    undo.revert()
    assert author.name == "Ann"
    assert not hasattr(author, "nickname")
    assert len(undo) == 0
