import asyncio
import logging

import pytest

from strataorm import LazyLoadForbiddenError, LoadStrategy, RelationshipProxy, resolve


class Author:
    def __init__(self, name):
        self.id = None
        self.name = name


class Tag:
    def __init__(self, label):
        self.id = None
        self.label = label


class Article:
    def __init__(self, title, author=None, tags=None):
        self.id = None
        self.title = title
        self.author_id = None
        if author is not None:
            self.author = author
        if tags is not None:
            self.tags = list(tags)


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
    Tag: {
        "table": "tag",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "label", "type": "TEXT", "nullable": False},
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
            {"name": "tags", "kind": "many-to-many", "target_table": "tag", "join_table": "article_tag"},
        ],
    },
}


@pytest.fixture
def session(open_session):
    """One author with fifty articles, tracker and identity map reset."""
    session = open_session(MAPPINGS)
    author = Author("Ann")
    session.add_all(Article(f"article-{index:02d}", author=author) for index in range(50))
    session.commit()
    session.expunge_all()
    session.tracker.reset()
    return session


def test_join_loads_many_to_one_in_one_statement(session):
    articles = session.query(Article).with_strategy(LoadStrategy.JOIN, "author").all()

    assert len(articles) == 50
    assert session.tracker.count("select") == 1
    assert all(article.author is articles[0].author for article in articles)
    assert articles[0].author.name == "Ann"


def test_batched_in_uses_one_statement_per_batch(session):
    articles = session.query(Article).with_strategy("batched_in", "author").all()

    assert session.tracker.count("select") == 2
    assert {id(article.author) for article in articles} == {id(articles[0].author)}


def test_batched_in_splits_keys_by_batch_size(open_session):
    session = open_session(MAPPINGS, name="batches.db", batch_size=4)
    session.add_all(Article(f"solo-{index}", author=Author(f"author-{index}")) for index in range(6))
    session.commit()
    session.expunge_all()
    session.tracker.reset()

    articles = session.query(Article).with_strategy("batched_in", "author").order_by("id").all()

    assert [article.author.name for article in articles] == [f"author-{index}" for index in range(6)]
    assert session.tracker.count("select") == 3


def test_subquery_loads_collection_with_two_statements(session):
    authors = session.query(Author).with_strategy(LoadStrategy.SUBQUERY, "articles").all()

    assert session.tracker.count("select") == 2
    articles = authors[0].articles
    assert len(articles) == 50
    assert articles[0].title == "article-00"
    assert " IN (SELECT " in session.tracker.statements("select")[1].sql


def test_join_on_collection_with_limit_falls_back_to_subquery(session):
    authors = session.query(Author).with_strategy("join", "articles").limit(1).all()

    assert len(authors) == 1
    assert len(authors[0].articles) == 50
    assert session.tracker.count("select") == 2


def test_join_on_collection_without_limit(session):
    authors = session.query(Author).with_strategy("join", "articles").all()

    assert len(authors) == 1
    assert len(authors[0].articles) == 50
    assert session.tracker.count("select") == 1


def test_batched_in_collection_uses_two_statements(session):
    authors = session.query(Author).with_strategy("batched_in", "articles").all()

    assert len(authors[0].articles) == 50
    assert session.tracker.count() == 2


def test_join_matches_lazy_loading(open_session):
    session = open_session(MAPPINGS, name="join_vs_lazy.db")
    for index, size in enumerate((3, 0, 5)):
        author = Author(f"author-{index}")
        author.articles = [Article(f"{index}-{n}") for n in range(size)]
        session.add(author)
    session.commit()

    def children_by_owner(authors):
        return {author.id: {article.id for article in resolve(author.articles)} for author in authors}

    session.expunge_all()
    lazy = children_by_owner(session.query(Author).all())
    session.expunge_all()
    session.tracker.reset()
    joined_authors = session.query(Author).with_strategy("join", "articles").all()
    joined = children_by_owner(joined_authors)

    assert joined == lazy
    assert [len(ids) for _, ids in sorted(joined.items())] == [3, 0, 5]
    assert session.tracker.count("select") == 1
    for author in joined_authors:
        for article in author.articles:
            assert session.get(Article, article.id) is article
    assert session.tracker.count("select") == 1


def test_lazy_many_to_one_hits_identity_map(session):
    authors = session.query(Author).with_strategy("batched_in", "articles").all()
    session.tracker.reset()

    article = authors[0].articles[10]
    assert isinstance(article.author, RelationshipProxy)
    assert resolve(article.author) is authors[0]
    assert article.author is authors[0]
    assert session.tracker.count() == 0


def test_lazy_collection_loads_on_first_access(session):
    author = session.get(Author, 1)
    assert isinstance(author.articles, RelationshipProxy)
    assert not author.articles.loaded

    articles = author.articles.ensure_loaded()
    assert len(articles) == 50
    assert author.articles is articles
    assert session.tracker.count("select") == 2


def test_forbidden_strategy_raises_without_querying(session):
    article = session.query(Article).with_strategy(LoadStrategy.FORBIDDEN, "author").first()
    session.tracker.reset()

    with pytest.raises(LazyLoadForbiddenError):
        resolve(article.author)
    assert session.tracker.count() == 0


def test_async_lazy_load(session):
    article = session.query(Article).first()
    author = asyncio.run(article.author.ensure_loaded_async())
    assert author.name == "Ann"


def test_lazy_loading_in_a_loop_warns_about_n_plus_one(open_session, caplog):
    caplog.set_level(logging.WARNING, logger="strataorm.performance")
    session = open_session(MAPPINGS, name="n_plus_one.db")
    session.add_all(Article(f"solo-{index}", author=Author(f"author-{index}")) for index in range(6))
    session.commit()
    session.expunge_all()

    for article in session.query(Article).all():
        resolve(article.author)

    assert any("Potential N+1 detected" in record.message for record in caplog.records)
    stats = session.query_stats()
    assert stats["by_kind"]["select"] == 7


def test_many_to_many_strategies(open_session):
    session = open_session(MAPPINGS, name="tags.db")
    python, orm, sql = Tag("python"), Tag("orm"), Tag("sql")
    session.add_all(
        [
            Article("first", tags=[python, orm]),
            Article("second", tags=[sql]),
            Article("third", tags=[]),
        ]
    )
    session.commit()

    expected = [["orm", "python"], ["sql"], []]
    for strategy, statements in (("join", 1), ("subquery", 2), ("batched_in", 2)):
        session.expunge_all()
        session.tracker.reset()
        articles = session.query(Article).with_strategy(strategy, "tags").order_by("id").all()
        assert [sorted(tag.label for tag in article.tags) for article in articles] == expected
        assert session.tracker.count("select") == statements


def test_many_to_many_membership_changes_are_written(open_session):
    session = open_session(MAPPINGS, name="membership.db")
    python, orm = Tag("python"), Tag("orm")
    article = Article("first", tags=[python, orm])
    session.add(article)
    session.commit()
    session.tracker.reset()

    article.tags.remove(python)
    session.commit()

    deletes = session.tracker.statements("delete")
    assert len(deletes) == 1
    assert deletes[0].sql.startswith('DELETE FROM "article_tag"')
    assert session.tracker.count("insert") == 0
    rows = session.execute('SELECT tag_id FROM "article_tag"').fetchall()
    assert [row["tag_id"] for row in rows] == [orm.id]
