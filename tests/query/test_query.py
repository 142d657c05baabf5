import pytest

from strataorm import InvalidQueryError, LoadStrategy, MultipleResultsError, NotFoundError, Q, col


class Author:
    def __init__(self, name, age=None):
        self.id = None
        self.name = name
        self.age = age
        self.mentor_id = None


MAPPINGS = {
    Author: {
        "table": "author",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "name", "type": "TEXT", "nullable": False},
            {"name": "age", "type": "INTEGER"},
            {"name": "mentor_id", "type": "INTEGER"},
        ],
        "relationships": [
            {"name": "mentor", "kind": "many-to-one", "target_table": "author", "foreign_key": "mentor_id"},
        ],
    },
}


@pytest.fixture
def session(open_session):
    session = open_session(MAPPINGS)
    session.add_all([Author("Ann", 31), Author("Bob", 45), Author("Cyd"), Author("Dee", 27)])
    session.commit()
    return session


def test_query_is_immutable(session):
    base = session.query(Author)
    filtered = base.filter(age__gte=30)
    assert base.count() == 4
    assert filtered.count() == 2
    assert base.to_sql().sql != filtered.to_sql().sql


def test_filter_accepts_expressions_and_lookups(session):
    names = [a.name for a in session.query(Author).filter(col("age") < 40, name__ne="Dee").order_by("name")]
    assert names == ["Ann"]
    names = [a.name for a in session.query(Author).filter(Q(age__isnull=True) | Q(name="Bob")).order_by("name")]
    assert names == ["Bob", "Cyd"]
    assert session.query(Author).filter_by(name="Cyd").one().age is None


def test_limit_and_offset(session):
    names = [a.name for a in session.query(Author).order_by("id").offset(1).limit(2)]
    assert names == ["Bob", "Cyd"]


def test_one_requires_exactly_one_row(session):
    with pytest.raises(MultipleResultsError):
        session.query(Author).filter(age__gt=20).one()
    with pytest.raises(NotFoundError):
        session.query(Author).filter(name="Zed").one()


def test_unknown_names_are_rejected(session):
    with pytest.raises(InvalidQueryError):
        session.query(Author).filter(rank=1)
    with pytest.raises(InvalidQueryError):
        session.query(Author).order_by("-rank")
    with pytest.raises(InvalidQueryError):
        session.query(Author).with_strategy(LoadStrategy.JOIN, "students")
    with pytest.raises(InvalidQueryError):
        session.query(Author).with_strategy("eventually", "mentor")


def test_self_referencing_join(session):
    ann = session.query(Author).filter(name="Ann").one()
    bob = session.query(Author).filter(name="Bob").one()
    bob.mentor = ann
    session.commit()
    session.expunge_all()
    session.tracker.reset()

    bob = session.query(Author).filter(name="Bob").with_strategy("join", "mentor").one()
    assert bob.mentor.name == "Ann"
    assert session.tracker.count("select") == 1
