"""
Utility helpers for running the strataorm blog example end-to-end.
"""

from __future__ import annotations

from typing import Any, Dict, List

from strataorm import LoadStrategy, Session, SessionFactory, create_all, resolve

from .models import Author, Category, Post, Tag, build_registry


def bootstrap_factory(dsn: str = "sqlite:///:memory:") -> SessionFactory:
    return SessionFactory.from_dsn(build_registry(), dsn)


def bootstrap_session(dsn: str = "sqlite:///:memory:") -> Session:
    """
    Create a SQLite-backed session and ensure the blog schema exists.
    """

    session = bootstrap_factory(dsn)()
    create_all(session)
    return session


def seed_sample_data(session: Session) -> Dict[str, List[Any]]:
    """
    Populate authors, categories, tags and posts in a single flush.
    """

    alice = Author(name="Alice Carter", email="alice@example.com", bio="Editor-in-chief.")
    brian = Author(name="Brian Kim", email="brian@example.com", bio="Performance specialist.")
    news = Category(name="Announcements", description="Release notes and launch news.")
    guides = Category(name="Guides", description="Deep dives and tutorials.")
    release, howto = Tag("release"), Tag("howto")

    posts = [
        Post(
            "Introducing strataorm",
            "Sessions, registries and the unit of work in one tour.",
            published=True,
            author=alice,
            category=news,
            tags=[release],
        ),
        Post(
            "Eliminating N+1 Queries",
            "Pick a load strategy per relationship and per query.",
            published=True,
            author=brian,
            category=guides,
            tags=[howto, release],
        ),
        Post("Drafting", "Not ready yet.", author=alice, category=guides),
    ]
    with session.transaction():
        # related authors, categories and tags are inserted first
        session.add_all(posts)

    return {"authors": [alice, brian], "categories": [news, guides], "posts": posts}


def fetch_recent_posts(session: Session, limit: int = 5) -> List[Dict[str, Any]]:
    """
    Published posts, newest first, with the author joined in the same statement.
    """

    posts = (
        session.query(Post)
        .filter(published=True)
        .with_strategy(LoadStrategy.JOIN, "author")
        .with_strategy(LoadStrategy.BATCHED_IN, "category", "tags")
        .order_by("-id")
        .limit(limit)
    )
    return [
        {
            "id": post.id,
            "title": post.title,
            "published": bool(post.published),
            "author_name": post.author.name if post.author else None,
            "category_name": post.category.name if post.category else None,
            "tags": sorted(tag.label for tag in post.tags),
        }
        for post in posts
    ]


def author_with_posts(session: Session) -> List[Dict[str, Any]]:
    """
    Load every author's posts with one extra statement.
    """

    authors = session.query(Author).with_strategy(LoadStrategy.SUBQUERY, "posts").order_by("id")
    return [{"author": author.name, "posts": [post.title for post in author.posts]} for author in authors]


def performance_demo(session: Session) -> Dict[str, Any]:
    """
    Run a deliberate N+1 pattern, then the same read with batched loading.
    """

    session.expunge_all()
    session.tracker.reset()
    for post in session.query(Post).with_strategy(LoadStrategy.LAZY, "author").order_by("id"):
        resolve(post.author)
    n_plus_one = session.query_stats()

    session.expunge_all()
    session.tracker.reset()
    for post in session.query(Post).with_strategy(LoadStrategy.BATCHED_IN, "author").order_by("id"):
        resolve(post.author)
    optimized = session.query_stats()
    return {"n_plus_one": n_plus_one, "optimized": optimized}


def run_demo(dsn: str = "sqlite:///:memory:") -> List[Dict[str, Any]]:
    """
    Bootstrap the database, seed data, and return a rendered feed.
    """

    session = bootstrap_session(dsn=dsn)
    try:
        seed_sample_data(session)
        session.expunge_all()
        return fetch_recent_posts(session)
    finally:
        session.close()


if __name__ == "__main__":
    for entry in run_demo("sqlite:///blog_demo.db"):
        print(f"[{entry['category_name']}] {entry['title']} by {entry['author_name']}")
