"""
Blog-style sample application showcasing strataorm capabilities.
"""

from .demo import (
    author_with_posts,
    bootstrap_factory,
    bootstrap_session,
    fetch_recent_posts,
    performance_demo,
    run_demo,
    seed_sample_data,
)
from .models import Author, Category, Post, Tag, build_registry

__all__ = [
    "Author",
    "Category",
    "Post",
    "Tag",
    "build_registry",
    "bootstrap_factory",
    "bootstrap_session",
    "seed_sample_data",
    "fetch_recent_posts",
    "author_with_posts",
    "performance_demo",
    "run_demo",
]
