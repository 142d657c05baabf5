"""
Data models for the strataorm blog example.

The classes are plain Python; their table layout lives in ``registry``.
"""

from __future__ import annotations

from typing import List, Optional

from strataorm import SchemaRegistry


class Author:
    def __init__(self, name: str, email: str, bio: str = "", id: Optional[int] = None) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.bio = bio
        self.posts: List["Post"] = []


class Category:
    def __init__(self, name: str, description: str = "", id: Optional[int] = None) -> None:
        self.id = id
        self.name = name
        self.description = description


class Tag:
    def __init__(self, label: str, id: Optional[int] = None) -> None:
        self.id = id
        self.label = label


class Post:
    def __init__(
        self,
        title: str,
        body: str,
        *,
        published: bool = False,
        author: Optional[Author] = None,
        category: Optional[Category] = None,
        tags: Optional[List[Tag]] = None,
    ) -> None:
        self.id: Optional[int] = None
        self.title = title
        self.body = body
        self.published = published
        self.author_id: Optional[int] = None
        self.category_id: Optional[int] = None
        self.version: Optional[int] = None
        self.author = author
        self.category = category
        self.tags = list(tags or [])


MAPPINGS = {
    Author: {
        "table": "author",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "name", "type": "TEXT", "nullable": False},
            {"name": "email", "type": "TEXT", "nullable": False},
            {"name": "bio", "type": "TEXT"},
        ],
        "relationships": [
            {"name": "posts", "kind": "one-to-many", "target_table": "post", "foreign_key": "author_id"},
        ],
    },
    Category: {
        "table": "category",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "name", "type": "TEXT", "nullable": False},
            {"name": "description", "type": "TEXT"},
        ],
    },
    Tag: {
        "table": "tag",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "label", "type": "TEXT", "nullable": False},
        ],
    },
    Post: {
        "table": "post",
        "columns": [
            {"name": "id", "type": "INTEGER", "primary_key": True},
            {"name": "title", "type": "TEXT", "nullable": False},
            {"name": "body", "type": "TEXT", "nullable": False},
            {"name": "published", "type": "BOOLEAN", "nullable": False},
            {"name": "author_id", "type": "INTEGER"},
            {"name": "category_id", "type": "INTEGER"},
            {"name": "version", "type": "INTEGER", "version": True},
        ],
        "relationships": [
            {"name": "author", "kind": "many-to-one", "target_table": "author", "strategy": "batched_in"},
            {"name": "category", "kind": "many-to-one", "target_table": "category"},
            {"name": "tags", "kind": "many-to-many", "target_table": "tag", "join_table": "post_tag"},
        ],
    },
}


def build_registry() -> SchemaRegistry:
    registry = SchemaRegistry()
    registry.map_all(MAPPINGS)
    return registry
