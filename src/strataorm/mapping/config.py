"""
Translate the dictionary mapping format into entity descriptors.

Accepted shape (camelCase keys are accepted as aliases)::

    {
        "table": "article",
        "columns": [{"name": "id", "type": "INTEGER", "primary_key": True}, ...],
        "relationships": [
            {"name": "author", "kind": "many-to-one", "target_table": "author",
             "foreign_key": "author_id", "default_strategy": "lazy"},
        ],
    }
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Optional, Tuple, Type

from ..errors import ConfigurationError
from ..utils.naming import camel_to_snake, default_foreign_key, join_table_name
from .descriptors import (
    Cardinality,
    ColumnDescriptor,
    EntityDescriptor,
    LoadStrategy,
    RelationshipDescriptor,
)

_ALIASES = {
    "primaryKey": "primary_key",
    "targetTable": "target_table",
    "foreignKey": "foreign_key",
    "joinTable": "join_table",
    "targetKey": "target_key",
    "defaultStrategy": "default_strategy",
    "strategy": "default_strategy",
    "autoIncrement": "autoincrement",
}

_COLUMN_KEYS = {"name", "type", "nullable", "primary_key", "version", "autoincrement"}
_RELATIONSHIP_KEYS = {
    "name",
    "kind",
    "target_table",
    "foreign_key",
    "join_table",
    "target_key",
    "default_strategy",
    "owning",
}


def _normalize(section: str, raw: Mapping[str, Any], allowed: set[str]) -> dict[str, Any]:
    normalized = {_ALIASES.get(key, key): value for key, value in raw.items()}
    unknown = set(normalized) - allowed
    if unknown:
        raise ConfigurationError(f"Unknown {section} option(s): {sorted(unknown)}")
    return normalized


def _as_tuple(value: Optional[str | Iterable[str]]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def column_from_config(raw: Mapping[str, Any]) -> ColumnDescriptor:
    data = _normalize("column", raw, _COLUMN_KEYS)
    if not data.get("name"):
        raise ConfigurationError("Column definitions require a 'name'.")
    primary_key = bool(data.get("primary_key", False))
    return ColumnDescriptor(
        name=data["name"],
        type=str(data.get("type", "TEXT")).upper(),
        nullable=bool(data.get("nullable", not primary_key)) and not primary_key,
        primary_key=primary_key,
        version=bool(data.get("version", False)),
        autoincrement=data.get("autoincrement"),
    )


def relationship_from_config(
    owner_table: str, column_names: Iterable[str], raw: Mapping[str, Any]
) -> RelationshipDescriptor:
    data = _normalize("relationship", raw, _RELATIONSHIP_KEYS)
    name = data.get("name")
    if not name:
        raise ConfigurationError(f"Relationship on '{owner_table}' is missing a 'name'.")
    if "target_table" not in data:
        raise ConfigurationError(f"Relationship '{owner_table}.{name}' is missing 'target_table'.")
    try:
        kind = Cardinality.coerce(data.get("kind", Cardinality.MANY_TO_ONE))
        strategy = LoadStrategy.coerce(data.get("default_strategy", LoadStrategy.LAZY))
    except ValueError as exc:
        raise ConfigurationError(f"Relationship '{owner_table}.{name}': {exc}") from exc

    target_table = data["target_table"]
    foreign_key = _as_tuple(data.get("foreign_key"))
    join_table = data.get("join_table")
    target_key = _as_tuple(data.get("target_key"))

    if kind is Cardinality.MANY_TO_ONE:
        foreign_key = foreign_key or (default_foreign_key(name),)
        owning = True
    elif kind is Cardinality.ONE_TO_MANY:
        foreign_key = foreign_key or (default_foreign_key(owner_table),)
        owning = False
    elif kind is Cardinality.ONE_TO_ONE:
        if "owning" in data:
            owning = bool(data["owning"])
        else:
            owning = bool(foreign_key) and set(foreign_key) <= set(column_names)
        if not foreign_key:
            foreign_key = (default_foreign_key(name if owning else owner_table),)
    else:
        join_table = join_table or join_table_name(owner_table, target_table)
        foreign_key = foreign_key or (default_foreign_key(owner_table),)
        target_key = target_key or (default_foreign_key(target_table),)
        owning = True

    return RelationshipDescriptor(
        name=name,
        kind=kind,
        target_table=target_table,
        foreign_key=foreign_key,
        owning=owning,
        default_strategy=strategy,
        join_table=join_table,
        target_key=target_key,
    )


def descriptor_from_config(
    entity_type: Type,
    config: Mapping[str, Any],
    *,
    factory: Optional[Callable[[Type], Any]] = None,
) -> EntityDescriptor:
    """
    Build an :class:`EntityDescriptor` for ``entity_type`` from ``config``.
    """
    unknown = set(config) - {"table", "columns", "relationships"}
    if unknown:
        raise ConfigurationError(f"Unknown mapping option(s) for {entity_type.__name__}: {sorted(unknown)}")
    table = config.get("table") or camel_to_snake(entity_type.__name__)
    columns = tuple(column_from_config(raw) for raw in config.get("columns", ()))
    column_names = [column.name for column in columns]
    relationships = tuple(
        relationship_from_config(table, column_names, raw)
        for raw in config.get("relationships", ())
    )
    kwargs: dict[str, Any] = {}
    if factory is not None:
        kwargs["factory"] = factory
    return EntityDescriptor(
        entity_type=entity_type,
        table=table,
        columns=columns,
        relationships=relationships,
        **kwargs,
    )
