"""
Schema registry: static entity-to-table metadata.
"""

from .config import descriptor_from_config
from .descriptors import (
    Cardinality,
    ColumnDescriptor,
    EntityDescriptor,
    LoadStrategy,
    RelationshipDescriptor,
)
from .registry import SchemaRegistry

__all__ = [
    "Cardinality",
    "ColumnDescriptor",
    "EntityDescriptor",
    "LoadStrategy",
    "RelationshipDescriptor",
    "SchemaRegistry",
    "descriptor_from_config",
]
