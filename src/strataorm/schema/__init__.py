"""
DDL bootstrap helpers.
"""

from .builder import SchemaBuilder, create_all

__all__ = ["SchemaBuilder", "create_all"]
