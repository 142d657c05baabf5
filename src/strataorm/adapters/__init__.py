"""
Storage driver adapters.
"""

from .base import DatabaseAdapter, fetch_dicts, row_to_dict
from .config import ConnectionConfig, DSNConfig, parse_dsn
from .postgres import PostgresAdapter
from .sqlite import SQLiteAdapter

__all__ = [
    "ConnectionConfig",
    "DatabaseAdapter",
    "DSNConfig",
    "PostgresAdapter",
    "SQLiteAdapter",
    "fetch_dicts",
    "parse_dsn",
    "row_to_dict",
]
