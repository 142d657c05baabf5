"""
Utility helpers shared across strataorm packages.
"""

from .logging import configure_logging, get_logger, resolve_slow_query_ms, time_call
from .naming import camel_to_snake
from .performance import StatementTracker
from .redaction import redact_params

__all__ = [
    "camel_to_snake",
    "configure_logging",
    "get_logger",
    "redact_params",
    "resolve_slow_query_ms",
    "StatementTracker",
    "time_call",
]
