"""
Session tuning options.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from ..errors import ConfigurationError
from ..utils.logging import resolve_slow_query_ms

BATCH_SIZE_ENV = "STRATAORM_BATCH_SIZE"
N_PLUS_ONE_ENV = "STRATAORM_N_PLUS_ONE_THRESHOLD"


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class SessionOptions:
    """
    ``batch_size`` bounds the keys per batched-in statement;
    ``slow_query_ms`` is the WARNING threshold for statement timing;
    ``n_plus_one_threshold`` is how many repeats of one SQL text trigger the
    N+1 warning.
    """

    batch_size: int = 500
    slow_query_ms: int = 200
    n_plus_one_threshold: int = 5

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.n_plus_one_threshold < 2:
            raise ConfigurationError("n_plus_one_threshold must be at least 2")

    @classmethod
    def from_env(cls, **overrides: Any) -> "SessionOptions":
        values = {
            "batch_size": _int_from_env(BATCH_SIZE_ENV, 500),
            "slow_query_ms": resolve_slow_query_ms(200),
            "n_plus_one_threshold": _int_from_env(N_PLUS_ONE_ENV, 5),
        }
        values.update(overrides)
        return cls(**values)
