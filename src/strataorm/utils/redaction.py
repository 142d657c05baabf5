"""Redaction helpers for logged statement parameters and DSNs."""

from __future__ import annotations

from typing import Any, Iterable

REDACTED_VALUE = "***"

_SENSITIVE_TOKENS = (
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "private_key",
    "bearer",
    "authorization",
)


def is_sensitive(text: str) -> bool:
    lowered = text.lower()
    return any(token in lowered for token in _SENSITIVE_TOKENS)


def redact_value(value: Any) -> Any:
    if isinstance(value, str) and is_sensitive(value):
        return REDACTED_VALUE
    if isinstance(value, bytes):
        decoded = value.decode("utf-8", errors="ignore")
        if decoded and is_sensitive(decoded):
            return REDACTED_VALUE
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(item) for item in value)
    return value


def redact_params(params: Iterable[Any]) -> list[Any]:
    return [redact_value(value) for value in params]


def redact_query(query: dict[str, str]) -> dict[str, str]:
    return {key: REDACTED_VALUE if is_sensitive(key) else val for key, val in query.items()}
