"""Correlation ID management for audit events."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

# Set by the HTTP layer per request; stamped on every audit event.
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID in context."""
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


__all__: list[str] = [
    "get_correlation_id",
    "set_correlation_id",
    "generate_correlation_id",
]
