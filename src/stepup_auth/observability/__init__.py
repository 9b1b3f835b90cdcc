"""Optional Prometheus metrics for two-factor operations."""

from __future__ import annotations

from .metrics import MfaMetrics

__all__: list[str] = ["MfaMetrics"]
