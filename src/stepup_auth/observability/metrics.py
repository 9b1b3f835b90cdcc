"""Two-factor metrics helpers for Prometheus integration.

Works as a no-op when ``prometheus_client`` is not installed (it ships with
the ``metrics`` extra).

Usage:
    ```python
    from stepup_auth.observability import MfaMetrics

    MfaMetrics.record_verification("totp", "success")
    MfaMetrics.record_replay_detected()
    ```
"""

from __future__ import annotations

import logging
from typing import Any

_logger = logging.getLogger("stepup_auth.observability")


class _MfaMetricsRegistry:
    """Registry for MFA Prometheus metrics.

    Lazily initializes Prometheus metrics on first use.
    """

    def __init__(self) -> None:
        self._verifications: Any = None
        self._replays: Any = None
        self._codes_sent: Any = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        try:
            from prometheus_client import Counter

            self._verifications = Counter(
                "mfa_verifications_total",
                "Second-factor verification attempts",
                ["method", "result"],
            )
            self._replays = Counter(
                "mfa_replay_detected_total",
                "Hardware key signature counter regressions",
            )
            self._codes_sent = Counter(
                "mfa_codes_sent_total",
                "One-time codes dispatched",
                ["method"],
            )
        except ImportError:
            _logger.debug("prometheus_client not available, metrics disabled")

        self._initialized = True

    @property
    def verifications(self) -> Any:
        self._ensure_initialized()
        return self._verifications

    @property
    def replays(self) -> Any:
        self._ensure_initialized()
        return self._replays

    @property
    def codes_sent(self) -> Any:
        self._ensure_initialized()
        return self._codes_sent


# Global registry instance
_registry = _MfaMetricsRegistry()


class MfaMetrics:
    """Recording helpers; every call is safe without Prometheus."""

    @staticmethod
    def record_verification(method: str, result: str) -> None:
        """Count a verification attempt.

        Args:
            method: Method value (``totp``, ``sms``, ...).
            result: ``success`` or a ``FailureReason`` value.
        """
        if _registry.verifications:
            try:
                _registry.verifications.labels(method=method, result=result).inc()
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to record verification metric")

    @staticmethod
    def record_replay_detected() -> None:
        if _registry.replays:
            try:
                _registry.replays.inc()
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to record replay metric")

    @staticmethod
    def record_code_sent(method: str) -> None:
        if _registry.codes_sent:
            try:
                _registry.codes_sent.labels(method=method).inc()
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to record code-sent metric")


__all__: list[str] = ["MfaMetrics"]
