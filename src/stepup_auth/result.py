"""OperationResult — explicit success/failure values at the service boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from .exceptions import FailureReason

T = TypeVar("T")

GENERIC_FAILURE_MESSAGE = "Verification failed."


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of a ``TwoFactorService`` operation.

    ``message`` is safe to show to the end user. Verification failures all
    share the same generic message so the response cannot be used as an
    oracle; ``reason`` is for the trusted caller (rate limiting, admin views).

    Usage::

        result = OperationResult.ok(setup, "TOTP setup prepared.")
        result = OperationResult.fail(FailureReason.INVALID_CODE)
    """

    success: bool
    data: T | None = None
    reason: FailureReason | None = None
    message: str = ""

    # ── Factory methods ──────────────────────────────────────────

    @classmethod
    def ok(cls, data: T | None = None, message: str = "") -> OperationResult[T]:
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(
        cls,
        reason: FailureReason,
        message: str = GENERIC_FAILURE_MESSAGE,
        data: T | None = None,
    ) -> OperationResult[T]:
        return cls(success=False, data=data, reason=reason, message=message)

    def __bool__(self) -> bool:
        return self.success


__all__: list[str] = ["GENERIC_FAILURE_MESSAGE", "OperationResult"]
