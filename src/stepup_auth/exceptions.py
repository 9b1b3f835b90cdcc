"""Exception hierarchy for stepup-auth.

Components raise ``MfaError`` subclasses; the ``TwoFactorService`` façade
converts them into failed ``OperationResult`` values so they never cross
the module boundary. ``InvariantViolationError`` marks programmer errors
and is allowed to propagate.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .locking import ResourceIdentifier


class FailureReason(str, Enum):
    """Machine-readable reason attached to failed results and audit events."""

    INVALID_CODE = "invalid_code"
    EXPIRED_CHALLENGE = "expired_challenge"
    REPLAY_DETECTED = "replay_detected"
    METHOD_NOT_CONFIGURED = "method_not_configured"
    RECOVERY_CODE_EXHAUSTED = "recovery_code_exhausted"
    RECOVERY_CODE_INVALID = "recovery_code_invalid"
    DEVICE_NOT_TRUSTED = "device_not_trusted"
    RATE_LIMITED = "rate_limited"
    SETUP_FAILED = "setup_failed"
    INVALID_PASSWORD = "invalid_password"  # noqa: S105
    NOT_FOUND = "not_found"
    DELIVERY_FAILED = "delivery_failed"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    CONFLICT = "conflict"
    PERMISSION_DENIED = "permission_denied"


class StepUpError(Exception):
    """Root exception for the entire stepup-auth package."""


# ═══════════════════════════════════════════════════════════════
# DOMAIN ERRORS
# ═══════════════════════════════════════════════════════════════


class DomainError(StepUpError):
    """Base class for all domain-related errors."""


class InvariantViolationError(DomainError):
    """Raised when a domain invariant is violated.

    Signals a programmer error (illegal state transition, out-of-range
    trust level) rather than a user-caused failure.
    """


class EntityNotFoundError(DomainError):
    """Raised when a specific entity cannot be found by ID."""

    def __init__(self, entity_type: str, entity_id: object) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with id={entity_id!r} not found")


# ═══════════════════════════════════════════════════════════════
# CONCURRENCY ERRORS
# ═══════════════════════════════════════════════════════════════


class ConcurrencyError(StepUpError):
    """Base class for all concurrency-related conflicts."""


class OptimisticLockingError(ConcurrencyError):
    """Raised when a repository detects a version mismatch during save."""


class LockAcquisitionError(ConcurrencyError):
    """Failed to acquire a lock within the allotted time."""

    def __init__(
        self,
        resource: ResourceIdentifier,
        timeout: float,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.timeout = timeout
        self.reason = reason

        msg = f"Failed to acquire lock on {resource} within {timeout}s"
        if reason:
            msg += f" - {reason}"

        super().__init__(msg)


# ═══════════════════════════════════════════════════════════════
# MFA ERRORS
# ═══════════════════════════════════════════════════════════════


class MfaError(DomainError):
    """Base class for MFA verification and setup failures.

    Attributes:
        reason: The ``FailureReason`` reported to the caller and recorded
            on the audit trail.
    """

    reason: FailureReason = FailureReason.INVALID_CODE

    def __init__(self, message: str = "", *, reason: FailureReason | None = None):
        super().__init__(message or self.__class__.__name__)
        if reason is not None:
            self.reason = reason


class InvalidCodeError(MfaError):
    """Raised when a code or assertion does not match."""

    reason = FailureReason.INVALID_CODE


class ExpiredChallengeError(MfaError):
    """Raised when the verification session timed out or was superseded."""

    reason = FailureReason.EXPIRED_CHALLENGE


class ReplayDetectedError(MfaError):
    """Raised when a hardware key signature counter regresses.

    Fatal for the credential: it is deactivated before this propagates.
    """

    reason = FailureReason.REPLAY_DETECTED

    def __init__(
        self,
        message: str = "Signature counter regression detected",
        *,
        credential_id: str | None = None,
        stored_counter: int | None = None,
        presented_counter: int | None = None,
    ) -> None:
        super().__init__(message)
        self.credential_id = credential_id
        self.stored_counter = stored_counter
        self.presented_counter = presented_counter


class MethodNotConfiguredError(MfaError):
    """Raised when the caller asks for a method the user has not enabled."""

    reason = FailureReason.METHOD_NOT_CONFIGURED


class RecoveryCodeExhaustedError(MfaError):
    """Raised when every recovery code has already been used."""

    reason = FailureReason.RECOVERY_CODE_EXHAUSTED


class RecoveryCodeInvalidError(MfaError):
    """Raised when no unused recovery code matches the input."""

    reason = FailureReason.RECOVERY_CODE_INVALID


class DeviceNotTrustedError(MfaError):
    """Raised when a device fingerprint is not (or no longer) trusted."""

    reason = FailureReason.DEVICE_NOT_TRUSTED


class RateLimitedError(MfaError):
    """Raised when codes are requested faster than the cooldown allows.

    Attributes:
        retry_after: Seconds until another attempt is allowed.
    """

    reason = FailureReason.RATE_LIMITED

    def __init__(self, message: str = "", *, retry_after: float | None = None):
        super().__init__(message or "Too many attempts")
        self.retry_after = retry_after


class MfaSetupError(MfaError):
    """Raised when a method cannot be configured.

    Examples:
        - TOTP confirmation without a pending secret
        - SMS enrollment with a malformed phone number
    """

    reason = FailureReason.SETUP_FAILED


class DeliveryError(MfaError):
    """Raised when the SMS/email delivery hook fails or times out."""

    reason = FailureReason.DELIVERY_FAILED


class InvalidPasswordError(MfaError):
    """Raised when re-authentication before a sensitive change fails."""

    reason = FailureReason.INVALID_PASSWORD


class CollaboratorUnavailableError(MfaError):
    """Raised when an external collaborator did not answer in time."""

    reason = FailureReason.COLLABORATOR_UNAVAILABLE


class PermissionDeniedError(MfaError):
    """Raised when the caller lacks the role an administrative action needs."""

    reason = FailureReason.PERMISSION_DENIED


__all__: list[str] = [
    "FailureReason",
    # Base
    "StepUpError",
    # Domain
    "DomainError",
    "InvariantViolationError",
    "EntityNotFoundError",
    # Concurrency
    "ConcurrencyError",
    "OptimisticLockingError",
    "LockAcquisitionError",
    # MFA
    "MfaError",
    "InvalidCodeError",
    "ExpiredChallengeError",
    "ReplayDetectedError",
    "MethodNotConfiguredError",
    "RecoveryCodeExhaustedError",
    "RecoveryCodeInvalidError",
    "DeviceNotTrustedError",
    "RateLimitedError",
    "MfaSetupError",
    "DeliveryError",
    "InvalidPasswordError",
    "CollaboratorUnavailableError",
    "PermissionDeniedError",
]
