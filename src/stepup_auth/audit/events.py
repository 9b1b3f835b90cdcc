"""Audit events for two-factor operations.

Every verification-affecting action produces exactly one ``AuditEvent``.
Events are immutable; the only thing that can be added later is a
``SuspiciousAnnotation`` stored alongside.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..domain.methods import TwoFactorMethod
from ..exceptions import FailureReason, InvariantViolationError
from ..risk import MAX_SCORE, MIN_SCORE


class AuditEventType(Enum):
    """Types of two-factor audit events.

    Event naming follows the pattern: `mfa.<resource>.<action>`
    """

    # Setup events
    TOTP_SETUP = "mfa.totp.setup"
    METHOD_ENABLED = "mfa.method.enabled"
    METHOD_DISABLED = "mfa.method.disabled"
    TWO_FACTOR_DISABLED = "mfa.two_factor.disabled"
    TWO_FACTOR_RESET = "mfa.two_factor.reset"

    # Verification events
    CODE_SENT = "mfa.code.sent"
    VERIFICATION_SUCCEEDED = "mfa.verification.succeeded"
    VERIFICATION_FAILED = "mfa.verification.failed"

    # Recovery code events
    RECOVERY_CODES_GENERATED = "mfa.recovery_codes.generated"
    RECOVERY_CODE_USED = "mfa.recovery_code.used"

    # Hardware key events
    HARDWARE_KEY_REGISTERED = "mfa.hardware_key.registered"
    HARDWARE_KEY_REMOVED = "mfa.hardware_key.removed"
    HARDWARE_KEY_REPLAY_DETECTED = "mfa.hardware_key.replay_detected"

    # Trusted device events
    DEVICE_TRUSTED = "mfa.device.trusted"
    DEVICE_REVOKED = "mfa.device.revoked"
    DEVICE_EXTENDED = "mfa.device.extended"


# Event types that represent a user presenting a factor.
ATTEMPT_EVENT_TYPES = frozenset(
    {
        AuditEventType.VERIFICATION_SUCCEEDED,
        AuditEventType.VERIFICATION_FAILED,
        AuditEventType.RECOVERY_CODE_USED,
        AuditEventType.HARDWARE_KEY_REPLAY_DETECTED,
    }
)


def _new_event_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class AuditEvent:
    """Two-factor audit event.

    Attributes:
        user_id: The user the event concerns.
        event_type: The type of event.
        method: The method involved, if any.
        success: Whether the operation succeeded.
        risk_score: Score in [0, 100] computed from the request context.
        is_suspicious: Always True for failed events.
        correlation_id: Request correlation ID, if one was set.
        timestamp: When the event occurred (UTC).
        failure_reason: Detailed reason for failed events.
        ip_address: Client IP address (if available).
        user_agent: Client user agent string (if available).
        metadata: Additional event-specific data (never secrets).
        event_id: Unique identifier.
    """

    user_id: str
    event_type: AuditEventType
    method: TwoFactorMethod | None = None
    success: bool = True
    risk_score: int = 0
    is_suspicious: bool = False
    correlation_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    failure_reason: FailureReason | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=_new_event_id)

    def __post_init__(self) -> None:
        """Validate event data."""
        if not MIN_SCORE <= self.risk_score <= MAX_SCORE:
            raise InvariantViolationError(
                f"risk_score must be within [{MIN_SCORE}, {MAX_SCORE}], "
                f"got {self.risk_score}"
            )
        if not self.success and not self.is_suspicious:
            object.__setattr__(self, "is_suspicious", True)
        object.__setattr__(self, "metadata", dict(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization.

        Returns:
            Dictionary representation suitable for JSON serialization.
        """
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "event_type": self.event_type.value,
            "method": self.method.value if self.method else None,
            "success": self.success,
            "risk_score": self.risk_score,
            "is_suspicious": self.is_suspicious,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "failure_reason": (
                self.failure_reason.value if self.failure_reason else None
            ),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEvent:
        """Create event from dictionary.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        event_type_str = data.get("event_type")
        if event_type_str is None:
            raise ValueError("Missing required 'event_type'")
        user_id = data.get("user_id")
        if user_id is None:
            raise ValueError("Missing required 'user_id'")

        try:
            event_type = AuditEventType(event_type_str)
        except ValueError as e:
            raise ValueError(f"Invalid event_type: {event_type_str}") from e

        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        method = data.get("method")
        failure_reason = data.get("failure_reason")

        return cls(
            event_id=data.get("event_id") or _new_event_id(),
            user_id=user_id,
            event_type=event_type,
            method=TwoFactorMethod(method) if method else None,
            success=data.get("success", True),
            risk_score=data.get("risk_score", 0),
            is_suspicious=data.get("is_suspicious", False),
            correlation_id=data.get("correlation_id"),
            timestamp=timestamp,
            failure_reason=FailureReason(failure_reason) if failure_reason else None,
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            metadata=data.get("metadata", {}),
        )


@dataclass(frozen=True)
class SuspiciousAnnotation:
    """Addendum flagging an already-recorded event as suspicious.

    The original event is never modified.
    """

    event_id: str
    reason: str
    marked_at: datetime


__all__: list[str] = [
    "AuditEventType",
    "ATTEMPT_EVENT_TYPES",
    "AuditEvent",
    "SuspiciousAnnotation",
]
