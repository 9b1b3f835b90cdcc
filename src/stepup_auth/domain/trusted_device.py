"""TrustedDevice — a remembered browser/device fingerprint."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from pydantic import Field

from ..exceptions import InvariantViolationError
from .aggregate import AggregateRoot

MIN_TRUST_LEVEL = 1
MAX_TRUST_LEVEL = 5


def level_for_count(count: int, thresholds: Sequence[tuple[int, int]]) -> int:
    """Trust level earned by ``count`` verifications.

    Args:
        count: Successful verifications on the device.
        thresholds: ``(verification_count, level)`` milestones, ascending.
    """
    level = MIN_TRUST_LEVEL
    for milestone, milestone_level in thresholds:
        if count >= milestone:
            level = milestone_level
    return level


class TrustedDevice(AggregateRoot[str]):
    """A device that may skip the second factor until ``expires_at``.

    Trust level only rises with usage milestones. Revocation is permanent for
    this record; trusting the same fingerprint again creates a new record.
    """

    user_id: str
    fingerprint: str
    device_name: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    trust_level: int = Field(default=MIN_TRUST_LEVEL, ge=MIN_TRUST_LEVEL, le=MAX_TRUST_LEVEL)
    verification_count: int = Field(default=0, ge=0)
    created_at: datetime
    last_verified_at: datetime | None = None
    expires_at: datetime
    is_active: bool = True
    revoked_at: datetime | None = None

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and self.expires_at > now

    def record_verification(
        self, now: datetime, thresholds: Sequence[tuple[int, int]]
    ) -> bool:
        """Count a successful verification and escalate trust.

        Returns:
            True if the trust level went up.

        Raises:
            InvariantViolationError: If the device has been revoked.
        """
        if not self.is_active:
            raise InvariantViolationError(
                f"Cannot record verification on revoked device {self.id}"
            )
        self.verification_count += 1
        self.last_verified_at = now

        earned = level_for_count(self.verification_count, thresholds)
        if earned > self.trust_level:
            self.trust_level = earned
            return True
        return False

    def extend_trust(self, duration: timedelta, now: datetime) -> None:
        if not self.is_active:
            raise InvariantViolationError(f"Cannot extend revoked device {self.id}")
        self.expires_at = now + duration

    def revoke(self, now: datetime) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self.revoked_at = now


__all__: list[str] = [
    "MIN_TRUST_LEVEL",
    "MAX_TRUST_LEVEL",
    "level_for_count",
    "TrustedDevice",
]
