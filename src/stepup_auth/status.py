"""Read models returned by ``TwoFactorService`` and the security score."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .domain.methods import TwoFactorMethod, metadata_for
from .risk import clamp_score

if TYPE_CHECKING:
    from datetime import datetime

    from .domain.profile import TwoFactorProfile


@dataclass(frozen=True)
class ProfileStatus:
    """Snapshot of a user's two-factor setup for account settings pages."""

    user_id: str
    is_enabled: bool
    enabled_methods: tuple[TwoFactorMethod, ...] = ()
    preferred_method: TwoFactorMethod | None = None
    remaining_recovery_codes: int = 0
    trusted_devices_count: int = 0
    hardware_keys_count: int = 0
    setup_at: datetime | None = None
    last_used_at: datetime | None = None
    security_score: int = 0
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True)
class MethodAvailability:
    method: TwoFactorMethod
    display_name: str
    description: str
    security_level: int
    is_enabled: bool
    is_available: bool = True
    unavailable_reason: str | None = None


@dataclass(frozen=True)
class VerificationOutcome:
    """Details of a successful verification.

    Attributes:
        device_remembered: Whether a trusted-device record was created or renewed.
        trust_level: Level of that device after this verification.
        remaining_recovery_codes: Set when a recovery code was used.
        warning: User-facing hint, e.g. recovery codes running low.
    """

    method: TwoFactorMethod
    verified_at: datetime
    risk_score: int = 0
    device_remembered: bool = False
    trusted_device_id: str | None = None
    trust_level: int | None = None
    remaining_recovery_codes: int | None = None
    warning: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)


def security_score(
    profile: TwoFactorProfile | None,
    trusted_devices: int,
    hardware_keys: int,
) -> int:
    """Score in [0, 100] summarising how well an account is protected.

    30 base, +10 per security level of each enabled method, +20 for more
    than one method, +30 with a hardware key, and -5 per trusted device
    (capped at -20). Zero while two-factor authentication is off.
    """
    if profile is None or not profile.is_enabled:
        return 0

    methods = profile.get_enabled_methods()
    score = 30
    score += sum(metadata_for(m).security_level * 10 for m in methods)
    if len(methods) > 1:
        score += 20
    if hardware_keys > 0:
        score += 30
    score -= min(trusted_devices * 5, 20)
    return clamp_score(score)


def recommendations(status: ProfileStatus) -> tuple[str, ...]:
    if not status.is_enabled:
        return ("Enable two-factor authentication to protect your account.",)

    advice: list[str] = []
    if len(status.enabled_methods) == 1:
        advice.append("Enable a second method as a backup.")
    if status.hardware_keys_count == 0:
        advice.append("Consider a hardware security key for the strongest protection.")
    if status.remaining_recovery_codes < 3:
        advice.append("Generate new recovery codes; only a few remain.")
    if status.trusted_devices_count > 5:
        advice.append("Review and remove trusted devices you no longer use.")
    if status.security_score < 70:
        advice.append("Your security score is low; enable additional protections.")
    return tuple(advice)


__all__: list[str] = [
    "ProfileStatus",
    "MethodAvailability",
    "VerificationOutcome",
    "security_score",
    "recommendations",
]
