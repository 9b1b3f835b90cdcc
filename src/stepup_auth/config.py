"""Configuration for the authentication-strengthening engine.

Every option is a frozen dataclass with production defaults; applications
override only what they need::

    config = StepUpConfig(
        totp=TotpConfig(issuer="MyBlog"),
        otp=OtpConfig(ttl_seconds=600),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class TotpConfig:
    """TOTP configuration.

    Attributes:
        issuer: Application name shown in authenticator app.
        digits: Number of digits in code.
        interval: Time step in seconds.
        valid_window: Accept codes ±N steps for clock drift.
    """

    issuer: str = "Maple Blog"
    digits: int = 6
    interval: int = 30
    valid_window: int = 1


@dataclass(frozen=True)
class OtpConfig:
    """SMS/email one-time code configuration.

    Attributes:
        code_length: Number of digits in OTP code.
        ttl_seconds: Validity window of a dispatched code.
        cooldown_seconds: Minimum seconds between two sends for one user and method.
    """

    code_length: int = 6
    ttl_seconds: int = 300  # 5 minutes
    cooldown_seconds: int = 60


@dataclass(frozen=True)
class RecoveryCodeConfig:
    """Recovery code configuration.

    Attributes:
        count: Number of codes generated per set.
        code_length: Characters per code (before dash grouping).
        low_watermark: Remaining count at or below which callers should warn.
    """

    count: int = 10
    code_length: int = 8
    low_watermark: int = 2


def default_level_thresholds() -> tuple[tuple[int, int], ...]:
    """(verification_count, trust_level) pairs, ascending."""
    return ((1, 1), (5, 2), (10, 3), (50, 4), (100, 5))


@dataclass(frozen=True)
class TrustedDeviceConfig:
    """Trusted device configuration.

    Attributes:
        trust_duration: How long a remembered device stays trusted.
        level_thresholds: Verification-count milestones for trust escalation.
    """

    trust_duration: timedelta = timedelta(days=30)
    level_thresholds: tuple[tuple[int, int], ...] = field(
        default_factory=default_level_thresholds
    )


@dataclass(frozen=True)
class HardwareKeyConfig:
    """WebAuthn relying-party configuration.

    Attributes:
        rp_id: Relying party ID (effective domain).
        rp_name: Human-readable relying party name.
        challenge_ttl_seconds: Validity window of a registration/assertion challenge.
        challenge_bytes: Random bytes per challenge.
        user_verification: ``required``, ``preferred`` or ``discouraged``.
    """

    rp_id: str = "localhost"
    rp_name: str = "Maple Blog"
    challenge_ttl_seconds: int = 300
    challenge_bytes: int = 32
    user_verification: str = "preferred"


def default_bot_signatures() -> tuple[str, ...]:
    return (
        "bot",
        "crawler",
        "spider",
        "scrapy",
        "curl/",
        "wget/",
        "python-requests",
        "httpclient",
        "headlesschrome",
        "phantomjs",
    )


@dataclass(frozen=True)
class RiskConfig:
    """Weights for the risk score. Negative weights reduce risk."""

    previous_failure: int = 30
    unknown_ip: int = 20
    public_ip: int = 10
    private_ip: int = -10
    unknown_user_agent: int = 15
    bot_user_agent: int = 25
    bot_signatures: tuple[str, ...] = field(default_factory=default_bot_signatures)


@dataclass(frozen=True)
class StepUpConfig:
    """Top-level configuration.

    Attributes:
        collaborator_timeout: Seconds allowed for a delivery hook or WebAuthn
            ceremony call before it is abandoned.
        attempt_window: Look-back window for failed-attempt counting.
        risk_analysis_window: Look-back window for per-user risk analysis.
    """

    totp: TotpConfig = field(default_factory=TotpConfig)
    otp: OtpConfig = field(default_factory=OtpConfig)
    recovery: RecoveryCodeConfig = field(default_factory=RecoveryCodeConfig)
    devices: TrustedDeviceConfig = field(default_factory=TrustedDeviceConfig)
    hardware_key: HardwareKeyConfig = field(default_factory=HardwareKeyConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    collaborator_timeout: float = 10.0
    attempt_window: timedelta = timedelta(minutes=15)
    risk_analysis_window: timedelta = timedelta(days=30)


__all__: list[str] = [
    "TotpConfig",
    "OtpConfig",
    "RecoveryCodeConfig",
    "TrustedDeviceConfig",
    "HardwareKeyConfig",
    "RiskConfig",
    "StepUpConfig",
]
