"""Read-side summaries built from recorded audit events.

Both builders are pure: they take the events already loaded from the store
and never reach back into it.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..risk import RiskLevel, clamp_score, risk_level
from .events import AuditEventType

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from ..domain.methods import TwoFactorMethod
    from .events import AuditEvent, SuspiciousAnnotation

# Per-factor weights and caps for user risk analysis.
FAILED_ATTEMPT_WEIGHT = 5
FAILED_ATTEMPT_CAP = 30
SUSPICIOUS_EVENT_WEIGHT = 10
SUSPICIOUS_EVENT_CAP = 30
REPLAY_WEIGHT = 40
MANY_ADDRESSES_WEIGHT = 10
MANY_ADDRESSES_THRESHOLD = 3


@dataclass(frozen=True)
class SuspiciousActivity:
    """A flagged event together with any annotations added later."""

    event: AuditEvent
    annotations: tuple[SuspiciousAnnotation, ...] = ()


@dataclass(frozen=True)
class SecurityStatistics:
    """Aggregate view of the audit trail between ``start`` and ``end``.

    Attributes:
        success_rate: Percentage of successful events, 0.0 when there are none.
        high_risk_events: Events whose risk score is in the HIGH band.
        events_by_hour: Counts keyed by the UTC hour (0-23) of the event.
    """

    start: datetime
    end: datetime
    generated_at: datetime
    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    success_rate: float = 0.0
    suspicious_events: int = 0
    high_risk_events: int = 0
    replay_detections: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    events_by_method: dict[TwoFactorMethod, int] = field(default_factory=dict)
    events_by_hour: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    score: int
    description: str
    severity: RiskLevel


@dataclass(frozen=True)
class UserRiskAnalysis:
    user_id: str
    overall_risk_score: int
    risk_level: RiskLevel
    analyzed_at: datetime
    factors: tuple[RiskFactor, ...] = ()
    recommendations: tuple[str, ...] = ()


def build_statistics(
    events: Iterable[AuditEvent],
    start: datetime,
    end: datetime,
    generated_at: datetime,
) -> SecurityStatistics:
    total = successful = suspicious = high_risk = replays = 0
    by_type: Counter[str] = Counter()
    by_method: Counter[TwoFactorMethod] = Counter()
    by_hour: Counter[int] = Counter()

    for event in events:
        total += 1
        successful += event.success
        suspicious += event.is_suspicious
        high_risk += risk_level(event.risk_score) is RiskLevel.HIGH
        replays += event.event_type is AuditEventType.HARDWARE_KEY_REPLAY_DETECTED
        by_type[event.event_type.value] += 1
        if event.method is not None:
            by_method[event.method] += 1
        by_hour[event.timestamp.hour] += 1

    return SecurityStatistics(
        start=start,
        end=end,
        generated_at=generated_at,
        total_events=total,
        successful_events=successful,
        failed_events=total - successful,
        success_rate=round(successful / total * 100, 2) if total else 0.0,
        suspicious_events=suspicious,
        high_risk_events=high_risk,
        replay_detections=replays,
        events_by_type=dict(by_type),
        events_by_method=dict(by_method),
        events_by_hour=dict(by_hour),
    )


def _severity(score: int, cap: int) -> RiskLevel:
    if score >= cap:
        return RiskLevel.HIGH
    if score * 2 >= cap:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def analyze_user_events(
    user_id: str,
    events: Sequence[AuditEvent],
    annotated_event_ids: frozenset[str],
    analyzed_at: datetime,
) -> UserRiskAnalysis:
    """Score a user from their recent history.

    Failed attempts and suspicious events add capped weights, any replay
    detection adds a fixed weight, and sign-ins from more than
    ``MANY_ADDRESSES_THRESHOLD`` distinct IP addresses add a small one. The
    total is clamped to [0, 100].
    """
    factors: list[RiskFactor] = []
    recommendations: list[str] = []

    failures = sum(1 for e in events if not e.success)
    if failures:
        score = min(failures * FAILED_ATTEMPT_WEIGHT, FAILED_ATTEMPT_CAP)
        factors.append(
            RiskFactor(
                "failed_attempts",
                score,
                f"{failures} failed two-factor attempts",
                _severity(score, FAILED_ATTEMPT_CAP),
            )
        )

    # Failures are already counted above.
    flagged = sum(
        1
        for e in events
        if e.success and (e.is_suspicious or e.event_id in annotated_event_ids)
    )
    if flagged:
        score = min(flagged * SUSPICIOUS_EVENT_WEIGHT, SUSPICIOUS_EVENT_CAP)
        factors.append(
            RiskFactor(
                "suspicious_activity",
                score,
                f"{flagged} successful events flagged as suspicious",
                _severity(score, SUSPICIOUS_EVENT_CAP),
            )
        )
        recommendations.append("Review the flagged sign-ins with the user.")

    if any(e.event_type is AuditEventType.HARDWARE_KEY_REPLAY_DETECTED for e in events):
        factors.append(
            RiskFactor(
                "replay_detected",
                REPLAY_WEIGHT,
                "A security key signature counter went backwards",
                RiskLevel.HIGH,
            )
        )
        recommendations.append("Ask the user to re-register their security keys.")

    addresses = {e.ip_address for e in events if e.ip_address}
    if len(addresses) > MANY_ADDRESSES_THRESHOLD:
        factors.append(
            RiskFactor(
                "many_ip_addresses",
                MANY_ADDRESSES_WEIGHT,
                f"Activity from {len(addresses)} different IP addresses",
                RiskLevel.LOW,
            )
        )

    overall = clamp_score(sum(f.score for f in factors))
    level = risk_level(overall)
    if level is RiskLevel.HIGH:
        recommendations.append("Reset two-factor authentication and revoke trusted devices.")
    elif failures and not recommendations:
        recommendations.append("Keep monitoring failed attempts for this user.")

    return UserRiskAnalysis(
        user_id=user_id,
        overall_risk_score=overall,
        risk_level=level,
        analyzed_at=analyzed_at,
        factors=tuple(factors),
        recommendations=tuple(recommendations),
    )


__all__: list[str] = [
    "SuspiciousActivity",
    "SecurityStatistics",
    "RiskFactor",
    "UserRiskAnalysis",
    "build_statistics",
    "analyze_user_events",
]
