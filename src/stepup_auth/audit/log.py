"""AuditLog — the single writer of audit events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..correlation import get_correlation_id
from ..exceptions import EntityNotFoundError
from ..risk import RiskContext, RiskLevel, RiskScoringEngine, risk_level
from .events import ATTEMPT_EVENT_TYPES, AuditEvent, AuditEventType, SuspiciousAnnotation
from .reports import (
    SecurityStatistics,
    SuspiciousActivity,
    UserRiskAnalysis,
    analyze_user_events,
    build_statistics,
)

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from ..domain.methods import TwoFactorMethod
    from ..exceptions import FailureReason
    from ..ports import DeviceInfo, IAuditStore, IClock

logger = logging.getLogger("stepup_auth.audit")


class AuditLog:
    """Scores and appends audit events.

    The risk score of each event is computed from the request's device
    info plus whether the user's previous attempt failed. Failed events are
    always suspicious; successful ones are suspicious when the score is high.
    """

    def __init__(
        self,
        store: IAuditStore,
        risk_engine: RiskScoringEngine,
        clock: IClock,
    ) -> None:
        self.store = store
        self.risk_engine = risk_engine
        self.clock = clock

    async def record(
        self,
        user_id: str,
        event_type: AuditEventType,
        *,
        success: bool = True,
        method: TwoFactorMethod | None = None,
        failure_reason: FailureReason | None = None,
        device_info: DeviceInfo | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        ip_address = device_info.ip_address if device_info else None
        user_agent = device_info.user_agent if device_info else None

        score = self.risk_engine.score(
            RiskContext(
                previous_attempt_failed=await self.previous_attempt_failed(user_id),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        event = AuditEvent(
            user_id=user_id,
            event_type=event_type,
            method=method,
            success=success,
            risk_score=score,
            is_suspicious=not success or risk_level(score) is RiskLevel.HIGH,
            correlation_id=get_correlation_id(),
            timestamp=self.clock.now(),
            failure_reason=failure_reason,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=metadata or {},
        )
        await self.store.append(event)

        if event.is_suspicious:
            logger.warning(
                "Suspicious two-factor event %s for user %s",
                event_type.value,
                user_id,
                extra={
                    "event_id": event.event_id,
                    "risk_score": score,
                    "failure_reason": failure_reason.value if failure_reason else None,
                },
            )
        else:
            logger.debug("Audit event %s recorded for user %s", event_type.value, user_id)
        return event

    async def mark_suspicious(self, event_id: str, reason: str) -> SuspiciousAnnotation:
        """Append a suspicious annotation without touching the original event.

        Raises:
            EntityNotFoundError: If no event has ``event_id``.
        """
        if await self.store.get(event_id) is None:
            raise EntityNotFoundError("AuditEvent", event_id)
        annotation = SuspiciousAnnotation(
            event_id=event_id, reason=reason, marked_at=self.clock.now()
        )
        await self.store.annotate(annotation)
        logger.info("Audit event %s marked suspicious", event_id)
        return annotation

    async def previous_attempt_failed(self, user_id: str) -> bool:
        last = await self.store.last_event(user_id, event_types=ATTEMPT_EVENT_TYPES)
        return last is not None and not last.success

    async def failed_attempts(
        self,
        user_id: str,
        window: timedelta,
        method: TwoFactorMethod | None = None,
    ) -> int:
        since = self.clock.now() - window
        return await self.store.count_failures(user_id, since, method)

    async def get_events(self, user_id: str, *, limit: int = 100) -> list[AuditEvent]:
        return await self.store.get_events(user_id, limit=limit)

    async def get_suspicious_activities(self, *, limit: int = 100) -> list[SuspiciousActivity]:
        """Flagged events, most recent first, each with its annotations."""
        events = await self.store.get_suspicious(limit=limit)
        return [
            SuspiciousActivity(event, tuple(await self.store.get_annotations(event.event_id)))
            for event in events
        ]

    async def statistics(self, start: datetime, end: datetime) -> SecurityStatistics:
        events = await self.store.get_events_between(start, end)
        return build_statistics(events, start, end, self.clock.now())

    async def analyze_user(self, user_id: str, window: timedelta) -> UserRiskAnalysis:
        now = self.clock.now()
        events = await self.store.get_events_between(now - window, now, user_id=user_id)
        annotated: set[str] = set()
        for event in events:
            if await self.store.get_annotations(event.event_id):
                annotated.add(event.event_id)
        return analyze_user_events(user_id, events, frozenset(annotated), now)


__all__: list[str] = ["AuditLog"]
