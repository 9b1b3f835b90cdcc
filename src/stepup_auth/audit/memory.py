"""In-memory audit store for testing and development."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from ..ports import IAuditStore

if TYPE_CHECKING:
    from collections.abc import Collection
    from datetime import datetime

    from ..domain.methods import TwoFactorMethod
    from .events import AuditEvent, AuditEventType, SuspiciousAnnotation


class InMemoryAuditStore(IAuditStore):
    """In-memory implementation of IAuditStore.

    Append-only list with per-user and per-type indices. Annotations are kept
    in a separate list keyed by event ID.

    Note:
        Events are stored in memory and will be lost on restart.
        Not suitable for production use.

    Example:
        ```python
        store = InMemoryAuditStore()
        audit = AuditLog(store, RiskScoringEngine(), clock)

        await audit.record("user-123", AuditEventType.VERIFICATION_FAILED, ...)
        events = await store.get_events("user-123")
        ```
    """

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._by_id: dict[str, int] = {}
        self._by_user: dict[str, list[int]] = defaultdict(list)
        self._by_type: dict[str, list[int]] = defaultdict(list)
        self._annotations: dict[str, list[SuspiciousAnnotation]] = defaultdict(list)

    async def append(self, event: AuditEvent) -> None:
        if event.event_id in self._by_id:
            raise ValueError(f"Audit event {event.event_id} already recorded")
        index = len(self._events)
        self._events.append(event)
        self._by_id[event.event_id] = index
        self._by_user[event.user_id].append(index)
        self._by_type[event.event_type.value].append(index)

    async def annotate(self, annotation: SuspiciousAnnotation) -> None:
        self._annotations[annotation.event_id].append(annotation)

    async def get(self, event_id: str) -> AuditEvent | None:
        index = self._by_id.get(event_id)
        return self._events[index] if index is not None else None

    async def get_events(
        self,
        user_id: str,
        *,
        event_types: Collection[AuditEventType] | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Events for a user, most recent first."""
        results: list[AuditEvent] = []
        for idx in reversed(self._by_user.get(user_id, [])):
            event = self._events[idx]
            if event_types and event.event_type not in event_types:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    async def get_events_between(
        self,
        start: datetime,
        end: datetime,
        *,
        user_id: str | None = None,
    ) -> list[AuditEvent]:
        """Events with ``start <= timestamp <= end``, oldest first."""
        if user_id is None:
            source = self._events
        else:
            source = [self._events[idx] for idx in self._by_user.get(user_id, [])]
        return [event for event in source if start <= event.timestamp <= end]

    async def get_annotations(self, event_id: str) -> list[SuspiciousAnnotation]:
        return list(self._annotations.get(event_id, []))

    async def get_suspicious(self, *, limit: int = 100) -> list[AuditEvent]:
        """Events flagged on record or annotated later, most recent first."""
        results: list[AuditEvent] = []
        for event in reversed(self._events):
            if event.is_suspicious or event.event_id in self._annotations:
                results.append(event)
                if len(results) >= limit:
                    break
        return results

    async def count_failures(
        self,
        user_id: str,
        since: datetime,
        method: TwoFactorMethod | None = None,
    ) -> int:
        count = 0
        for idx in reversed(self._by_user.get(user_id, [])):
            event = self._events[idx]
            if event.timestamp < since:
                # Indices are in append order, which follows the clock.
                break
            if event.success:
                continue
            if method is not None and event.method is not method:
                continue
            count += 1
        return count

    async def last_event(
        self,
        user_id: str,
        *,
        event_types: Collection[AuditEventType] | None = None,
    ) -> AuditEvent | None:
        for idx in reversed(self._by_user.get(user_id, [])):
            event = self._events[idx]
            if event_types and event.event_type not in event_types:
                continue
            return event
        return None

    def clear(self) -> None:
        """Clear all stored events.

        Useful for test cleanup.
        """
        self._events.clear()
        self._by_id.clear()
        self._by_user.clear()
        self._by_type.clear()
        self._annotations.clear()

    def count(self) -> int:
        return len(self._events)

    def count_by_type(self, event_type: AuditEventType) -> int:
        return len(self._by_type.get(event_type.value, []))


__all__: list[str] = ["InMemoryAuditStore"]
