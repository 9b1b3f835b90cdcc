"""Append-only audit trail for two-factor operations."""

from .events import ATTEMPT_EVENT_TYPES, AuditEvent, AuditEventType, SuspiciousAnnotation
from .log import AuditLog
from .memory import InMemoryAuditStore
from .reports import RiskFactor, SecurityStatistics, SuspiciousActivity, UserRiskAnalysis

__all__: list[str] = [
    "AuditEventType",
    "ATTEMPT_EVENT_TYPES",
    "AuditEvent",
    "SuspiciousAnnotation",
    "AuditLog",
    "SuspiciousActivity",
    "SecurityStatistics",
    "RiskFactor",
    "UserRiskAnalysis",
    "InMemoryAuditStore",
]
