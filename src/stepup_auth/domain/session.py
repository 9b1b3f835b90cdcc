"""VerificationSession — short-lived challenge/response state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from types import MappingProxyType

from ..exceptions import InvariantViolationError
from .aggregate import AggregateRoot
from .methods import TwoFactorMethod


class SessionState(str, Enum):
    """Lifecycle of a verification session.

    ``ISSUED -> (CODE_SENT)? -> SUBMITTED -> VERIFIED | FAILED``; a pending
    session becomes ``EXPIRED`` when its window passes and ``SUPERSEDED``
    when a newer session is issued for the same user and method.
    """

    ISSUED = "issued"
    CODE_SENT = "code_sent"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class SessionPurpose(str, Enum):
    AUTHENTICATION = "authentication"
    ENROLLMENT = "enrollment"
    REGISTRATION = "registration"


_TRANSITIONS = MappingProxyType(
    {
        SessionState.ISSUED: frozenset(
            {
                SessionState.CODE_SENT,
                SessionState.SUBMITTED,
                SessionState.EXPIRED,
                SessionState.SUPERSEDED,
            }
        ),
        SessionState.CODE_SENT: frozenset(
            {SessionState.SUBMITTED, SessionState.EXPIRED, SessionState.SUPERSEDED}
        ),
        SessionState.SUBMITTED: frozenset({SessionState.VERIFIED, SessionState.FAILED}),
    }
)

PENDING_STATES = frozenset({SessionState.ISSUED, SessionState.CODE_SENT})


class VerificationSession(AggregateRoot[str]):
    """One code or challenge issued to one user for one method.

    Terminal sessions (verified, failed, expired, superseded) are never
    reused; a retry needs a fresh session.
    """

    user_id: str
    method: TwoFactorMethod
    purpose: SessionPurpose = SessionPurpose.AUTHENTICATION
    state: SessionState = SessionState.ISSUED
    code_hash: str | None = None
    challenge: str | None = None
    issued_at: datetime
    expires_at: datetime
    code_sent_at: datetime | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.state in PENDING_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state not in _TRANSITIONS

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def _transition(self, target: SessionState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise InvariantViolationError(
                f"Illegal session transition {self.state.value} -> {target.value}"
            )
        self.state = target

    def mark_code_sent(self, now: datetime) -> None:
        self._transition(SessionState.CODE_SENT)
        self.code_sent_at = now

    def submit(self, now: datetime) -> None:
        self._transition(SessionState.SUBMITTED)
        self.submitted_at = now

    def complete(self, verified: bool, now: datetime) -> None:
        self._transition(SessionState.VERIFIED if verified else SessionState.FAILED)
        self.completed_at = now

    def expire(self, now: datetime) -> None:
        self._transition(SessionState.EXPIRED)
        self.completed_at = now

    def supersede(self, now: datetime) -> None:
        self._transition(SessionState.SUPERSEDED)
        self.completed_at = now

    def expire_if_due(self, now: datetime) -> bool:
        """Move a pending session to EXPIRED once its window has passed."""
        if self.is_pending and self.is_expired(now):
            self.expire(now)
            return True
        return False


__all__: list[str] = [
    "SessionState",
    "SessionPurpose",
    "PENDING_STATES",
    "VerificationSession",
]
