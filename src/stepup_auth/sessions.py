"""VerificationSessionManager — issuing and consuming verification sessions.

At most one session per (user, method) is pending. Issuing goes through a
critical section on that key plus the store's atomic ``replace_pending``,
so two concurrent "send code" calls can never leave two live sessions.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from .config import HardwareKeyConfig, OtpConfig
from .domain.methods import TwoFactorMethod
from .domain.session import SessionPurpose, VerificationSession
from .exceptions import ExpiredChallengeError, InvalidCodeError
from .locking import CriticalSection, ILockStrategy, ResourceIdentifier
from .mfa.otp import codes_match

if TYPE_CHECKING:
    from .ports import IClock, ISessionStore

logger = logging.getLogger("stepup_auth.sessions")


class VerificationSessionManager:
    """Owns the session state machine transitions that touch storage."""

    def __init__(
        self,
        store: ISessionStore,
        lock_strategy: ILockStrategy,
        clock: IClock,
        *,
        otp_config: OtpConfig | None = None,
        hardware_key_config: HardwareKeyConfig | None = None,
        lock_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.lock_strategy = lock_strategy
        self.clock = clock
        self.otp_config = otp_config or OtpConfig()
        self.hardware_key_config = hardware_key_config or HardwareKeyConfig()
        self.lock_timeout = lock_timeout

    def ttl_for(self, method: TwoFactorMethod) -> timedelta:
        if method is TwoFactorMethod.HARDWARE_KEY:
            return timedelta(seconds=self.hardware_key_config.challenge_ttl_seconds)
        return timedelta(seconds=self.otp_config.ttl_seconds)

    def _section(self, user_id: str, method: TwoFactorMethod) -> CriticalSection:
        resource = ResourceIdentifier("VerificationSession", f"{user_id}:{method.value}")
        return CriticalSection([resource], self.lock_strategy, timeout=self.lock_timeout)

    async def issue(
        self,
        user_id: str,
        method: TwoFactorMethod,
        purpose: SessionPurpose = SessionPurpose.AUTHENTICATION,
        *,
        code_hash: str | None = None,
        challenge: str | None = None,
        ttl: timedelta | None = None,
    ) -> VerificationSession:
        """Create a pending session, superseding any pending one for the same method."""
        async with self._section(user_id, method):
            now = self.clock.now()
            session = VerificationSession(
                id=str(uuid.uuid4()),
                user_id=user_id,
                method=method,
                purpose=purpose,
                code_hash=code_hash,
                challenge=challenge,
                issued_at=now,
                expires_at=now + (ttl or self.ttl_for(method)),
            )
            superseded = await self.store.replace_pending(session, now)

        logger.debug(
            "Verification session issued",
            extra={
                "user_id": user_id,
                "method": method.value,
                "purpose": purpose.value,
                "session_id": session.id,
                "superseded_id": superseded.id if superseded else None,
            },
        )
        return session

    async def mark_code_sent(self, session: VerificationSession) -> None:
        session.mark_code_sent(self.clock.now())
        await self.store.save(session)

    async def get_pending(
        self, user_id: str, method: TwoFactorMethod
    ) -> VerificationSession | None:
        """The live pending session, expiring it first if its window passed."""
        session = await self.store.get_pending(user_id, method)
        if session is None:
            return None
        if session.expire_if_due(self.clock.now()):
            await self.store.save(session)
            return None
        return session

    async def _take_pending(
        self, user_id: str, method: TwoFactorMethod, purpose: SessionPurpose
    ) -> VerificationSession:
        session = await self.store.get_pending(user_id, method)
        if session is None or session.purpose is not purpose:
            raise ExpiredChallengeError("No pending verification session")
        if session.expire_if_due(self.clock.now()):
            await self.store.save(session)
            logger.info(
                "Verification session expired before submission",
                extra={"user_id": user_id, "method": method.value},
            )
            raise ExpiredChallengeError("Verification session expired")
        return session

    async def submit_code(
        self,
        user_id: str,
        method: TwoFactorMethod,
        code: str,
        purpose: SessionPurpose = SessionPurpose.AUTHENTICATION,
    ) -> VerificationSession:
        """Check ``code`` against the pending session and complete it.

        A session takes exactly one submission: a mismatch fails it for good.

        Raises:
            ExpiredChallengeError: No pending session for ``purpose``, or it
                timed out.
            InvalidCodeError: The code does not match.
        """
        async with self._section(user_id, method):
            session = await self._take_pending(user_id, method, purpose)
            now = self.clock.now()
            session.submit(now)
            verified = session.code_hash is not None and codes_match(
                code, session.code_hash
            )
            session.complete(verified, now)
            await self.store.save(session)

        if not verified:
            raise InvalidCodeError("Verification code does not match")
        return session

    async def submit_challenge(
        self,
        user_id: str,
        method: TwoFactorMethod,
        purpose: SessionPurpose,
        session_id: str | None = None,
    ) -> VerificationSession:
        """Move the pending challenge session to SUBMITTED and return it.

        The caller checks the response and then calls ``complete``.

        Raises:
            ExpiredChallengeError: No pending session for ``purpose`` (or not
                ``session_id``), or it timed out.
        """
        async with self._section(user_id, method):
            session = await self._take_pending(user_id, method, purpose)
            if session_id is not None and session.id != session_id:
                raise ExpiredChallengeError("Challenge is no longer current")
            session.submit(self.clock.now())
            await self.store.save(session)
        return session

    async def complete(self, session: VerificationSession, verified: bool) -> None:
        session.complete(verified, self.clock.now())
        await self.store.save(session)

    async def cancel_pending(self, user_id: str) -> int:
        """Expire every pending session of a user. Returns how many."""
        cancelled = 0
        for method in TwoFactorMethod:
            async with self._section(user_id, method):
                session = await self.store.get_pending(user_id, method)
                if session is None:
                    continue
                session.expire(self.clock.now())
                await self.store.save(session)
                cancelled += 1
        return cancelled


__all__: list[str] = ["VerificationSessionManager"]
