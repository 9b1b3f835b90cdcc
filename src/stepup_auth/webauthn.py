"""HardwareKeyRegistry — WebAuthn credential records and anti-replay counters.

The cryptographic checks (attestation, assertion signature, origin) are done
by an ``IWebAuthnCeremony`` collaborator. This module owns the challenges,
the credential records and the signature-counter rule.
"""

from __future__ import annotations

import base64
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .collaborators import call_with_timeout
from .config import HardwareKeyConfig
from .domain.hardware_key import AuthenticatorType, HardwareCredential
from .domain.methods import TwoFactorMethod
from .domain.session import SessionPurpose
from .exceptions import (
    EntityNotFoundError,
    ExpiredChallengeError,
    InvalidCodeError,
    MfaError,
    MfaSetupError,
    ReplayDetectedError,
)
from .locking import CriticalSection, ILockStrategy, ResourceIdentifier

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .domain.session import VerificationSession
    from .ports import IClock, IHardwareCredentialRepository, IWebAuthnCeremony
    from .sessions import VerificationSessionManager

logger = logging.getLogger("stepup_auth.webauthn")

# ES256 and RS256, the algorithms every FIDO2 authenticator supports.
_PUB_KEY_CRED_PARAMS = (
    {"type": "public-key", "alg": -7},
    {"type": "public-key", "alg": -257},
)


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class Challenge:
    """A registration or assertion challenge handed to the browser.

    Attributes:
        session_id: Verification session backing the challenge.
        challenge: Base64url challenge bytes.
        expires_at: When the session expires.
        options: ``PublicKeyCredentialCreationOptions`` or
            ``PublicKeyCredentialRequestOptions`` shaped dict.
    """

    session_id: str
    challenge: str
    expires_at: datetime
    options: dict[str, Any] = field(default_factory=dict)


class HardwareKeyRegistry:
    """Registers hardware keys and verifies assertions against them.

    Example:
        ```python
        challenge = await registry.begin_registration("user-1")
        # browser: navigator.credentials.create({publicKey: challenge.options})
        credential = await registry.complete_registration("user-1", response)

        challenge = await registry.begin_verification("user-1")
        credential = await registry.complete_verification("user-1", assertion)
        ```
    """

    def __init__(
        self,
        repository: IHardwareCredentialRepository,
        ceremony: IWebAuthnCeremony,
        sessions: VerificationSessionManager,
        lock_strategy: ILockStrategy,
        clock: IClock,
        config: HardwareKeyConfig | None = None,
        *,
        collaborator_timeout: float = 10.0,
    ) -> None:
        self.repository = repository
        self.ceremony = ceremony
        self.sessions = sessions
        self.lock_strategy = lock_strategy
        self.clock = clock
        self.config = config or HardwareKeyConfig()
        self.collaborator_timeout = collaborator_timeout

    # ── Registration ─────────────────────────────────────────────

    async def begin_registration(
        self, user_id: str, display_name: str | None = None
    ) -> Challenge:
        challenge = b64url(secrets.token_bytes(self.config.challenge_bytes))
        session = await self.sessions.issue(
            user_id,
            TwoFactorMethod.HARDWARE_KEY,
            SessionPurpose.REGISTRATION,
            challenge=challenge,
        )
        existing = [c for c in await self.repository.list_for_user(user_id) if c.is_active]
        options = {
            "challenge": challenge,
            "rp": {"id": self.config.rp_id, "name": self.config.rp_name},
            "user": {
                "id": b64url(user_id.encode()),
                "name": user_id,
                "displayName": display_name or user_id,
            },
            "pubKeyCredParams": [dict(p) for p in _PUB_KEY_CRED_PARAMS],
            "timeout": self.config.challenge_ttl_seconds * 1000,
            "excludeCredentials": [
                {"type": "public-key", "id": c.id} for c in existing
            ],
            "authenticatorSelection": {
                "userVerification": self.config.user_verification,
            },
            "attestation": "none",
        }
        return Challenge(session.id, challenge, session.expires_at, options)

    async def complete_registration(
        self,
        user_id: str,
        client_response: Mapping[str, Any],
        name: str | None = None,
    ) -> HardwareCredential:
        """Verify an attestation and store the new credential.

        Raises:
            ExpiredChallengeError: No live registration challenge.
            InvalidCodeError: The ceremony rejected the attestation.
            MfaSetupError: The credential ID is already registered.
            CollaboratorUnavailableError: The ceremony timed out.
        """
        session = await self._submit(user_id, SessionPurpose.REGISTRATION)
        try:
            result = await self._verify(
                self.ceremony.verify_registration(session.challenge or "", client_response)
            )
            self._check_not_expired(session)
            if await self.repository.get(result.credential_id) is not None:
                raise MfaSetupError("Credential is already registered")

            now = self.clock.now()
            credential = HardwareCredential(
                id=result.credential_id,
                user_id=user_id,
                name=name or "Security key",
                public_key=result.public_key,
                sign_count=result.sign_count,
                aaguid=result.aaguid,
                authenticator_type=result.authenticator_type or AuthenticatorType.USB,
                is_cross_platform=result.is_cross_platform,
                created_at=now,
            )
            await self.repository.save(credential)
        except MfaError:
            await self.sessions.complete(session, False)
            raise

        await self.sessions.complete(session, True)
        logger.info(
            "Hardware key registered for user %s",
            user_id,
            extra={"credential_id": credential.id, "type": credential.authenticator_type.value},
        )
        return credential

    # ── Verification ─────────────────────────────────────────────

    async def begin_verification(self, user_id: str) -> Challenge:
        """Issue an assertion challenge for the user's active keys.

        Raises:
            MfaSetupError: The user has no active hardware key.
        """
        active = [c for c in await self.repository.list_for_user(user_id) if c.is_active]
        if not active:
            raise MfaSetupError("No active hardware key registered")

        challenge = b64url(secrets.token_bytes(self.config.challenge_bytes))
        session = await self.sessions.issue(
            user_id,
            TwoFactorMethod.HARDWARE_KEY,
            SessionPurpose.AUTHENTICATION,
            challenge=challenge,
        )
        options = {
            "challenge": challenge,
            "rpId": self.config.rp_id,
            "timeout": self.config.challenge_ttl_seconds * 1000,
            "allowCredentials": [{"type": "public-key", "id": c.id} for c in active],
            "userVerification": self.config.user_verification,
        }
        return Challenge(session.id, challenge, session.expires_at, options)

    async def complete_verification(
        self, user_id: str, client_response: Mapping[str, Any]
    ) -> HardwareCredential:
        """Verify an assertion, then apply its signature counter.

        Raises:
            ExpiredChallengeError: No live assertion challenge.
            InvalidCodeError: Unknown/inactive credential or bad signature.
            ReplayDetectedError: The counter did not advance; the credential
                has been deactivated.
            CollaboratorUnavailableError: The ceremony timed out.
        """
        session = await self._submit(user_id, SessionPurpose.AUTHENTICATION)
        try:
            credential_id = str(client_response.get("id") or client_response.get("rawId") or "")
            credential = await self.repository.get(credential_id) if credential_id else None
            if credential is None or credential.user_id != user_id or not credential.is_active:
                raise InvalidCodeError("Unknown or inactive credential")

            result = await self._verify(
                self.ceremony.verify_assertion(
                    session.challenge or "", client_response, credential.public_key
                )
            )
            self._check_not_expired(session)
            if not result.verified:
                raise InvalidCodeError("Assertion signature rejected")

            credential = await self.apply_assertion_counter(credential_id, result.sign_count)
        except MfaError:
            await self.sessions.complete(session, False)
            raise

        await self.sessions.complete(session, True)
        return credential

    async def apply_assertion_counter(
        self, credential_id: str, new_counter: int
    ) -> HardwareCredential:
        """Atomic read-check-write of the signature counter.

        Serialised per credential, and the write is a compare-and-set on the
        stored counter, so two assertions racing with the same counter can
        never both be accepted.

        Raises:
            InvalidCodeError: The credential is gone or inactive.
            ReplayDetectedError: The counter did not advance.
        """
        resource = ResourceIdentifier("HardwareCredential", credential_id)
        async with CriticalSection([resource], self.lock_strategy):
            while True:
                current = await self.repository.get(credential_id)
                if current is None or not current.is_active:
                    raise InvalidCodeError("Unknown or inactive credential")

                now = self.clock.now()
                if not current.is_counter_valid(new_counter):
                    stored = current.sign_count
                    current.deactivate("signature counter regression", now)
                    await self.repository.save(current)
                    logger.warning(
                        "Replay detected, hardware key %s deactivated",
                        credential_id,
                        extra={
                            "user_id": current.user_id,
                            "stored_counter": stored,
                            "presented_counter": new_counter,
                        },
                    )
                    raise ReplayDetectedError(
                        credential_id=credential_id,
                        stored_counter=stored,
                        presented_counter=new_counter,
                    )

                if await self.repository.compare_and_set_sign_count(
                    credential_id, current.sign_count, new_counter, now
                ):
                    current.record_assertion(new_counter, now)
                    return current
                # Counter moved under us (another writer); re-read and check again.
                logger.debug("Counter CAS lost for %s, retrying", credential_id)

    # ── Management ───────────────────────────────────────────────

    async def list_credentials(self, user_id: str) -> list[HardwareCredential]:
        return await self.repository.list_for_user(user_id)

    async def active_count(self, user_id: str) -> int:
        return sum(1 for c in await self.repository.list_for_user(user_id) if c.is_active)

    async def remove(self, user_id: str, credential_id: str) -> HardwareCredential:
        """Soft-delete a credential.

        Raises:
            EntityNotFoundError: Unknown credential, or owned by another user.
        """
        credential = await self.repository.get(credential_id)
        if credential is None or credential.user_id != user_id:
            raise EntityNotFoundError("HardwareCredential", credential_id)
        credential.deactivate("removed by user", self.clock.now())
        await self.repository.save(credential)
        logger.info("Hardware key removed for user %s", user_id, extra={"credential_id": credential_id})
        return credential

    async def deactivate_all(self, user_id: str, reason: str) -> int:
        now = self.clock.now()
        count = 0
        for credential in await self.repository.list_for_user(user_id):
            if credential.is_active:
                credential.deactivate(reason, now)
                await self.repository.save(credential)
                count += 1
        return count

    # ── Helpers ──────────────────────────────────────────────────

    async def _submit(self, user_id: str, purpose: SessionPurpose) -> VerificationSession:
        return await self.sessions.submit_challenge(
            user_id, TwoFactorMethod.HARDWARE_KEY, purpose
        )

    async def _verify(self, awaitable: Any) -> Any:
        try:
            return await call_with_timeout(
                awaitable, self.collaborator_timeout, name="WebAuthn ceremony"
            )
        except MfaError:
            raise
        except Exception as exc:  # noqa: BLE001
            # The ceremony signals a bad response by raising.
            logger.warning("WebAuthn ceremony rejected response: %s", type(exc).__name__)
            raise InvalidCodeError("WebAuthn response rejected") from exc

    def _check_not_expired(self, session: VerificationSession) -> None:
        if session.is_expired(self.clock.now()):
            raise ExpiredChallengeError("Challenge expired while being verified")


__all__: list[str] = ["Challenge", "HardwareKeyRegistry", "b64url"]
