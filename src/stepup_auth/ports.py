"""Ports (protocols) for the collaborators the engine depends on.

Persistence, delivery, the WebAuthn cryptographic ceremony, the user
directory and the clock are all supplied by the application. All ports use
@runtime_checkable for isinstance checks. In-memory implementations live in
``stepup_auth.adapters.memory``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping
    from datetime import datetime

    from .audit.events import AuditEvent, AuditEventType, SuspiciousAnnotation
    from .domain.hardware_key import AuthenticatorType, HardwareCredential
    from .domain.methods import TwoFactorMethod
    from .domain.profile import TwoFactorProfile
    from .domain.recovery_codes import RecoveryCodeSet
    from .domain.session import VerificationSession
    from .domain.trusted_device import TrustedDevice


# ═══════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DeviceInfo:
    """Request context supplied by the HTTP layer.

    Attributes:
        fingerprint: Opaque hash identifying the browser/device.
        device_name: Human-readable name ("Firefox on Linux").
        user_agent: Raw user-agent header.
        ip_address: Client IP address.
    """

    fingerprint: str | None = None
    device_name: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class UserContact:
    """Contact details the delivery channels need."""

    user_id: str
    email: str | None = None
    email_verified: bool = False
    display_name: str | None = None


@dataclass(frozen=True)
class RegistrationVerification:
    """Outcome of a verified WebAuthn attestation.

    Attributes:
        credential_id: Base64url credential ID.
        public_key: COSE-encoded public key.
        sign_count: Initial signature counter reported by the authenticator.
        aaguid: Authenticator model identifier.
        authenticator_type: Transport the credential was registered over.
        is_cross_platform: Roaming (True) or platform (False) authenticator.
    """

    credential_id: str
    public_key: bytes
    sign_count: int = 0
    aaguid: str | None = None
    authenticator_type: AuthenticatorType | None = None
    is_cross_platform: bool = True


@dataclass(frozen=True)
class AssertionVerification:
    """Outcome of a WebAuthn assertion check.

    ``verified`` covers the signature, origin and challenge only; the
    counter check is done by the engine.
    """

    verified: bool
    sign_count: int = 0


# ═══════════════════════════════════════════════════════════════
# COLLABORATOR PORTS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IClock(Protocol):
    """Time source; returns timezone-aware UTC datetimes."""

    def now(self) -> datetime: ...


@runtime_checkable
class IMfaDeliveryHook(Protocol):
    """Protocol for delivering OTP codes via email/SMS.

    Applications implement this to send codes through their preferred
    channels (SendGrid, Twilio, AWS SNS, ...). Implementations raise on
    delivery failure.
    """

    async def send_email_otp(self, email: str, code: str) -> None:
        """Send OTP code via email."""
        ...

    async def send_sms_otp(self, phone: str, code: str) -> None:
        """Send OTP code via SMS."""
        ...


@runtime_checkable
class IWebAuthnCeremony(Protocol):
    """The cryptographic half of WebAuthn (attestation and assertion checks).

    Typically backed by ``py_webauthn`` or ``fido2`` in the application.
    """

    async def verify_registration(
        self, challenge: str, client_response: Mapping[str, Any]
    ) -> RegistrationVerification:
        """Verify an attestation against the issued challenge.

        Raises:
            Exception: Any error means the attestation is invalid.
        """
        ...

    async def verify_assertion(
        self,
        challenge: str,
        client_response: Mapping[str, Any],
        public_key: bytes,
    ) -> AssertionVerification:
        """Verify an assertion signature against a stored public key."""
        ...


@runtime_checkable
class IUserDirectory(Protocol):
    """Read-only view of the application's user accounts."""

    async def get_contact(self, user_id: str) -> UserContact | None: ...

    async def verify_password(self, user_id: str, password: str) -> bool: ...


# ═══════════════════════════════════════════════════════════════
# REPOSITORY PORTS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IProfileRepository(Protocol):
    """TwoFactorProfile persistence, keyed by user ID.

    ``save`` raises ``OptimisticLockingError`` on a version mismatch.
    """

    async def get(self, user_id: str) -> TwoFactorProfile | None: ...

    async def save(self, profile: TwoFactorProfile) -> None: ...


@runtime_checkable
class IHardwareCredentialRepository(Protocol):
    """HardwareCredential persistence, keyed by credential ID."""

    async def get(self, credential_id: str) -> HardwareCredential | None: ...

    async def list_for_user(self, user_id: str) -> list[HardwareCredential]: ...

    async def save(self, credential: HardwareCredential) -> None: ...

    async def compare_and_set_sign_count(
        self,
        credential_id: str,
        expected: int,
        new: int,
        used_at: datetime,
    ) -> bool:
        """Atomically set ``sign_count`` to ``new`` if it still equals ``expected``.

        Returns:
            False if the stored counter changed in the meantime or the
            credential is no longer active.
        """
        ...


@runtime_checkable
class ITrustedDeviceRepository(Protocol):
    """TrustedDevice persistence, keyed by device ID."""

    async def get(self, device_id: str) -> TrustedDevice | None: ...

    async def find_active(
        self, user_id: str, fingerprint: str
    ) -> TrustedDevice | None: ...

    async def list_for_user(self, user_id: str) -> list[TrustedDevice]: ...

    async def save(self, device: TrustedDevice) -> None: ...


@runtime_checkable
class IRecoveryCodeRepository(Protocol):
    """RecoveryCodeSet persistence, one set per user."""

    async def get(self, user_id: str) -> RecoveryCodeSet | None: ...

    async def save(self, code_set: RecoveryCodeSet) -> None: ...

    async def replace(self, code_set: RecoveryCodeSet) -> None:
        """Store ``code_set`` in place of the current one regardless of version."""
        ...

    async def delete(self, user_id: str) -> None: ...


@runtime_checkable
class ISessionStore(Protocol):
    """VerificationSession persistence."""

    async def get(self, session_id: str) -> VerificationSession | None: ...

    async def get_pending(
        self, user_id: str, method: TwoFactorMethod
    ) -> VerificationSession | None: ...

    async def save(self, session: VerificationSession) -> None: ...

    async def replace_pending(
        self, session: VerificationSession, now: datetime
    ) -> VerificationSession | None:
        """Supersede the pending session for the same user and method, then store ``session``.

        Both steps happen atomically.

        Returns:
            The superseded session, if there was one.
        """
        ...


@runtime_checkable
class IAuditStore(Protocol):
    """Append-only audit event storage."""

    async def append(self, event: AuditEvent) -> None: ...

    async def annotate(self, annotation: SuspiciousAnnotation) -> None: ...

    async def get(self, event_id: str) -> AuditEvent | None: ...

    async def get_events(
        self,
        user_id: str,
        *,
        event_types: Collection[AuditEventType] | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]: ...

    async def get_events_between(
        self,
        start: datetime,
        end: datetime,
        *,
        user_id: str | None = None,
    ) -> list[AuditEvent]: ...

    async def get_annotations(self, event_id: str) -> list[SuspiciousAnnotation]: ...

    async def get_suspicious(self, *, limit: int = 100) -> list[AuditEvent]: ...

    async def count_failures(
        self,
        user_id: str,
        since: datetime,
        method: TwoFactorMethod | None = None,
    ) -> int: ...

    async def last_event(
        self,
        user_id: str,
        *,
        event_types: Collection[AuditEventType] | None = None,
    ) -> AuditEvent | None: ...


__all__: list[str] = [
    # Value types
    "DeviceInfo",
    "UserContact",
    "RegistrationVerification",
    "AssertionVerification",
    # Collaborators
    "IClock",
    "IMfaDeliveryHook",
    "IWebAuthnCeremony",
    "IUserDirectory",
    # Repositories
    "IProfileRepository",
    "IHardwareCredentialRepository",
    "ITrustedDeviceRepository",
    "IRecoveryCodeRepository",
    "ISessionStore",
    "IAuditStore",
]
