"""TwoFactorService — the façade the HTTP layer talks to.

Coordinates the profile, sessions, hardware keys, recovery codes and trusted
devices, and records exactly one audit event per verification-affecting
operation. Component errors stop here: every operation returns an
``OperationResult``, and failures carry the same generic message whatever
the underlying reason.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .adapters.memory.clock import SystemClock
from .audit.events import AuditEventType
from .audit.log import AuditLog
from .collaborators import call_with_timeout
from .config import StepUpConfig
from .devices import TrustedDeviceStore
from .domain.methods import TwoFactorMethod, metadata_for, selectable_methods
from .domain.policy import Role, check_compliance, effective_policy, includes
from .domain.profile import TwoFactorProfile
from .domain.session import SessionPurpose
from .exceptions import (
    ConcurrencyError,
    DeliveryError,
    DeviceNotTrustedError,
    EntityNotFoundError,
    FailureReason,
    InvalidCodeError,
    InvalidPasswordError,
    MethodNotConfiguredError,
    MfaError,
    MfaSetupError,
    OptimisticLockingError,
    PermissionDeniedError,
    RateLimitedError,
    RecoveryCodeInvalidError,
    ReplayDetectedError,
)
from .locking import ILockStrategy, InMemoryLockStrategy
from .mfa.otp import generate_numeric_code, hash_code
from .mfa.totp import TotpSetup, TotpVerifier
from .observability.metrics import MfaMetrics
from .recovery import RecoveryCodeVault
from .result import OperationResult
from .risk import RiskScoringEngine
from .sessions import VerificationSessionManager
from .status import (
    MethodAvailability,
    ProfileStatus,
    VerificationOutcome,
    recommendations,
    security_score,
)
from .webauthn import Challenge, HardwareKeyRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime, timedelta

    from .audit.events import AuditEvent, SuspiciousAnnotation
    from .audit.reports import SecurityStatistics, SuspiciousActivity, UserRiskAnalysis
    from .domain.hardware_key import HardwareCredential
    from .domain.policy import PolicyComplianceResult
    from .domain.trusted_device import TrustedDevice
    from .ports import (
        DeviceInfo,
        IAuditStore,
        IClock,
        IHardwareCredentialRepository,
        IMfaDeliveryHook,
        IProfileRepository,
        IRecoveryCodeRepository,
        ISessionStore,
        ITrustedDeviceRepository,
        IUserDirectory,
        IWebAuthnCeremony,
    )

logger = logging.getLogger("stepup_auth.service")

_RECOVERABLE = (MfaError, EntityNotFoundError, ConcurrencyError)

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")

LOW_RECOVERY_CODES_WARNING = (
    "You are running low on recovery codes. Consider generating new ones."
)


def _reason_for(exc: Exception) -> FailureReason:
    if isinstance(exc, MfaError):
        return exc.reason
    if isinstance(exc, EntityNotFoundError):
        return FailureReason.NOT_FOUND
    return FailureReason.CONFLICT


def normalize_phone(phone: str) -> str:
    """Strip separators and validate an (optionally +prefixed) phone number.

    Raises:
        MfaSetupError: Not 10 to 15 digits.
    """
    candidate = _PHONE_SEPARATORS.sub("", phone or "")
    if not _PHONE_PATTERN.match(candidate):
        raise MfaSetupError("Invalid phone number")
    return candidate


class TwoFactorService:
    """Two-factor authentication and device-trust engine.

    Example:
        ```python
        service = TwoFactorService.in_memory(
            delivery=TwilioDeliveryHook(...),
            ceremony=Fido2Ceremony(...),
            directory=AccountDirectory(...),
        )

        setup = (await service.setup_totp("user-1")).data
        result = await service.confirm_totp("user-1", "123456")
        if not result:
            return {"error": result.message}
        ```
    """

    def __init__(
        self,
        *,
        profiles: IProfileRepository,
        credentials: IHardwareCredentialRepository,
        devices: ITrustedDeviceRepository,
        recovery_codes: IRecoveryCodeRepository,
        sessions: ISessionStore,
        audit_store: IAuditStore,
        delivery: IMfaDeliveryHook,
        ceremony: IWebAuthnCeremony,
        directory: IUserDirectory,
        clock: IClock | None = None,
        lock_strategy: ILockStrategy | None = None,
        config: StepUpConfig | None = None,
    ) -> None:
        self.config = config or StepUpConfig()
        self.clock = clock or SystemClock()
        lock_strategy = lock_strategy or InMemoryLockStrategy()

        self.profiles = profiles
        self.delivery = delivery
        self.directory = directory
        self.totp = TotpVerifier(self.config.totp)
        self.sessions = VerificationSessionManager(
            sessions,
            lock_strategy,
            self.clock,
            otp_config=self.config.otp,
            hardware_key_config=self.config.hardware_key,
        )
        self.recovery = RecoveryCodeVault(recovery_codes, self.clock, self.config.recovery)
        self.devices = TrustedDeviceStore(
            devices, lock_strategy, self.clock, self.config.devices
        )
        self.hardware_keys = HardwareKeyRegistry(
            credentials,
            ceremony,
            self.sessions,
            lock_strategy,
            self.clock,
            self.config.hardware_key,
            collaborator_timeout=self.config.collaborator_timeout,
        )
        self.audit = AuditLog(audit_store, RiskScoringEngine(self.config.risk), self.clock)

    @classmethod
    def in_memory(
        cls,
        *,
        delivery: IMfaDeliveryHook,
        ceremony: IWebAuthnCeremony,
        directory: IUserDirectory,
        clock: IClock | None = None,
        config: StepUpConfig | None = None,
    ) -> TwoFactorService:
        """Wire the service to the in-memory adapters (tests, single process)."""
        from .adapters.memory import (
            InMemoryHardwareCredentialRepository,
            InMemoryProfileRepository,
            InMemoryRecoveryCodeRepository,
            InMemorySessionStore,
            InMemoryTrustedDeviceRepository,
        )
        from .audit.memory import InMemoryAuditStore

        return cls(
            profiles=InMemoryProfileRepository(),
            credentials=InMemoryHardwareCredentialRepository(),
            devices=InMemoryTrustedDeviceRepository(),
            recovery_codes=InMemoryRecoveryCodeRepository(),
            sessions=InMemorySessionStore(),
            audit_store=InMemoryAuditStore(),
            delivery=delivery,
            ceremony=ceremony,
            directory=directory,
            clock=clock,
            config=config,
        )

    # ── Status ───────────────────────────────────────────────────

    async def get_status(self, user_id: str) -> OperationResult[ProfileStatus]:
        profile = await self.profiles.get(user_id)
        trusted = await self.devices.active_count(user_id)
        keys = await self.hardware_keys.active_count(user_id)
        remaining = await self.recovery.remaining_count(user_id)

        status = ProfileStatus(
            user_id=user_id,
            is_enabled=bool(profile and profile.is_enabled),
            enabled_methods=tuple(profile.get_enabled_methods()) if profile else (),
            preferred_method=profile.preferred_method if profile else None,
            remaining_recovery_codes=remaining,
            trusted_devices_count=trusted,
            hardware_keys_count=keys,
            setup_at=profile.setup_at if profile else None,
            last_used_at=profile.last_used_at if profile else None,
            security_score=security_score(profile, trusted, keys),
        )
        status = replace(status, recommendations=recommendations(status))
        return OperationResult.ok(status)

    async def get_available_methods(
        self, user_id: str
    ) -> OperationResult[list[MethodAvailability]]:
        profile = await self.profiles.get(user_id)
        contact = await self.directory.get_contact(user_id)

        methods: list[MethodAvailability] = []
        for method in selectable_methods():
            meta = metadata_for(method)
            available, reason = True, None
            if method is TwoFactorMethod.EMAIL and not (
                contact and contact.email and contact.email_verified
            ):
                available, reason = False, "Email address not verified"
            methods.append(
                MethodAvailability(
                    method=method,
                    display_name=meta.display_name,
                    description=meta.description,
                    security_level=meta.security_level,
                    is_enabled=bool(profile and profile.supports_method(method)),
                    is_available=available,
                    unavailable_reason=reason,
                )
            )
        return OperationResult.ok(methods)

    # ── TOTP ─────────────────────────────────────────────────────

    async def setup_totp(self, user_id: str) -> OperationResult[TotpSetup]:
        """Store a new, unconfirmed TOTP secret and return the enrollment data."""
        try:
            profile = await self._profile_or_new(user_id)
            contact = await self.directory.get_contact(user_id)
            secret = self.totp.generate_secret()
            profile.stage_totp_secret(secret)
            await self.profiles.save(profile)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id, AuditEventType.TOTP_SETUP, exc, method=TwoFactorMethod.TOTP
            )

        account_name = (contact.email if contact else None) or user_id
        await self._record(user_id, AuditEventType.TOTP_SETUP, method=TwoFactorMethod.TOTP)
        logger.info("TOTP setup started for user %s", user_id)
        return OperationResult.ok(
            self.totp.setup(secret, account_name),
            "Scan the QR code with your authenticator app, then confirm a code.",
        )

    async def confirm_totp(
        self,
        user_id: str,
        code: str,
        device_info: DeviceInfo | None = None,
    ) -> OperationResult[None]:
        try:
            profile = await self.profiles.get(user_id)
            if profile is None or not profile.pending_totp_secret:
                raise MfaSetupError("No TOTP setup pending")
            now = self.clock.now()
            step = self.totp.matching_step(profile.pending_totp_secret, code, now)
            if step is None:
                raise InvalidCodeError("Invalid TOTP code")
            profile.activate_totp_secret(step, now)
            profile.mark_used(now)
            await self._save_verified_profile(profile)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.VERIFICATION_FAILED,
                exc,
                method=TwoFactorMethod.TOTP,
                device_info=device_info,
                metadata={"purpose": SessionPurpose.ENROLLMENT.value},
            )

        await self._record(
            user_id,
            AuditEventType.METHOD_ENABLED,
            method=TwoFactorMethod.TOTP,
            device_info=device_info,
        )
        logger.info("TOTP enabled for user %s", user_id)
        return OperationResult.ok(message="Authenticator app enabled.")

    def _check_totp(self, profile: TwoFactorProfile, code: str, now: datetime) -> None:
        if not profile.totp_secret:
            raise MethodNotConfiguredError("TOTP is not configured")
        step = self.totp.matching_step(profile.totp_secret, code, now)
        if step is None or not profile.accept_totp_step(step):
            raise InvalidCodeError("Invalid TOTP code")
        profile.mark_used(now)

    async def _save_verified_profile(self, profile: TwoFactorProfile) -> None:
        # A concurrent save means another request consumed the same TOTP step.
        try:
            await self.profiles.save(profile)
        except OptimisticLockingError as err:
            raise InvalidCodeError("Concurrent verification") from err

    # ── SMS / Email ──────────────────────────────────────────────

    async def enable_sms(
        self, user_id: str, phone_number: str
    ) -> OperationResult[None]:
        """Stage the phone number and send an enrollment code to it.

        The number replaces the current one, and SMS becomes enabled, only once
        ``confirm_sms`` succeeds.
        """
        try:
            phone = normalize_phone(phone_number)
            profile = await self._profile_or_new(user_id)
            profile.stage_phone_number(phone)
            await self.profiles.save(profile)
            await self._dispatch_code(
                user_id, TwoFactorMethod.SMS, SessionPurpose.ENROLLMENT, phone
            )
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.CODE_SENT,
                exc,
                method=TwoFactorMethod.SMS,
                metadata={"purpose": SessionPurpose.ENROLLMENT.value},
            )

        await self._record(
            user_id,
            AuditEventType.CODE_SENT,
            method=TwoFactorMethod.SMS,
            metadata={"purpose": SessionPurpose.ENROLLMENT.value},
        )
        return OperationResult.ok(message="Verification code sent.")

    async def confirm_sms(
        self,
        user_id: str,
        code: str,
        device_info: DeviceInfo | None = None,
    ) -> OperationResult[None]:
        try:
            profile = await self.profiles.get(user_id)
            if profile is None or not profile.pending_phone_number:
                raise MfaSetupError("No SMS enrollment pending")
            await self.sessions.submit_code(
                user_id, TwoFactorMethod.SMS, code, SessionPurpose.ENROLLMENT
            )
            profile.activate_phone_number(self.clock.now())
            await self.profiles.save(profile)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.VERIFICATION_FAILED,
                exc,
                method=TwoFactorMethod.SMS,
                device_info=device_info,
                metadata={"purpose": SessionPurpose.ENROLLMENT.value},
            )

        await self._record(
            user_id,
            AuditEventType.METHOD_ENABLED,
            method=TwoFactorMethod.SMS,
            device_info=device_info,
        )
        logger.info("SMS enabled for user %s", user_id)
        return OperationResult.ok(message="Text message verification enabled.")

    async def enable_email(self, user_id: str) -> OperationResult[None]:
        try:
            contact = await self.directory.get_contact(user_id)
            if contact is None or not contact.email or not contact.email_verified:
                raise MfaSetupError("Email address is not verified")
            profile = await self._profile_or_new(user_id)
            profile.enable_method(TwoFactorMethod.EMAIL, self.clock.now())
            await self.profiles.save(profile)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id, AuditEventType.METHOD_ENABLED, exc, method=TwoFactorMethod.EMAIL
            )

        await self._record(user_id, AuditEventType.METHOD_ENABLED, method=TwoFactorMethod.EMAIL)
        logger.info("Email verification enabled for user %s", user_id)
        return OperationResult.ok(message="Email verification enabled.")

    async def send_verification_code(
        self,
        user_id: str,
        method: TwoFactorMethod,
        device_info: DeviceInfo | None = None,
    ) -> OperationResult[None]:
        """Send a fresh code over SMS or email, superseding any pending one."""
        try:
            if not metadata_for(method).sends_code:
                raise MethodNotConfiguredError(f"{method.value} does not send codes")
            profile = await self._require_method(user_id, method)
            if method is TwoFactorMethod.SMS:
                destination = profile.phone_number
            else:
                contact = await self.directory.get_contact(user_id)
                destination = contact.email if contact and contact.email_verified else None
            if not destination:
                raise MethodNotConfiguredError(f"No destination for {method.value}")
            await self._dispatch_code(
                user_id, method, SessionPurpose.AUTHENTICATION, destination
            )
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id, AuditEventType.CODE_SENT, exc, method=method, device_info=device_info
            )

        await self._record(
            user_id, AuditEventType.CODE_SENT, method=method, device_info=device_info
        )
        return OperationResult.ok(message="Verification code sent.")

    async def _dispatch_code(
        self,
        user_id: str,
        method: TwoFactorMethod,
        purpose: SessionPurpose,
        destination: str,
    ) -> None:
        """Issue a session for a new code and deliver it.

        Raises:
            RateLimitedError: A code was sent less than the cooldown ago.
            DeliveryError: The delivery hook failed.
            CollaboratorUnavailableError: The delivery hook timed out.
        """
        pending = await self.sessions.get_pending(user_id, method)
        if pending is not None and pending.code_sent_at is not None:
            elapsed = (self.clock.now() - pending.code_sent_at).total_seconds()
            cooldown = self.config.otp.cooldown_seconds
            if elapsed < cooldown:
                raise RateLimitedError(
                    "Code requested too soon", retry_after=cooldown - elapsed
                )

        code = generate_numeric_code(self.config.otp.code_length)
        session = await self.sessions.issue(
            user_id, method, purpose, code_hash=hash_code(code)
        )
        if method is TwoFactorMethod.SMS:
            send = self.delivery.send_sms_otp(destination, code)
        else:
            send = self.delivery.send_email_otp(destination, code)
        try:
            await call_with_timeout(
                send, self.config.collaborator_timeout, name=f"{method.value} delivery"
            )
        except MfaError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Code delivery failed for user %s: %s", user_id, type(exc).__name__
            )
            raise DeliveryError("Code delivery failed") from exc

        await self.sessions.mark_code_sent(session)
        MfaMetrics.record_code_sent(method.value)

    # ── Disabling ────────────────────────────────────────────────

    async def disable_method(
        self, user_id: str, method: TwoFactorMethod, password: str
    ) -> OperationResult[None]:
        try:
            await self._require_password(user_id, password)
            profile = await self.profiles.get(user_id)
            if profile is None or method not in profile.get_enabled_methods():
                raise MethodNotConfiguredError(f"{method.value} is not enabled")
            if method is TwoFactorMethod.HARDWARE_KEY:
                await self.hardware_keys.deactivate_all(user_id, "method disabled")
            profile.disable_method(method)
            await self.profiles.save(profile)
            if not profile.is_enabled:
                await self.recovery.invalidate(user_id)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id, AuditEventType.METHOD_DISABLED, exc, method=method
            )

        await self._record(
            user_id,
            AuditEventType.METHOD_DISABLED,
            method=method,
            metadata={"two_factor_enabled": profile.is_enabled},
        )
        logger.info("%s disabled for user %s", method.value, user_id)
        return OperationResult.ok(message="Method disabled.")

    async def disable_two_factor(
        self, user_id: str, password: str
    ) -> OperationResult[None]:
        """Turn everything off: methods, devices, keys, codes and sessions."""
        try:
            await self._require_password(user_id, password)
            profile = await self.profiles.get(user_id)
            if profile is None or not profile.is_enabled:
                raise MethodNotConfiguredError("Two-factor authentication is not enabled")
            devices, keys = await self._tear_down(profile, "two-factor disabled")
        except _RECOVERABLE as exc:
            return await self._failure(user_id, AuditEventType.TWO_FACTOR_DISABLED, exc)

        await self._record(
            user_id,
            AuditEventType.TWO_FACTOR_DISABLED,
            metadata={"devices_revoked": devices, "keys_deactivated": keys},
        )
        logger.info("Two-factor authentication disabled for user %s", user_id)
        return OperationResult.ok(message="Two-factor authentication disabled.")

    async def reset_two_factor(
        self,
        user_id: str,
        *,
        admin_id: str,
        admin_roles: Iterable[Role],
        reason: str,
    ) -> OperationResult[None]:
        """Administrative reset for a locked-out user.

        No password is asked for; instead the caller must hold an admin role
        and give a reason, both of which end up in the audit trail. Pending
        enrollment state is cleared along with every enabled method.
        """
        try:
            if not any(includes(role, Role.ADMIN) for role in admin_roles):
                raise PermissionDeniedError("Admin role required to reset two-factor")
            if not reason.strip():
                raise MfaSetupError("A reset reason is required")
            profile = await self.profiles.get(user_id)
            if profile is None:
                raise EntityNotFoundError("TwoFactorProfile", user_id)
            devices, keys = await self._tear_down(profile, "two-factor reset")
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.TWO_FACTOR_RESET,
                exc,
                metadata={"admin_id": admin_id},
            )

        await self._record(
            user_id,
            AuditEventType.TWO_FACTOR_RESET,
            metadata={
                "admin_id": admin_id,
                "reason": reason.strip(),
                "devices_revoked": devices,
                "keys_deactivated": keys,
            },
        )
        logger.warning(
            "Two-factor authentication reset for user %s by %s",
            user_id,
            admin_id,
            extra={"reason": reason.strip()},
        )
        return OperationResult.ok(message="Two-factor authentication has been reset.")

    async def _tear_down(self, profile: TwoFactorProfile, note: str) -> tuple[int, int]:
        user_id = profile.user_id
        profile.disable_all()
        await self.profiles.save(profile)
        devices = await self.devices.revoke_all(user_id)
        keys = await self.hardware_keys.deactivate_all(user_id, note)
        await self.recovery.invalidate(user_id)
        await self.sessions.cancel_pending(user_id)
        return devices, keys

    # ── Verification ─────────────────────────────────────────────

    async def verify_code(
        self,
        user_id: str,
        code: str,
        method: TwoFactorMethod,
        remember_device: bool = False,
        device_info: DeviceInfo | None = None,
    ) -> OperationResult[VerificationOutcome]:
        """Verify a TOTP, SMS, email or recovery code."""
        if method is TwoFactorMethod.RECOVERY_CODE:
            return await self.use_recovery_code(
                user_id, code, device_info=device_info, remember_device=remember_device
            )

        try:
            profile = await self._require_method(user_id, method)
            if method is TwoFactorMethod.TOTP:
                self._check_totp(profile, code, self.clock.now())
                await self._save_verified_profile(profile)
            elif method in (TwoFactorMethod.SMS, TwoFactorMethod.EMAIL):
                await self.sessions.submit_code(user_id, method, code)
            else:
                raise MethodNotConfiguredError(
                    "Hardware keys verify through the assertion flow"
                )
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.VERIFICATION_FAILED,
                exc,
                method=method,
                device_info=device_info,
                verification=True,
            )

        return await self._verified(
            user_id,
            method,
            AuditEventType.VERIFICATION_SUCCEEDED,
            remember_device=remember_device,
            device_info=device_info,
            touch_profile=method is not TwoFactorMethod.TOTP,
        )

    # ── Hardware keys ────────────────────────────────────────────

    async def begin_hardware_key_registration(
        self, user_id: str
    ) -> OperationResult[Challenge]:
        try:
            contact = await self.directory.get_contact(user_id)
            challenge = await self.hardware_keys.begin_registration(
                user_id, contact.display_name if contact else None
            )
        except _RECOVERABLE as exc:
            return self._rejected(user_id, exc)
        return OperationResult.ok(challenge)

    async def complete_hardware_key_registration(
        self,
        user_id: str,
        client_response: Mapping[str, Any],
        name: str | None = None,
    ) -> OperationResult[HardwareCredential]:
        try:
            credential = await self.hardware_keys.complete_registration(
                user_id, client_response, name
            )
            profile = await self._profile_or_new(user_id)
            if not profile.hardware_key_enabled:
                profile.enable_method(TwoFactorMethod.HARDWARE_KEY, self.clock.now())
                await self.profiles.save(profile)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.HARDWARE_KEY_REGISTERED,
                exc,
                method=TwoFactorMethod.HARDWARE_KEY,
            )

        await self._record(
            user_id,
            AuditEventType.HARDWARE_KEY_REGISTERED,
            method=TwoFactorMethod.HARDWARE_KEY,
            metadata={
                "credential_id": credential.id,
                "authenticator_type": credential.authenticator_type.value,
            },
        )
        return OperationResult.ok(credential, "Security key registered.")

    async def begin_hardware_key_verification(
        self, user_id: str
    ) -> OperationResult[Challenge]:
        try:
            await self._require_method(user_id, TwoFactorMethod.HARDWARE_KEY)
            challenge = await self.hardware_keys.begin_verification(user_id)
        except _RECOVERABLE as exc:
            return self._rejected(user_id, exc)
        return OperationResult.ok(challenge)

    async def complete_hardware_key_verification(
        self,
        user_id: str,
        client_response: Mapping[str, Any],
        remember_device: bool = False,
        device_info: DeviceInfo | None = None,
    ) -> OperationResult[VerificationOutcome]:
        try:
            await self._require_method(user_id, TwoFactorMethod.HARDWARE_KEY)
            credential = await self.hardware_keys.complete_verification(
                user_id, client_response
            )
        except ReplayDetectedError as exc:
            result = await self._failure(
                user_id,
                AuditEventType.HARDWARE_KEY_REPLAY_DETECTED,
                exc,
                method=TwoFactorMethod.HARDWARE_KEY,
                device_info=device_info,
                verification=True,
            )
            try:
                await self._disable_hardware_key_if_none_left(user_id)
            except ConcurrencyError:
                logger.warning(
                    "Hardware key method left enabled for user %s after replay", user_id
                )
            return result
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.VERIFICATION_FAILED,
                exc,
                method=TwoFactorMethod.HARDWARE_KEY,
                device_info=device_info,
                verification=True,
            )

        return await self._verified(
            user_id,
            TwoFactorMethod.HARDWARE_KEY,
            AuditEventType.VERIFICATION_SUCCEEDED,
            remember_device=remember_device,
            device_info=device_info,
            metadata={"credential_id": credential.id},
        )

    async def remove_hardware_key(
        self, user_id: str, credential_id: str, password: str
    ) -> OperationResult[None]:
        """Deactivate one key; the method is disabled when no active key is left."""
        try:
            await self._require_password(user_id, password)
            await self.hardware_keys.remove(user_id, credential_id)
            method_disabled = await self._disable_hardware_key_if_none_left(user_id)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.HARDWARE_KEY_REMOVED,
                exc,
                method=TwoFactorMethod.HARDWARE_KEY,
                metadata={"credential_id": credential_id},
            )

        await self._record(
            user_id,
            AuditEventType.HARDWARE_KEY_REMOVED,
            method=TwoFactorMethod.HARDWARE_KEY,
            metadata={"credential_id": credential_id, "method_disabled": method_disabled},
        )
        return OperationResult.ok(message="Security key removed.")

    async def get_hardware_keys(
        self, user_id: str
    ) -> OperationResult[list[HardwareCredential]]:
        return OperationResult.ok(await self.hardware_keys.list_credentials(user_id))

    async def _disable_hardware_key_if_none_left(self, user_id: str) -> bool:
        for _ in range(3):
            if await self.hardware_keys.active_count(user_id) > 0:
                return False
            profile = await self.profiles.get(user_id)
            if profile is None or not profile.hardware_key_enabled:
                return False
            profile.disable_method(TwoFactorMethod.HARDWARE_KEY)
            try:
                await self.profiles.save(profile)
            except OptimisticLockingError:
                continue
            logger.info("Hardware key method disabled for user %s, no active keys left", user_id)
            return True
        raise OptimisticLockingError(f"Profile {user_id!r} kept changing")

    # ── Recovery codes ───────────────────────────────────────────

    async def generate_recovery_codes(
        self, user_id: str, password: str
    ) -> OperationResult[list[str]]:
        """Replace the user's recovery codes; the plaintext is returned only here."""
        try:
            await self._require_password(user_id, password)
            profile = await self.profiles.get(user_id)
            if profile is None or not profile.is_enabled:
                raise MethodNotConfiguredError("Two-factor authentication is not enabled")
            codes = await self.recovery.generate_codes(user_id)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.RECOVERY_CODES_GENERATED,
                exc,
                method=TwoFactorMethod.RECOVERY_CODE,
            )

        await self._record(
            user_id,
            AuditEventType.RECOVERY_CODES_GENERATED,
            method=TwoFactorMethod.RECOVERY_CODE,
            metadata={"count": len(codes)},
        )
        return OperationResult.ok(
            codes, "Store these codes somewhere safe. They will not be shown again."
        )

    async def use_recovery_code(
        self,
        user_id: str,
        code: str,
        device_info: DeviceInfo | None = None,
        remember_device: bool = False,
    ) -> OperationResult[VerificationOutcome]:
        method = TwoFactorMethod.RECOVERY_CODE
        try:
            await self._require_method(user_id, method)
            try:
                remaining = await self.recovery.use_code(user_id, code)
            except OptimisticLockingError as err:
                # Lost the race: the other request consumed from the same set.
                raise RecoveryCodeInvalidError("Concurrent recovery code use") from err
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.VERIFICATION_FAILED,
                exc,
                method=method,
                device_info=device_info,
                verification=True,
            )

        return await self._verified(
            user_id,
            method,
            AuditEventType.RECOVERY_CODE_USED,
            remember_device=remember_device,
            device_info=device_info,
            metadata={"remaining": remaining},
            remaining_recovery_codes=remaining,
            warning=LOW_RECOVERY_CODES_WARNING if self.recovery.is_low(remaining) else None,
        )

    # ── Trusted devices ──────────────────────────────────────────

    async def get_trusted_devices(
        self, user_id: str
    ) -> OperationResult[list[TrustedDevice]]:
        return OperationResult.ok(await self.devices.list_devices(user_id))

    async def is_device_trusted(
        self, user_id: str, fingerprint: str
    ) -> OperationResult[bool]:
        return OperationResult.ok(await self.devices.is_trusted(user_id, fingerprint))

    async def revoke_trusted_device(
        self, user_id: str, device_id: str
    ) -> OperationResult[None]:
        try:
            await self.devices.revoke(user_id, device_id)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.DEVICE_REVOKED,
                exc,
                metadata={"device_id": device_id},
            )

        await self._record(
            user_id, AuditEventType.DEVICE_REVOKED, metadata={"device_id": device_id}
        )
        return OperationResult.ok(message="Device revoked.")

    async def revoke_all_trusted_devices(
        self, user_id: str, password: str
    ) -> OperationResult[int]:
        try:
            await self._require_password(user_id, password)
            count = await self.devices.revoke_all(user_id)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id, AuditEventType.DEVICE_REVOKED, exc, metadata={"scope": "all"}
            )

        await self._record(
            user_id,
            AuditEventType.DEVICE_REVOKED,
            metadata={"scope": "all", "count": count},
        )
        return OperationResult.ok(count, "All trusted devices have been revoked.")

    async def extend_device_trust(
        self,
        user_id: str,
        device_id: str,
        duration: timedelta | None = None,
    ) -> OperationResult[TrustedDevice]:
        try:
            device = await self.devices.extend_trust(user_id, device_id, duration)
        except _RECOVERABLE as exc:
            return await self._failure(
                user_id,
                AuditEventType.DEVICE_EXTENDED,
                exc,
                metadata={"device_id": device_id},
            )

        await self._record(
            user_id,
            AuditEventType.DEVICE_EXTENDED,
            metadata={"device_id": device_id, "expires_at": device.expires_at.isoformat()},
        )
        return OperationResult.ok(device, "Device trust extended.")

    # ── Policy, attempts and audit ───────────────────────────────

    async def get_failed_attempt_count(
        self, user_id: str, method: TwoFactorMethod | None = None
    ) -> OperationResult[int]:
        """Failures inside ``attempt_window``; the caller enforces rate limits."""
        count = await self.audit.failed_attempts(
            user_id, self.config.attempt_window, method
        )
        return OperationResult.ok(count)

    def is_two_factor_required(self, roles: Iterable[Role]) -> OperationResult[bool]:
        return OperationResult.ok(effective_policy(roles).is_required)

    async def check_policy_compliance(
        self, user_id: str, roles: Iterable[Role]
    ) -> OperationResult[PolicyComplianceResult]:
        profile = await self.profiles.get(user_id)
        enabled = profile.get_enabled_methods() if profile else []
        return OperationResult.ok(check_compliance(enabled, roles))

    async def get_audit_events(
        self, user_id: str, limit: int = 50
    ) -> OperationResult[list[AuditEvent]]:
        return OperationResult.ok(await self.audit.get_events(user_id, limit=limit))

    async def mark_suspicious(
        self, event_id: str, reason: str
    ) -> OperationResult[SuspiciousAnnotation]:
        try:
            annotation = await self.audit.mark_suspicious(event_id, reason)
        except EntityNotFoundError:
            return OperationResult.fail(FailureReason.NOT_FOUND)
        return OperationResult.ok(annotation)

    async def get_suspicious_activities(
        self, limit: int = 50
    ) -> OperationResult[list[SuspiciousActivity]]:
        """Flagged events across all users, for the security dashboard."""
        return OperationResult.ok(await self.audit.get_suspicious_activities(limit=limit))

    async def get_security_statistics(
        self, start: datetime, end: datetime
    ) -> OperationResult[SecurityStatistics]:
        return OperationResult.ok(await self.audit.statistics(start, end))

    async def analyze_user_risk(self, user_id: str) -> OperationResult[UserRiskAnalysis]:
        """Risk assessment of the user's activity inside ``risk_analysis_window``."""
        analysis = await self.audit.analyze_user(user_id, self.config.risk_analysis_window)
        return OperationResult.ok(analysis)

    # ── Helpers ──────────────────────────────────────────────────

    async def _profile_or_new(self, user_id: str) -> TwoFactorProfile:
        profile = await self.profiles.get(user_id)
        return profile if profile is not None else TwoFactorProfile(id=user_id)

    async def _require_method(
        self, user_id: str, method: TwoFactorMethod
    ) -> TwoFactorProfile:
        profile = await self.profiles.get(user_id)
        if profile is None or not profile.supports_method(method):
            raise MethodNotConfiguredError(f"{method.value} is not enabled")
        return profile

    async def _require_password(self, user_id: str, password: str) -> None:
        if not await self.directory.verify_password(user_id, password):
            raise InvalidPasswordError("Password verification failed")

    async def _touch_profile(self, user_id: str) -> None:
        for _ in range(3):
            profile = await self.profiles.get(user_id)
            if profile is None:
                return
            profile.mark_used(self.clock.now())
            try:
                await self.profiles.save(profile)
                return
            except OptimisticLockingError:
                continue
        logger.warning("Could not record last use for user %s", user_id)

    async def _remember(
        self, user_id: str, device_info: DeviceInfo
    ) -> TrustedDevice | None:
        try:
            return await self.devices.record_successful_verification(user_id, device_info)
        except (DeviceNotTrustedError, ConcurrencyError) as exc:
            logger.warning(
                "Device not remembered for user %s: %s", user_id, type(exc).__name__
            )
            return None

    async def _verified(
        self,
        user_id: str,
        method: TwoFactorMethod,
        event_type: AuditEventType,
        *,
        remember_device: bool = False,
        device_info: DeviceInfo | None = None,
        metadata: dict[str, Any] | None = None,
        touch_profile: bool = True,
        remaining_recovery_codes: int | None = None,
        warning: str | None = None,
    ) -> OperationResult[VerificationOutcome]:
        if touch_profile:
            await self._touch_profile(user_id)
        device = None
        if remember_device and device_info is not None:
            device = await self._remember(user_id, device_info)

        details = dict(metadata or {})
        details["device_remembered"] = device is not None
        event = await self._record(
            user_id, event_type, method=method, device_info=device_info, metadata=details
        )
        MfaMetrics.record_verification(method.value, "success")
        logger.info("Verification succeeded for user %s via %s", user_id, method.value)

        outcome = VerificationOutcome(
            method=method,
            verified_at=event.timestamp,
            risk_score=event.risk_score,
            device_remembered=device is not None,
            trusted_device_id=device.id if device else None,
            trust_level=device.trust_level if device else None,
            remaining_recovery_codes=remaining_recovery_codes,
            warning=warning,
            metadata=details,
        )
        return OperationResult.ok(outcome, "Verification successful.")

    async def _record(
        self,
        user_id: str,
        event_type: AuditEventType,
        *,
        method: TwoFactorMethod | None = None,
        device_info: DeviceInfo | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return await self.audit.record(
            user_id,
            event_type,
            success=True,
            method=method,
            device_info=device_info,
            metadata=metadata,
        )

    async def _failure(
        self,
        user_id: str,
        event_type: AuditEventType,
        exc: Exception,
        *,
        method: TwoFactorMethod | None = None,
        device_info: DeviceInfo | None = None,
        metadata: dict[str, Any] | None = None,
        verification: bool = False,
    ) -> OperationResult[Any]:
        reason = _reason_for(exc)
        details = dict(metadata or {})
        if isinstance(exc, ReplayDetectedError):
            details["credential_id"] = exc.credential_id
            MfaMetrics.record_replay_detected()

        await self.audit.record(
            user_id,
            event_type,
            success=False,
            method=method,
            failure_reason=reason,
            device_info=device_info,
            metadata=details,
        )
        if verification and method is not None:
            MfaMetrics.record_verification(method.value, reason.value)
        logger.warning(
            "%s failed for user %s: %s",
            event_type.value,
            user_id,
            reason.value,
            extra={"method": method.value if method else None},
        )
        return OperationResult.fail(reason)

    def _rejected(self, user_id: str, exc: Exception) -> OperationResult[Any]:
        """Failure for operations that only issue challenges (nothing to audit)."""
        reason = _reason_for(exc)
        logger.info("Challenge not issued for user %s: %s", user_id, reason.value)
        return OperationResult.fail(reason)


__all__: list[str] = ["TwoFactorService", "normalize_phone", "LOW_RECOVERY_CODES_WARNING"]
