"""TwoFactorProfile — per-user aggregate of enabled second factors."""

from __future__ import annotations

from datetime import datetime

from ..exceptions import MfaSetupError
from .aggregate import AggregateRoot
from .methods import TwoFactorMethod


class TwoFactorProfile(AggregateRoot[str]):
    """Which second factors a user has enabled, keyed by user ID.

    Created lazily on the first setup call and never hard-deleted; turning
    two-factor authentication off only disables methods.

    Invariant: ``is_enabled`` is True only while at least one concrete
    method is enabled. ``disable_method`` is the single place that clears it.

    Hardware credentials, trusted devices and recovery codes are separate
    aggregates referencing this profile by ``user_id``.
    """

    is_enabled: bool = False
    totp_secret: str | None = None
    pending_totp_secret: str | None = None
    totp_enabled: bool = False
    last_totp_step: int | None = None
    sms_enabled: bool = False
    phone_number: str | None = None
    pending_phone_number: str | None = None
    email_enabled: bool = False
    hardware_key_enabled: bool = False
    preferred_method: TwoFactorMethod | None = None
    setup_at: datetime | None = None
    last_used_at: datetime | None = None

    @property
    def user_id(self) -> str:
        return self.id

    # ── Method management ────────────────────────────────────────

    def stage_totp_secret(self, secret: str) -> None:
        """Hold a new TOTP secret until a code generated from it is confirmed.

        An enabled secret keeps verifying in the meantime.
        """
        self.pending_totp_secret = secret

    def activate_totp_secret(self, step: int, now: datetime) -> None:
        """Swap the confirmed pending secret in and enable TOTP.

        Raises:
            MfaSetupError: If no secret is pending.
        """
        if not self.pending_totp_secret:
            raise MfaSetupError("No TOTP setup pending")
        self.totp_secret = self.pending_totp_secret
        self.pending_totp_secret = None
        self.last_totp_step = step
        self.enable_method(TwoFactorMethod.TOTP, now)

    def stage_phone_number(self, phone_number: str) -> None:
        """Hold a phone number until an enrollment code sent to it is confirmed."""
        self.pending_phone_number = phone_number

    def activate_phone_number(self, now: datetime) -> None:
        if not self.pending_phone_number:
            raise MfaSetupError("No SMS enrollment pending")
        self.phone_number = self.pending_phone_number
        self.pending_phone_number = None
        self.enable_method(TwoFactorMethod.SMS, now)

    def enable_method(self, method: TwoFactorMethod, now: datetime) -> None:
        """Enable a concrete method.

        Raises:
            MfaSetupError: If the method's prerequisites are missing, or the
                method cannot be enabled directly.
        """
        if method is TwoFactorMethod.TOTP:
            if not self.totp_secret:
                raise MfaSetupError("TOTP secret has not been set up")
            self.totp_enabled = True
        elif method is TwoFactorMethod.SMS:
            if not self.phone_number:
                raise MfaSetupError("No phone number configured for SMS")
            self.sms_enabled = True
        elif method is TwoFactorMethod.EMAIL:
            self.email_enabled = True
        elif method is TwoFactorMethod.HARDWARE_KEY:
            self.hardware_key_enabled = True
        else:
            raise MfaSetupError(f"{method.value} cannot be enabled directly")

        if not self.is_enabled:
            self.is_enabled = True
            self.setup_at = self.setup_at or now
        if self.preferred_method is None:
            self.preferred_method = method

    def disable_method(self, method: TwoFactorMethod) -> None:
        """Disable a method and clear its state.

        Clears ``is_enabled`` when no method remains.
        """
        if method is TwoFactorMethod.TOTP:
            self.totp_enabled = False
            self.totp_secret = None
            self.pending_totp_secret = None
            self.last_totp_step = None
        elif method is TwoFactorMethod.SMS:
            self.sms_enabled = False
            self.pending_phone_number = None
        elif method is TwoFactorMethod.EMAIL:
            self.email_enabled = False
        elif method is TwoFactorMethod.HARDWARE_KEY:
            self.hardware_key_enabled = False

        remaining = self.get_enabled_methods()
        if self.preferred_method == method or self.preferred_method not in remaining:
            self.preferred_method = remaining[0] if remaining else None
        if not remaining:
            self.is_enabled = False

    def disable_all(self) -> None:
        for method in self.get_enabled_methods():
            self.disable_method(method)
        # Pending (unconfirmed) enrollment state goes too.
        self.totp_secret = None
        self.pending_totp_secret = None
        self.phone_number = None
        self.pending_phone_number = None

    # ── Queries ──────────────────────────────────────────────────

    def get_enabled_methods(self) -> list[TwoFactorMethod]:
        """Concrete methods currently enabled, strongest first."""
        methods: list[TwoFactorMethod] = []
        if self.hardware_key_enabled:
            methods.append(TwoFactorMethod.HARDWARE_KEY)
        if self.totp_enabled:
            methods.append(TwoFactorMethod.TOTP)
        if self.sms_enabled:
            methods.append(TwoFactorMethod.SMS)
        if self.email_enabled:
            methods.append(TwoFactorMethod.EMAIL)
        return methods

    def has_any_method_enabled(self) -> bool:
        return bool(self.get_enabled_methods())

    def supports_method(self, method: TwoFactorMethod) -> bool:
        """Whether ``method`` can be used to verify this user right now."""
        if method is TwoFactorMethod.RECOVERY_CODE:
            return self.is_enabled
        return method in self.get_enabled_methods()

    # ── Usage tracking ───────────────────────────────────────────

    def accept_totp_step(self, step: int) -> bool:
        """Record a TOTP time step, rejecting steps already used.

        Returns:
            False if ``step`` is not newer than the last accepted step.
        """
        if self.last_totp_step is not None and step <= self.last_totp_step:
            return False
        self.last_totp_step = step
        return True

    def mark_used(self, now: datetime) -> None:
        self.last_used_at = now


__all__: list[str] = ["TwoFactorProfile"]
