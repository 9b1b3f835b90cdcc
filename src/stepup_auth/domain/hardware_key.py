"""HardwareCredential — a registered WebAuthn/FIDO2 authenticator."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from ..exceptions import ReplayDetectedError
from .aggregate import AggregateRoot


class AuthenticatorType(str, Enum):
    """Transport reported by the authenticator at registration."""

    USB = "usb"
    NFC = "nfc"
    BLE = "ble"
    INTERNAL = "internal"


class HardwareCredential(AggregateRoot[str]):
    """A WebAuthn credential owned by one user.

    ``id`` is the base64url credential ID issued by the authenticator.

    Invariant: ``sign_count`` never decreases. An assertion is accepted only
    if its counter is strictly greater than the stored one, or both are zero
    (authenticators that do not implement a counter). Anything else is a
    clone/replay signal and the credential is deactivated for good.
    """

    user_id: str
    name: str = "Security key"
    public_key: bytes
    sign_count: int = Field(default=0, ge=0)
    aaguid: str | None = None
    authenticator_type: AuthenticatorType = AuthenticatorType.USB
    is_cross_platform: bool = True
    is_active: bool = True
    created_at: datetime
    last_used_at: datetime | None = None
    deactivated_at: datetime | None = None
    deactivation_reason: str | None = None

    def is_counter_valid(self, new_counter: int) -> bool:
        if new_counter == 0 and self.sign_count == 0:
            return True
        return new_counter > self.sign_count

    def record_assertion(self, new_counter: int, now: datetime) -> None:
        """Apply a verified assertion's counter.

        Raises:
            ReplayDetectedError: If the counter did not advance.
        """
        if not self.is_counter_valid(new_counter):
            raise ReplayDetectedError(
                credential_id=self.id,
                stored_counter=self.sign_count,
                presented_counter=new_counter,
            )
        self.sign_count = new_counter
        self.last_used_at = now

    def deactivate(self, reason: str, now: datetime) -> None:
        """Soft-disable; the record is kept for audit continuity."""
        if not self.is_active:
            return
        self.is_active = False
        self.deactivated_at = now
        self.deactivation_reason = reason


__all__: list[str] = ["AuthenticatorType", "HardwareCredential"]
