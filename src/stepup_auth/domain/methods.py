"""Second-factor methods and their static metadata."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class TwoFactorMethod(str, Enum):
    """Verification methods a profile can enable."""

    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"
    HARDWARE_KEY = "hardware_key"
    RECOVERY_CODE = "recovery_code"


@dataclass(frozen=True)
class MethodMetadata:
    """Display and ranking data for one method.

    Attributes:
        display_name: Label shown in account settings.
        description: One-line explanation for the user.
        security_level: Relative strength, 1 (weakest) to 4.
        sends_code: Whether a code is dispatched over an external channel.
    """

    display_name: str
    description: str
    security_level: int
    sends_code: bool = False


METHOD_METADATA: Mapping[TwoFactorMethod, MethodMetadata] = MappingProxyType(
    {
        TwoFactorMethod.TOTP: MethodMetadata(
            "Authenticator app",
            "Time-based codes from Google Authenticator, Authy or similar.",
            3,
        ),
        TwoFactorMethod.SMS: MethodMetadata(
            "Text message",
            "A one-time code sent to your phone.",
            1,
            sends_code=True,
        ),
        TwoFactorMethod.EMAIL: MethodMetadata(
            "Email",
            "A one-time code sent to your verified email address.",
            1,
            sends_code=True,
        ),
        TwoFactorMethod.HARDWARE_KEY: MethodMetadata(
            "Security key",
            "A FIDO2/WebAuthn hardware or platform authenticator.",
            4,
        ),
        TwoFactorMethod.RECOVERY_CODE: MethodMetadata(
            "Recovery code",
            "Single-use backup codes for when other methods are unavailable.",
            1,
        ),
    }
)


def metadata_for(method: TwoFactorMethod) -> MethodMetadata:
    return METHOD_METADATA[method]


def selectable_methods() -> list[TwoFactorMethod]:
    """Methods a user can actively choose (recovery codes are a fallback only)."""
    return [m for m in TwoFactorMethod if m is not TwoFactorMethod.RECOVERY_CODE]


__all__: list[str] = [
    "TwoFactorMethod",
    "MethodMetadata",
    "METHOD_METADATA",
    "metadata_for",
    "selectable_methods",
]
