"""TOTP (Time-based One-Time Password) verification.

Works with any RFC 6238 authenticator app (Google Authenticator,
Microsoft Authenticator, Authy, 1Password, FreeOTP).

Uses pyotp library internally. Unlike ``pyotp.TOTP.verify`` this reports
*which* time step matched, so the profile can refuse a code whose step has
already been accepted once.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..config import TotpConfig

logger = logging.getLogger("stepup_auth.totp")


@dataclass(frozen=True)
class TotpSetup:
    """Data shown to the user when setting up TOTP.

    Attributes:
        secret: Base32-encoded TOTP secret.
        provisioning_uri: otpauth:// URI for QR code generation.
        manual_key: Human-readable key for manual entry.
    """

    secret: str
    provisioning_uri: str
    manual_key: str


class TotpVerifier:
    """Stateless TOTP helper; secrets live on the ``TwoFactorProfile``.

    Example:
        ```python
        verifier = TotpVerifier(TotpConfig(issuer="MyBlog"))
        secret = verifier.generate_secret()
        uri = verifier.provisioning_uri(secret, "alice@example.com")

        step = verifier.matching_step(secret, "123456", clock.now())
        if step is not None and profile.accept_totp_step(step):
            ...
        ```
    """

    def __init__(self, config: TotpConfig | None = None) -> None:
        self.config = config or TotpConfig()

    def _get_pyotp(self) -> Any:
        """Lazy import pyotp."""
        try:
            import pyotp

            return pyotp
        except ImportError as e:
            raise ImportError(
                "pyotp is required for TOTP support. "
                "Install with: pip install stepup-auth"
            ) from e

    def _totp(self, secret: str) -> Any:
        pyotp = self._get_pyotp()
        return pyotp.TOTP(
            secret,
            digits=self.config.digits,
            interval=self.config.interval,
            issuer=self.config.issuer,
        )

    def generate_secret(self) -> str:
        return str(self._get_pyotp().random_base32())

    def setup(self, secret: str, account_name: str) -> TotpSetup:
        return TotpSetup(
            secret=secret,
            provisioning_uri=self.provisioning_uri(secret, account_name),
            manual_key=self.format_secret(secret),
        )

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        return str(
            self._totp(secret).provisioning_uri(
                name=account_name,
                issuer_name=self.config.issuer,
            )
        )

    @staticmethod
    def format_secret(secret: str) -> str:
        """Format secret as space-separated groups of 4 for manual entry."""
        secret = secret.rstrip("=")
        return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))

    def time_step(self, now: datetime) -> int:
        return int(now.timestamp()) // self.config.interval

    def code_at(self, secret: str, now: datetime) -> str:
        """Current code for ``secret``; used by tests and enrollment tooling."""
        return str(self._totp(secret).at(now))

    def matching_step(self, secret: str, code: str, now: datetime) -> int | None:
        """Time step whose code equals ``code``, within ±``valid_window`` steps.

        Returns:
            The matching step, or None if no step in the window matches.
        """
        code = code.strip().replace(" ", "")
        if len(code) != self.config.digits or not code.isdigit():
            return None

        totp = self._totp(secret)
        current = int(totp.timecode(now))
        window = self.config.valid_window
        # Prefer the newest step so a drifted-ahead client does not burn an
        # older step first.
        for offset in range(window, -window - 1, -1):
            candidate = str(totp.at(now, counter_offset=offset))
            if hmac.compare_digest(candidate, code):
                return current + offset
        logger.debug("TOTP code did not match any step in window")
        return None


__all__: list[str] = ["TotpSetup", "TotpVerifier"]
