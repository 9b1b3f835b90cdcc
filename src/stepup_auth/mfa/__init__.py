"""Code derivation for the code-based methods (TOTP, SMS, email)."""

from .otp import codes_match, generate_numeric_code, hash_code
from .totp import TotpSetup, TotpVerifier

__all__: list[str] = [
    "TotpSetup",
    "TotpVerifier",
    "generate_numeric_code",
    "hash_code",
    "codes_match",
]
