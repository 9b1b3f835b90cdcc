"""One-time code helpers for SMS and email delivery.

Codes are numeric, generated with ``secrets`` and kept on the verification
session only as a SHA-256 hash.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets


def generate_numeric_code(length: int = 6) -> str:
    """Generate a random numeric OTP code."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def hash_code(code: str) -> str:
    return hashlib.sha256(code.strip().encode("utf-8")).hexdigest()


def codes_match(code: str, code_hash: str) -> bool:
    """Constant-time comparison of a presented code against a stored hash."""
    return hmac.compare_digest(hash_code(code), code_hash)


__all__: list[str] = ["generate_numeric_code", "hash_code", "codes_match"]
