"""Password hashing utilities.

Provides bcrypt-based password hashing used to re-authenticate a user
before sensitive two-factor changes.
"""

from __future__ import annotations

from typing import Any, cast


class PasswordHasher:
    """Password hasher using bcrypt.

    Example:
        ```python
        hasher = PasswordHasher()
        hashed = hasher.hash("user_password")

        assert hasher.verify(hashed, "user_password")
        ```
    """

    def __init__(self, *, rounds: int = 12) -> None:
        """Initialize the password hasher.

        Args:
            rounds: bcrypt rounds (cost factor, default 12).
        """
        self.rounds = rounds
        self._bcrypt: Any = None

    def _get_bcrypt(self) -> Any:
        """Lazy import bcrypt."""
        if self._bcrypt is None:
            try:
                import bcrypt

                self._bcrypt = bcrypt
            except ImportError as e:
                raise ImportError(
                    "bcrypt is required for password hashing. "
                    "Install with: pip install bcrypt"
                ) from e
        return self._bcrypt

    def hash(self, password: str) -> str:
        bcrypt_module = self._get_bcrypt()
        salt = bcrypt_module.gensalt(rounds=self.rounds)
        return bcrypt_module.hashpw(password.encode(), salt).decode()  # type: ignore[no-any-return]

    def verify(self, hashed_password: str, password: str) -> bool:
        """Verify a password against a bcrypt hash.

        Returns:
            True if password matches; False for a mismatch or a malformed hash.
        """
        bcrypt_module = self._get_bcrypt()
        try:
            return cast(
                "bool",
                bcrypt_module.checkpw(password.encode(), hashed_password.encode()),
            )
        except ValueError:
            # Invalid hash format or malformed hash
            return False


__all__: list[str] = ["PasswordHasher"]
