"""In-memory user directory."""

from __future__ import annotations

from dataclasses import replace

from ...ports import IUserDirectory, UserContact
from ...security.hasher import PasswordHasher


class InMemoryUserDirectory(IUserDirectory):
    """User accounts held in memory with bcrypt password hashes.

    Example:
        ```python
        directory = InMemoryUserDirectory(PasswordHasher(rounds=4))
        directory.add_user("user-1", "s3cret", email="a@example.com", email_verified=True)
        ```
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self.hasher = hasher or PasswordHasher()
        self._contacts: dict[str, UserContact] = {}
        self._password_hashes: dict[str, str] = {}

    def add_user(
        self,
        user_id: str,
        password: str,
        *,
        email: str | None = None,
        email_verified: bool = False,
        display_name: str | None = None,
    ) -> UserContact:
        contact = UserContact(
            user_id=user_id,
            email=email,
            email_verified=email_verified,
            display_name=display_name,
        )
        self._contacts[user_id] = contact
        self._password_hashes[user_id] = self.hasher.hash(password)
        return contact

    def set_email_verified(self, user_id: str, verified: bool = True) -> None:
        self._contacts[user_id] = replace(self._contacts[user_id], email_verified=verified)

    async def get_contact(self, user_id: str) -> UserContact | None:
        return self._contacts.get(user_id)

    async def verify_password(self, user_id: str, password: str) -> bool:
        hashed = self._password_hashes.get(user_id)
        if hashed is None:
            return False
        return self.hasher.verify(hashed, password)


__all__: list[str] = ["InMemoryUserDirectory"]
