"""RecoveryCodeSet — one user's current batch of single-use recovery codes."""

from __future__ import annotations

import secrets
from datetime import datetime

from pydantic import BaseModel, Field

from ..exceptions import RecoveryCodeExhaustedError, RecoveryCodeInvalidError
from .aggregate import AggregateRoot


class RecoveryCodeEntry(BaseModel):
    """Hash of one code and when it was used (None while unused)."""

    code_hash: str
    used_at: datetime | None = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


class RecoveryCodeSet(AggregateRoot[str]):
    """The current recovery codes of a profile; ``id`` is the user ID.

    Only hashes are stored. Regeneration replaces the set wholesale with a
    higher ``generation``, which invalidates every old code at once.
    """

    generation: int = 1
    entries: list[RecoveryCodeEntry] = Field(default_factory=list)
    used_count: int = 0
    generated_at: datetime

    def remaining_count(self) -> int:
        return sum(1 for entry in self.entries if not entry.is_used)

    def consume(self, code_hash: str, now: datetime) -> int:
        """Mark the unused entry matching ``code_hash`` as used.

        Returns:
            Number of unused codes left.

        Raises:
            RecoveryCodeExhaustedError: Every code has been used.
            RecoveryCodeInvalidError: No unused code matches.
        """
        if self.remaining_count() == 0:
            raise RecoveryCodeExhaustedError("All recovery codes have been used")

        for entry in self.entries:
            if entry.is_used:
                continue
            if secrets.compare_digest(entry.code_hash, code_hash):
                entry.used_at = now
                self.used_count += 1
                return self.remaining_count()

        raise RecoveryCodeInvalidError("Invalid or already used recovery code")


__all__: list[str] = ["RecoveryCodeEntry", "RecoveryCodeSet"]
