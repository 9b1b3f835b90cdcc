"""RecoveryCodeVault — single-use backup codes.

Codes use an alphabet without ambiguous characters (0/O, 1/I) and are shown
as ``XXXX-XXXX``. Only SHA-256 hashes of the normalised code are stored; the
plaintext is returned once from ``generate_codes``.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import string
import uuid
from typing import TYPE_CHECKING

from .config import RecoveryCodeConfig
from .domain.recovery_codes import RecoveryCodeEntry, RecoveryCodeSet
from .exceptions import RecoveryCodeExhaustedError

if TYPE_CHECKING:
    from .ports import IClock, IRecoveryCodeRepository

logger = logging.getLogger("stepup_auth.recovery")


class RecoveryCodeVault:
    """Generates, stores and consumes recovery codes.

    Example:
        ```python
        vault = RecoveryCodeVault(repo, clock)
        codes = await vault.generate_codes("user-123")
        print(f"Save these codes: {codes}")

        remaining = await vault.use_code("user-123", "ABCD-EFGH")
        ```
    """

    # Characters used in recovery codes (exclude ambiguous: 0, O, 1, I)
    ALPHABET = string.ascii_uppercase.replace("O", "").replace(
        "I", ""
    ) + string.digits.replace("0", "").replace("1", "")

    def __init__(
        self,
        repository: IRecoveryCodeRepository,
        clock: IClock,
        config: RecoveryCodeConfig | None = None,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.config = config or RecoveryCodeConfig()

    def _generate_code(self) -> str:
        return "".join(
            secrets.choice(self.ALPHABET) for _ in range(self.config.code_length)
        )

    @staticmethod
    def _format_code(code: str) -> str:
        """Format code with dashes for readability (e.g. ``ABCD-EFGH``)."""
        return "-".join(code[i : i + 4] for i in range(0, len(code), 4))

    @staticmethod
    def _normalize_code(code: str) -> str:
        """Normalize for comparison: uppercase, no dashes or whitespace."""
        return "".join(code.split()).replace("-", "").upper()

    @classmethod
    def hash_code(cls, code: str) -> str:
        return hashlib.sha256(cls._normalize_code(code).encode()).hexdigest()

    async def generate_codes(self, user_id: str, count: int | None = None) -> list[str]:
        """Replace the user's code set with a fresh one.

        Every previously issued code stops working.

        Returns:
            Plaintext codes. They are not stored and cannot be shown again.
        """
        count = count or self.config.count
        previous = await self.repository.get(user_id)

        codes: list[str] = []
        hashes: set[str] = set()
        while len(codes) < count:
            code = self._generate_code()
            code_hash = self.hash_code(code)
            if code_hash in hashes:
                continue
            hashes.add(code_hash)
            codes.append(self._format_code(code))

        code_set = RecoveryCodeSet(
            id=user_id,
            generation=(previous.generation + 1) if previous else 1,
            entries=[RecoveryCodeEntry(code_hash=self.hash_code(c)) for c in codes],
            generated_at=self.clock.now(),
        )
        await self.repository.replace(code_set)

        logger.info(
            "Recovery codes generated for user %s",
            user_id,
            extra={"count": count, "generation": code_set.generation},
        )
        return codes

    async def use_code(self, user_id: str, code: str) -> int:
        """Consume one code.

        Returns:
            Number of unused codes left.

        Raises:
            RecoveryCodeExhaustedError: No codes exist or all are used.
            RecoveryCodeInvalidError: No unused code matches.
            OptimisticLockingError: A concurrent use of the same set won the race.
        """
        code_set = await self.repository.get(user_id)
        if code_set is None:
            raise RecoveryCodeExhaustedError("No recovery codes have been generated")

        remaining = code_set.consume(self.hash_code(code), self.clock.now())
        await self.repository.save(code_set)

        logger.info(
            "Recovery code used by user %s", user_id, extra={"remaining": remaining}
        )
        return remaining

    async def remaining_count(self, user_id: str) -> int:
        code_set = await self.repository.get(user_id)
        return code_set.remaining_count() if code_set else 0

    def is_low(self, remaining: int) -> bool:
        return remaining <= self.config.low_watermark

    async def invalidate(self, user_id: str) -> None:
        await self.repository.delete(user_id)
        logger.info("Recovery codes invalidated for user %s", user_id)


__all__: list[str] = ["RecoveryCodeVault"]
