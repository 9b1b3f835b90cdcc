"""Tests for RecoveryCodeVault."""

from __future__ import annotations

import pytest

from stepup_auth.adapters.memory import FrozenClock, InMemoryRecoveryCodeRepository
from stepup_auth.config import RecoveryCodeConfig
from stepup_auth.exceptions import (
    OptimisticLockingError,
    RecoveryCodeExhaustedError,
    RecoveryCodeInvalidError,
)
from stepup_auth.recovery import RecoveryCodeVault


@pytest.fixture
def vault(
    recovery_repository: InMemoryRecoveryCodeRepository, clock: FrozenClock
) -> RecoveryCodeVault:
    return RecoveryCodeVault(recovery_repository, clock, RecoveryCodeConfig())


class TestRecoveryCodeVault:
    @pytest.mark.asyncio
    async def test_generate_codes(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate_codes("u1")

        assert len(codes) == 10
        assert len(set(codes)) == 10
        for code in codes:
            assert len(code) == 9
            assert code[4] == "-"
            assert not set(code.replace("-", "")) & set("01OI")
        assert await vault.remaining_count("u1") == 10

    @pytest.mark.asyncio
    async def test_only_hashes_are_stored(
        self,
        vault: RecoveryCodeVault,
        recovery_repository: InMemoryRecoveryCodeRepository,
    ) -> None:
        codes = await vault.generate_codes("u1")
        stored = await recovery_repository.get("u1")

        assert stored is not None
        hashes = {entry.code_hash for entry in stored.entries}
        assert not hashes & set(codes)
        assert vault.hash_code(codes[0]) in hashes

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate_codes("u1")

        assert await vault.use_code("u1", codes[2]) == 9
        with pytest.raises(RecoveryCodeInvalidError):
            await vault.use_code("u1", codes[2])

    @pytest.mark.asyncio
    async def test_input_is_normalised(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate_codes("u1")
        sloppy = " " + codes[0].replace("-", "").lower() + " "

        assert await vault.use_code("u1", sloppy) == 9

    @pytest.mark.asyncio
    async def test_regeneration_invalidates_old_codes(self, vault: RecoveryCodeVault) -> None:
        old = await vault.generate_codes("u1")
        await vault.generate_codes("u1")

        with pytest.raises(RecoveryCodeInvalidError):
            await vault.use_code("u1", old[0])

    @pytest.mark.asyncio
    async def test_generation_increments(
        self,
        vault: RecoveryCodeVault,
        recovery_repository: InMemoryRecoveryCodeRepository,
    ) -> None:
        await vault.generate_codes("u1")
        await vault.generate_codes("u1")

        stored = await recovery_repository.get("u1")
        assert stored is not None
        assert stored.generation == 2

    @pytest.mark.asyncio
    async def test_no_codes_generated(self, vault: RecoveryCodeVault) -> None:
        with pytest.raises(RecoveryCodeExhaustedError):
            await vault.use_code("u1", "ABCD-EFGH")

    @pytest.mark.asyncio
    async def test_exhausted(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate_codes("u1", count=2)
        await vault.use_code("u1", codes[0])
        await vault.use_code("u1", codes[1])

        with pytest.raises(RecoveryCodeExhaustedError):
            await vault.use_code("u1", codes[0])

    @pytest.mark.asyncio
    async def test_stale_copy_cannot_consume(
        self,
        vault: RecoveryCodeVault,
        recovery_repository: InMemoryRecoveryCodeRepository,
        clock: FrozenClock,
    ) -> None:
        codes = await vault.generate_codes("u1")
        stale = await recovery_repository.get("u1")
        assert stale is not None

        await vault.use_code("u1", codes[0])
        stale.consume(vault.hash_code(codes[0]), clock.now())

        with pytest.raises(OptimisticLockingError):
            await recovery_repository.save(stale)

    @pytest.mark.parametrize(("remaining", "low"), [(0, True), (2, True), (3, False)])
    def test_is_low(self, vault: RecoveryCodeVault, remaining: int, low: bool) -> None:
        assert vault.is_low(remaining) is low

    @pytest.mark.asyncio
    async def test_invalidate(self, vault: RecoveryCodeVault) -> None:
        await vault.generate_codes("u1")
        await vault.invalidate("u1")
        assert await vault.remaining_count("u1") == 0
