"""Tests for HardwareKeyRegistry."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from stepup_auth.adapters.memory import (
    FrozenClock,
    InMemoryHardwareCredentialRepository,
    InMemorySessionStore,
)
from stepup_auth.domain import AuthenticatorType, HardwareCredential
from stepup_auth.exceptions import (
    CollaboratorUnavailableError,
    EntityNotFoundError,
    ExpiredChallengeError,
    InvalidCodeError,
    MfaSetupError,
    ReplayDetectedError,
)
from stepup_auth.locking import InMemoryLockStrategy
from stepup_auth.sessions import VerificationSessionManager
from stepup_auth.webauthn import HardwareKeyRegistry

if TYPE_CHECKING:
    from conftest import MockWebAuthnCeremony


@pytest.fixture
def registry(
    credentials: InMemoryHardwareCredentialRepository,
    ceremony: MockWebAuthnCeremony,
    session_store: InMemorySessionStore,
    lock_strategy: InMemoryLockStrategy,
    clock: FrozenClock,
) -> HardwareKeyRegistry:
    sessions = VerificationSessionManager(session_store, lock_strategy, clock)
    return HardwareKeyRegistry(
        credentials,
        ceremony,
        sessions,
        lock_strategy,
        clock,
        collaborator_timeout=0.05,
    )


async def _register(
    registry: HardwareKeyRegistry, credential_id: str = "cred-1", sign_count: int = 0
) -> HardwareCredential:
    await registry.begin_registration("u1")
    return await registry.complete_registration(
        "u1", {"id": credential_id, "signCount": sign_count}, name="YubiKey"
    )


class TestRegistration:
    @pytest.mark.asyncio
    async def test_registration_options(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "existing")
        challenge = await registry.begin_registration("u1", display_name="Alice")

        options = challenge.options
        assert options["challenge"] == challenge.challenge
        assert options["rp"]["id"] == registry.config.rp_id
        assert options["user"]["displayName"] == "Alice"
        assert {p["alg"] for p in options["pubKeyCredParams"]} == {-7, -257}
        assert options["excludeCredentials"] == [{"type": "public-key", "id": "existing"}]

    @pytest.mark.asyncio
    async def test_complete_registration(
        self, registry: HardwareKeyRegistry, ceremony: MockWebAuthnCeremony
    ) -> None:
        challenge = await registry.begin_registration("u1")
        credential = await registry.complete_registration(
            "u1", {"id": "cred-1", "type": "nfc"}, name="Keychain key"
        )

        assert ceremony.challenges == [challenge.challenge]
        assert credential.id == "cred-1"
        assert credential.name == "Keychain key"
        assert credential.authenticator_type is AuthenticatorType.NFC
        assert credential.sign_count == 0
        assert await registry.active_count("u1") == 1

    @pytest.mark.asyncio
    async def test_duplicate_credential_rejected(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        await registry.begin_registration("u1")

        with pytest.raises(MfaSetupError):
            await registry.complete_registration("u1", {"id": "cred-1"})

    @pytest.mark.asyncio
    async def test_registration_without_challenge(self, registry: HardwareKeyRegistry) -> None:
        with pytest.raises(ExpiredChallengeError):
            await registry.complete_registration("u1", {"id": "cred-1"})

    @pytest.mark.asyncio
    async def test_rejected_attestation(
        self, registry: HardwareKeyRegistry, ceremony: MockWebAuthnCeremony
    ) -> None:
        await registry.begin_registration("u1")
        ceremony.reject = True

        with pytest.raises(InvalidCodeError):
            await registry.complete_registration("u1", {"id": "cred-1"})
        assert await registry.active_count("u1") == 0


class TestVerification:
    @pytest.mark.asyncio
    async def test_begin_requires_active_key(self, registry: HardwareKeyRegistry) -> None:
        with pytest.raises(MfaSetupError):
            await registry.begin_verification("u1")

    @pytest.mark.asyncio
    async def test_request_options_list_active_keys(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        challenge = await registry.begin_verification("u1")

        assert challenge.options["allowCredentials"] == [{"type": "public-key", "id": "cred-1"}]
        assert challenge.options["rpId"] == registry.config.rp_id

    @pytest.mark.asyncio
    async def test_advancing_counter_then_replay(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1", sign_count=4)

        await registry.begin_verification("u1")
        credential = await registry.complete_verification("u1", {"id": "cred-1", "signCount": 5})
        assert credential.sign_count == 5

        await registry.begin_verification("u1")
        with pytest.raises(ReplayDetectedError) as excinfo:
            await registry.complete_verification("u1", {"id": "cred-1", "signCount": 5})

        assert excinfo.value.credential_id == "cred-1"
        stored = await registry.repository.get("cred-1")
        assert stored is not None
        assert not stored.is_active
        assert stored.sign_count == 5

    @pytest.mark.asyncio
    async def test_zero_counters_are_accepted(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1", sign_count=0)

        for _ in range(2):
            await registry.begin_verification("u1")
            credential = await registry.complete_verification(
                "u1", {"id": "cred-1", "signCount": 0}
            )
            assert credential.is_active

    @pytest.mark.asyncio
    async def test_unknown_credential(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        await registry.begin_verification("u1")

        with pytest.raises(InvalidCodeError):
            await registry.complete_verification("u1", {"id": "other", "signCount": 1})

    @pytest.mark.asyncio
    async def test_bad_signature(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        await registry.begin_verification("u1")

        with pytest.raises(InvalidCodeError):
            await registry.complete_verification(
                "u1", {"id": "cred-1", "signCount": 1, "valid": False}
            )
        stored = await registry.repository.get("cred-1")
        assert stored is not None
        assert stored.is_active
        assert stored.sign_count == 0

    @pytest.mark.asyncio
    async def test_expired_challenge(
        self, registry: HardwareKeyRegistry, clock: FrozenClock
    ) -> None:
        await _register(registry, "cred-1")
        await registry.begin_verification("u1")
        clock.advance(seconds=301)

        with pytest.raises(ExpiredChallengeError):
            await registry.complete_verification("u1", {"id": "cred-1", "signCount": 1})

    @pytest.mark.asyncio
    async def test_challenge_is_single_use(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        await registry.begin_verification("u1")
        await registry.complete_verification("u1", {"id": "cred-1", "signCount": 1})

        with pytest.raises(ExpiredChallengeError):
            await registry.complete_verification("u1", {"id": "cred-1", "signCount": 2})

    @pytest.mark.asyncio
    async def test_slow_ceremony(
        self, registry: HardwareKeyRegistry, ceremony: MockWebAuthnCeremony
    ) -> None:
        await _register(registry, "cred-1")
        await registry.begin_verification("u1")
        ceremony.delay = 0.5

        with pytest.raises(CollaboratorUnavailableError):
            await registry.complete_verification("u1", {"id": "cred-1", "signCount": 1})


class TestAssertionCounter:
    @pytest.mark.asyncio
    async def test_concurrent_same_counter_accepts_at_most_one(
        self, registry: HardwareKeyRegistry
    ) -> None:
        await _register(registry, "cred-1", sign_count=4)

        results = await asyncio.gather(
            registry.apply_assertion_counter("cred-1", 5),
            registry.apply_assertion_counter("cred-1", 5),
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, HardwareCredential)]
        replays = [r for r in results if isinstance(r, ReplayDetectedError)]
        assert len(accepted) == 1
        assert len(replays) == 1

    @pytest.mark.asyncio
    async def test_inactive_credential(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        await registry.remove("u1", "cred-1")

        with pytest.raises(InvalidCodeError):
            await registry.apply_assertion_counter("cred-1", 1)


class TestManagement:
    @pytest.mark.asyncio
    async def test_remove_keeps_record(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        removed = await registry.remove("u1", "cred-1")

        assert not removed.is_active
        assert removed.deactivation_reason == "removed by user"
        assert len(await registry.list_credentials("u1")) == 1
        assert await registry.active_count("u1") == 0

    @pytest.mark.asyncio
    async def test_remove_foreign_credential(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        with pytest.raises(EntityNotFoundError):
            await registry.remove("u2", "cred-1")

    @pytest.mark.asyncio
    async def test_deactivate_all(self, registry: HardwareKeyRegistry) -> None:
        await _register(registry, "cred-1")
        await _register(registry, "cred-2")

        assert await registry.deactivate_all("u1", "two-factor disabled") == 2
        assert await registry.active_count("u1") == 0
