"""Tests for the in-memory repositories and the locking primitives."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from stepup_auth.adapters.memory import (
    InMemoryHardwareCredentialRepository,
    InMemoryProfileRepository,
    InMemorySessionStore,
)
from stepup_auth.domain import (
    HardwareCredential,
    SessionState,
    TwoFactorMethod,
    TwoFactorProfile,
    VerificationSession,
)
from stepup_auth.exceptions import LockAcquisitionError, OptimisticLockingError
from stepup_auth.locking import CriticalSection, InMemoryLockStrategy, ResourceIdentifier

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _session(session_id: str, method: TwoFactorMethod = TwoFactorMethod.SMS) -> VerificationSession:
    return VerificationSession(
        id=session_id,
        user_id="u1",
        method=method,
        issued_at=NOW,
        expires_at=NOW + timedelta(minutes=5),
    )


class TestProfileRepository:
    @pytest.mark.asyncio
    async def test_get_returns_copy(self) -> None:
        repo = InMemoryProfileRepository()
        await repo.save(TwoFactorProfile(id="u1"))

        loaded = await repo.get("u1")
        assert loaded is not None
        loaded.phone_number = "+15551234567"

        again = await repo.get("u1")
        assert again is not None
        assert again.phone_number is None

    @pytest.mark.asyncio
    async def test_stale_save_rejected(self) -> None:
        repo = InMemoryProfileRepository()
        await repo.save(TwoFactorProfile(id="u1"))

        first = await repo.get("u1")
        second = await repo.get("u1")
        assert first is not None and second is not None

        first.phone_number = "+15551234567"
        await repo.save(first)
        second.phone_number = "+15550000000"
        with pytest.raises(OptimisticLockingError):
            await repo.save(second)

    @pytest.mark.asyncio
    async def test_version_increments(self) -> None:
        repo = InMemoryProfileRepository()
        profile = TwoFactorProfile(id="u1")
        await repo.save(profile)
        await repo.save(profile)

        stored = await repo.get("u1")
        assert stored is not None
        assert stored.version == 2


class TestCompareAndSetSignCount:
    @pytest_asyncio.fixture
    async def repo(self) -> InMemoryHardwareCredentialRepository:
        repo = InMemoryHardwareCredentialRepository()
        await repo.save(
            HardwareCredential(
                id="cred-1", user_id="u1", public_key=b"key", sign_count=4, created_at=NOW
            )
        )
        return repo

    @pytest.mark.asyncio
    async def test_matching_expectation(self, repo: InMemoryHardwareCredentialRepository) -> None:
        assert await repo.compare_and_set_sign_count("cred-1", 4, 5, NOW)

        stored = await repo.get("cred-1")
        assert stored is not None
        assert stored.sign_count == 5
        assert stored.last_used_at == NOW

    @pytest.mark.asyncio
    async def test_stale_expectation(self, repo: InMemoryHardwareCredentialRepository) -> None:
        assert await repo.compare_and_set_sign_count("cred-1", 4, 5, NOW)
        assert not await repo.compare_and_set_sign_count("cred-1", 4, 6, NOW)

    @pytest.mark.asyncio
    async def test_unknown_credential(self, repo: InMemoryHardwareCredentialRepository) -> None:
        assert not await repo.compare_and_set_sign_count("missing", 0, 1, NOW)


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_replace_pending_supersedes(self) -> None:
        store = InMemorySessionStore()
        assert await store.replace_pending(_session("s1"), NOW) is None

        superseded = await store.replace_pending(_session("s2"), NOW)

        assert superseded is not None
        assert superseded.id == "s1"
        assert superseded.state is SessionState.SUPERSEDED
        pending = await store.get_pending("u1", TwoFactorMethod.SMS)
        assert pending is not None
        assert pending.id == "s2"

    @pytest.mark.asyncio
    async def test_terminal_save_clears_pending(self) -> None:
        store = InMemorySessionStore()
        await store.replace_pending(_session("s1"), NOW)

        session = await store.get("s1")
        assert session is not None
        session.expire(NOW)
        await store.save(session)

        assert await store.get_pending("u1", TwoFactorMethod.SMS) is None


class TestCriticalSection:
    def test_resources_sort(self) -> None:
        a = ResourceIdentifier("Device", "2")
        b = ResourceIdentifier("Credential", "9")
        c = ResourceIdentifier("Device", "1")
        assert sorted([a, b, c]) == [b, c, a]

    @pytest.mark.asyncio
    async def test_serialises_holders(self) -> None:
        strategy = InMemoryLockStrategy()
        resource = ResourceIdentifier("HardwareCredential", "cred-1")
        events: list[str] = []

        async def worker(name: str) -> None:
            async with CriticalSection([resource], strategy):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )
        assert strategy.active_count() == 0

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        strategy = InMemoryLockStrategy()
        resource = ResourceIdentifier("VerificationSession", "u1:sms")

        async with CriticalSection([resource], strategy):
            with pytest.raises(LockAcquisitionError):
                async with CriticalSection([resource], strategy, timeout=0.01):
                    pass

        assert strategy.active_count() == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        strategy = InMemoryLockStrategy()
        resource = ResourceIdentifier("TrustedDevice", "u1:abc")

        with pytest.raises(RuntimeError):
            async with CriticalSection([resource], strategy):
                raise RuntimeError("boom")

        async with CriticalSection([resource], strategy, timeout=0.01):
            pass

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_no_state(self) -> None:
        strategy = InMemoryLockStrategy()
        resource = ResourceIdentifier("HardwareCredential", "cred-1")

        holder = await strategy.acquire(resource)
        waiter = asyncio.create_task(strategy.acquire(resource, timeout=5.0))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await strategy.release(resource, holder)

        assert strategy.active_count() == 0
        token = await strategy.acquire(resource, timeout=0.01)
        await strategy.release(resource, token)
        assert strategy.active_count() == 0
