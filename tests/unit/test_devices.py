"""Tests for TrustedDeviceStore."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from stepup_auth.adapters.memory import FrozenClock, InMemoryTrustedDeviceRepository
from stepup_auth.config import TrustedDeviceConfig
from stepup_auth.devices import TrustedDeviceStore, derive_fingerprint
from stepup_auth.domain import TrustedDevice
from stepup_auth.exceptions import DeviceNotTrustedError, EntityNotFoundError
from stepup_auth.locking import InMemoryLockStrategy
from stepup_auth.ports import DeviceInfo


@pytest.fixture
def store(
    device_repository: InMemoryTrustedDeviceRepository,
    lock_strategy: InMemoryLockStrategy,
    clock: FrozenClock,
) -> TrustedDeviceStore:
    return TrustedDeviceStore(device_repository, lock_strategy, clock, TrustedDeviceConfig())


class TestDeriveFingerprint:
    def test_client_fingerprint_wins(self) -> None:
        info = DeviceInfo(fingerprint="abc123", user_agent="UA", ip_address="1.2.3.4")
        assert derive_fingerprint(info) == "abc123"

    def test_falls_back_to_hash(self) -> None:
        first = derive_fingerprint(DeviceInfo(user_agent="UA", ip_address="1.2.3.4"))
        second = derive_fingerprint(DeviceInfo(user_agent="UA", ip_address="1.2.3.4"))
        other = derive_fingerprint(DeviceInfo(user_agent="UA", ip_address="5.6.7.8"))

        assert first is not None
        assert len(first) == 64
        assert first == second
        assert first != other

    def test_nothing_to_fingerprint(self) -> None:
        assert derive_fingerprint(DeviceInfo()) is None


class TestTrustedDeviceStore:
    @pytest.mark.asyncio
    async def test_first_verification(
        self, store: TrustedDeviceStore, device_info: DeviceInfo, clock: FrozenClock
    ) -> None:
        device = await store.record_successful_verification("u1", device_info)

        assert device.fingerprint == "abc123"
        assert device.trust_level == 1
        assert device.verification_count == 1
        assert device.expires_at == clock.now() + timedelta(days=30)
        assert await store.is_trusted("u1", "abc123")
        assert not await store.is_trusted("u2", "abc123")

    @pytest.mark.asyncio
    async def test_tenth_verification_reaches_level_three(
        self, store: TrustedDeviceStore, device_info: DeviceInfo
    ) -> None:
        levels = []
        for _ in range(10):
            device = await store.record_successful_verification("u1", device_info)
            levels.append(device.trust_level)

        assert device.verification_count == 10
        assert device.trust_level == 3
        assert levels == sorted(levels)
        assert len(await store.list_devices("u1")) == 1

    @pytest.mark.asyncio
    async def test_expired_device_is_not_trusted(
        self,
        store: TrustedDeviceStore,
        device_repository: InMemoryTrustedDeviceRepository,
        clock: FrozenClock,
    ) -> None:
        await device_repository.save(
            TrustedDevice(
                id="d1",
                user_id="u1",
                fingerprint="abc123",
                created_at=clock.now() - timedelta(days=31),
                expires_at=clock.now() - timedelta(days=1),
            )
        )

        assert not await store.is_trusted("u1", "abc123")
        assert await store.active_count("u1") == 0

    @pytest.mark.asyncio
    async def test_trust_lapses_after_duration(
        self, store: TrustedDeviceStore, device_info: DeviceInfo, clock: FrozenClock
    ) -> None:
        await store.record_successful_verification("u1", device_info)
        clock.advance(days=30)
        assert not await store.is_trusted("u1", "abc123")

    @pytest.mark.asyncio
    async def test_verification_renews_expiry(
        self, store: TrustedDeviceStore, device_info: DeviceInfo, clock: FrozenClock
    ) -> None:
        await store.record_successful_verification("u1", device_info)
        clock.advance(days=20)
        device = await store.record_successful_verification("u1", device_info)

        assert device.expires_at == clock.now() + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_revoked_device_starts_over(
        self, store: TrustedDeviceStore, device_info: DeviceInfo
    ) -> None:
        for _ in range(5):
            device = await store.record_successful_verification("u1", device_info)
        assert device.trust_level == 2

        await store.revoke("u1", device.id)
        assert not await store.is_trusted("u1", "abc123")

        fresh = await store.record_successful_verification("u1", device_info)
        assert fresh.id != device.id
        assert fresh.trust_level == 1
        assert fresh.verification_count == 1

    @pytest.mark.asyncio
    async def test_revoke_foreign_device(
        self, store: TrustedDeviceStore, device_info: DeviceInfo
    ) -> None:
        device = await store.record_successful_verification("u1", device_info)
        with pytest.raises(EntityNotFoundError):
            await store.revoke("u2", device.id)

    @pytest.mark.asyncio
    async def test_revoke_all(self, store: TrustedDeviceStore) -> None:
        await store.record_successful_verification("u1", DeviceInfo(fingerprint="a"))
        await store.record_successful_verification("u1", DeviceInfo(fingerprint="b"))
        await store.record_successful_verification("u2", DeviceInfo(fingerprint="c"))

        assert await store.revoke_all("u1") == 2
        assert await store.active_count("u1") == 0
        assert await store.active_count("u2") == 1

    @pytest.mark.asyncio
    async def test_extend_trust(
        self, store: TrustedDeviceStore, device_info: DeviceInfo, clock: FrozenClock
    ) -> None:
        device = await store.record_successful_verification("u1", device_info)
        clock.advance(days=10)

        extended = await store.extend_trust("u1", device.id, timedelta(days=90))
        assert extended.expires_at == clock.now() + timedelta(days=90)

    @pytest.mark.asyncio
    async def test_cannot_extend_revoked(
        self, store: TrustedDeviceStore, device_info: DeviceInfo
    ) -> None:
        device = await store.record_successful_verification("u1", device_info)
        await store.revoke("u1", device.id)

        with pytest.raises(DeviceNotTrustedError):
            await store.extend_trust("u1", device.id)

    @pytest.mark.asyncio
    async def test_unfingerprintable_device(self, store: TrustedDeviceStore) -> None:
        with pytest.raises(DeviceNotTrustedError):
            await store.record_successful_verification("u1", DeviceInfo())

    @pytest.mark.asyncio
    async def test_concurrent_verifications_are_all_counted(
        self, store: TrustedDeviceStore, device_info: DeviceInfo
    ) -> None:
        await asyncio.gather(
            *(store.record_successful_verification("u1", device_info) for _ in range(5))
        )

        devices = await store.list_devices("u1")
        assert len(devices) == 1
        assert devices[0].verification_count == 5
        assert devices[0].trust_level == 2
