"""TrustedDeviceStore — remembered devices and trust escalation."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import TYPE_CHECKING

from .config import TrustedDeviceConfig
from .domain.trusted_device import TrustedDevice
from .exceptions import DeviceNotTrustedError, EntityNotFoundError
from .locking import CriticalSection, ILockStrategy, ResourceIdentifier

if TYPE_CHECKING:
    from datetime import timedelta

    from .ports import DeviceInfo, IClock, ITrustedDeviceRepository

logger = logging.getLogger("stepup_auth.devices")


def derive_fingerprint(device_info: DeviceInfo) -> str | None:
    """Fingerprint supplied by the client, else a hash of user agent and IP."""
    if device_info.fingerprint:
        return device_info.fingerprint
    if not device_info.user_agent and not device_info.ip_address:
        return None
    raw = f"{device_info.user_agent or ''}|{device_info.ip_address or ''}"
    return hashlib.sha256(raw.encode()).hexdigest()


class TrustedDeviceStore:
    """Tracks which devices may skip the second factor.

    A device is trusted while its record is active and unexpired. Each
    successful verification on a remembered device counts towards the next
    trust level and renews its expiry. Revoked records stay revoked; the
    next verification on that fingerprint starts a new record at level 1.
    """

    def __init__(
        self,
        repository: ITrustedDeviceRepository,
        lock_strategy: ILockStrategy,
        clock: IClock,
        config: TrustedDeviceConfig | None = None,
    ) -> None:
        self.repository = repository
        self.lock_strategy = lock_strategy
        self.clock = clock
        self.config = config or TrustedDeviceConfig()

    async def is_trusted(self, user_id: str, fingerprint: str) -> bool:
        device = await self.repository.find_active(user_id, fingerprint)
        return device is not None and device.is_valid(self.clock.now())

    async def record_successful_verification(
        self, user_id: str, device_info: DeviceInfo
    ) -> TrustedDevice:
        """Create or advance the trust record for the device in ``device_info``.

        Raises:
            DeviceNotTrustedError: ``device_info`` carries nothing to
                fingerprint the device by.
        """
        fingerprint = derive_fingerprint(device_info)
        if fingerprint is None:
            raise DeviceNotTrustedError("Device cannot be fingerprinted")

        resource = ResourceIdentifier("TrustedDevice", f"{user_id}:{fingerprint}")
        async with CriticalSection([resource], self.lock_strategy):
            now = self.clock.now()
            device = await self.repository.find_active(user_id, fingerprint)
            if device is None:
                device = TrustedDevice(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    fingerprint=fingerprint,
                    device_name=device_info.device_name,
                    user_agent=device_info.user_agent,
                    ip_address=device_info.ip_address,
                    created_at=now,
                    expires_at=now + self.config.trust_duration,
                )
                device.record_verification(now, self.config.level_thresholds)
                escalated = False
            else:
                escalated = device.record_verification(
                    now, self.config.level_thresholds
                )
                device.extend_trust(self.config.trust_duration, now)
                device.ip_address = device_info.ip_address or device.ip_address
                device.user_agent = device_info.user_agent or device.user_agent
            await self.repository.save(device)

        if device.verification_count == 1:
            logger.info(
                "Device trusted for user %s",
                user_id,
                extra={"device_id": device.id},
            )
        elif escalated:
            logger.info(
                "Device trust escalated to level %d for user %s",
                device.trust_level,
                user_id,
                extra={"device_id": device.id, "count": device.verification_count},
            )
        return device

    async def _owned(self, user_id: str, device_id: str) -> TrustedDevice:
        device = await self.repository.get(device_id)
        if device is None or device.user_id != user_id:
            raise EntityNotFoundError("TrustedDevice", device_id)
        return device

    async def revoke(self, user_id: str, device_id: str) -> TrustedDevice:
        """Revoke one device.

        Raises:
            EntityNotFoundError: Unknown device, or owned by another user.
        """
        device = await self._owned(user_id, device_id)
        device.revoke(self.clock.now())
        await self.repository.save(device)
        logger.info("Trusted device revoked for user %s", user_id, extra={"device_id": device_id})
        return device

    async def revoke_all(self, user_id: str) -> int:
        """Revoke every active device of a user. Returns how many."""
        now = self.clock.now()
        revoked = 0
        for device in await self.repository.list_for_user(user_id):
            if not device.is_active:
                continue
            device.revoke(now)
            await self.repository.save(device)
            revoked += 1
        logger.info("All trusted devices revoked for user %s", user_id, extra={"count": revoked})
        return revoked

    async def extend_trust(
        self,
        user_id: str,
        device_id: str,
        duration: timedelta | None = None,
    ) -> TrustedDevice:
        """Push a device's expiry to ``now + duration``.

        Raises:
            EntityNotFoundError: Unknown device, or owned by another user.
            DeviceNotTrustedError: The device has been revoked.
        """
        device = await self._owned(user_id, device_id)
        if not device.is_active:
            raise DeviceNotTrustedError("Device has been revoked")
        device.extend_trust(duration or self.config.trust_duration, self.clock.now())
        await self.repository.save(device)
        return device

    async def list_devices(self, user_id: str) -> list[TrustedDevice]:
        return await self.repository.list_for_user(user_id)

    async def active_count(self, user_id: str) -> int:
        now = self.clock.now()
        return sum(1 for d in await self.repository.list_for_user(user_id) if d.is_valid(now))


__all__: list[str] = ["derive_fingerprint", "TrustedDeviceStore"]
