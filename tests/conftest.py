"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from stepup_auth import (
    AssertionVerification,
    DeviceInfo,
    FrozenClock,
    InMemoryAuditStore,
    InMemoryHardwareCredentialRepository,
    InMemoryLockStrategy,
    InMemoryProfileRepository,
    InMemoryRecoveryCodeRepository,
    InMemorySessionStore,
    InMemoryTrustedDeviceRepository,
    InMemoryUserDirectory,
    PasswordHasher,
    RegistrationVerification,
    StepUpConfig,
    TwoFactorService,
)
from stepup_auth.domain import AuthenticatorType

USER_ID = "user-1"
PASSWORD = "correct horse battery staple"


class MockDeliveryHook:
    """Records every code it is asked to deliver."""

    def __init__(self) -> None:
        self.emails_sent: list[tuple[str, str]] = []
        self.sms_sent: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None

    async def send_email_otp(self, email: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.emails_sent.append((email, code))

    async def send_sms_otp(self, phone: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sms_sent.append((phone, code))

    @property
    def last_sms_code(self) -> str:
        return self.sms_sent[-1][1]

    @property
    def last_email_code(self) -> str:
        return self.emails_sent[-1][1]


class MockWebAuthnCeremony:
    """Trusts whatever the client response says.

    Registration responses carry ``id`` (and optionally ``signCount`` and
    ``type``); assertion responses carry ``id``, ``signCount`` and optionally
    ``valid``. ``delay`` slows every call down, ``reject`` makes it raise.
    """

    def __init__(self) -> None:
        self.delay: float = 0.0
        self.reject = False
        self.challenges: list[str] = []

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.reject:
            raise ValueError("bad signature")

    async def verify_registration(
        self, challenge: str, client_response: dict[str, Any]
    ) -> RegistrationVerification:
        self.challenges.append(challenge)
        await self._pause()
        return RegistrationVerification(
            credential_id=client_response["id"],
            public_key=b"cose-" + client_response["id"].encode(),
            sign_count=client_response.get("signCount", 0),
            aaguid="00000000-0000-0000-0000-000000000000",
            authenticator_type=AuthenticatorType(client_response.get("type", "usb")),
        )

    async def verify_assertion(
        self,
        challenge: str,
        client_response: dict[str, Any],
        public_key: bytes,
    ) -> AssertionVerification:
        self.challenges.append(challenge)
        await self._pause()
        return AssertionVerification(
            verified=client_response.get("valid", True),
            sign_count=client_response["signCount"],
        )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def delivery() -> MockDeliveryHook:
    return MockDeliveryHook()


@pytest.fixture
def ceremony() -> MockWebAuthnCeremony:
    return MockWebAuthnCeremony()


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    """Directory with one user; low bcrypt cost keeps the suite fast."""
    directory = InMemoryUserDirectory(PasswordHasher(rounds=4))
    directory.add_user(
        USER_ID,
        PASSWORD,
        email="user@example.com",
        email_verified=True,
        display_name="Test User",
    )
    return directory


@pytest.fixture
def lock_strategy() -> InMemoryLockStrategy:
    return InMemoryLockStrategy()


@pytest.fixture
def profiles() -> InMemoryProfileRepository:
    return InMemoryProfileRepository()


@pytest.fixture
def credentials() -> InMemoryHardwareCredentialRepository:
    return InMemoryHardwareCredentialRepository()


@pytest.fixture
def device_repository() -> InMemoryTrustedDeviceRepository:
    return InMemoryTrustedDeviceRepository()


@pytest.fixture
def recovery_repository() -> InMemoryRecoveryCodeRepository:
    return InMemoryRecoveryCodeRepository()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def config() -> StepUpConfig:
    return StepUpConfig()


@pytest.fixture
def service(
    profiles: InMemoryProfileRepository,
    credentials: InMemoryHardwareCredentialRepository,
    device_repository: InMemoryTrustedDeviceRepository,
    recovery_repository: InMemoryRecoveryCodeRepository,
    session_store: InMemorySessionStore,
    audit_store: InMemoryAuditStore,
    delivery: MockDeliveryHook,
    ceremony: MockWebAuthnCeremony,
    directory: InMemoryUserDirectory,
    clock: FrozenClock,
    lock_strategy: InMemoryLockStrategy,
    config: StepUpConfig,
) -> TwoFactorService:
    return TwoFactorService(
        profiles=profiles,
        credentials=credentials,
        devices=device_repository,
        recovery_codes=recovery_repository,
        sessions=session_store,
        audit_store=audit_store,
        delivery=delivery,
        ceremony=ceremony,
        directory=directory,
        clock=clock,
        lock_strategy=lock_strategy,
        config=config,
    )


@pytest.fixture
def device_info() -> DeviceInfo:
    return DeviceInfo(
        fingerprint="abc123",
        device_name="Firefox on Linux",
        user_agent="Mozilla/5.0 (X11; Linux x86_64) Firefox/120.0",
        ip_address="10.0.0.4",
    )
