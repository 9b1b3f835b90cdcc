from .clock import FrozenClock, SystemClock
from .directory import InMemoryUserDirectory
from .repositories import (
    InMemoryHardwareCredentialRepository,
    InMemoryProfileRepository,
    InMemoryRecoveryCodeRepository,
    InMemorySessionStore,
    InMemoryTrustedDeviceRepository,
)

__all__ = [
    "FrozenClock",
    "SystemClock",
    "InMemoryUserDirectory",
    "InMemoryHardwareCredentialRepository",
    "InMemoryProfileRepository",
    "InMemoryRecoveryCodeRepository",
    "InMemorySessionStore",
    "InMemoryTrustedDeviceRepository",
]
