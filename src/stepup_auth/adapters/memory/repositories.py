"""Dict-backed repositories for unit tests and single-process deployments.

Entities are copied on the way in and out so callers cannot change stored
state without ``save``. Saves are version-checked: the caller's copy must
carry the stored version, otherwise ``OptimisticLockingError`` is raised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Generic, TypeVar

from ...domain.hardware_key import HardwareCredential
from ...domain.profile import TwoFactorProfile
from ...domain.recovery_codes import RecoveryCodeSet
from ...domain.session import VerificationSession
from ...domain.trusted_device import TrustedDevice
from ...exceptions import OptimisticLockingError
from ...ports import (
    IHardwareCredentialRepository,
    IProfileRepository,
    IRecoveryCodeRepository,
    ISessionStore,
    ITrustedDeviceRepository,
)

if TYPE_CHECKING:
    from datetime import datetime

    from ...domain.methods import TwoFactorMethod

T = TypeVar(
    "T",
    TwoFactorProfile,
    HardwareCredential,
    TrustedDevice,
    RecoveryCodeSet,
    VerificationSession,
)


class _VersionedStore(Generic[T]):
    """Shared storage with optimistic version checks."""

    def __init__(self) -> None:
        self._store: dict[str, T] = {}

    def _get(self, entity_id: str) -> T | None:
        entity = self._store.get(entity_id)
        return entity.copy_with_version() if entity is not None else None

    def _save(self, entity: T) -> None:
        stored = self._store.get(entity.id)
        stored_version = stored.version if stored is not None else 0
        if stored_version != entity.version:
            raise OptimisticLockingError(
                f"{type(entity).__name__} {entity.id!r}: expected version "
                f"{stored_version}, got {entity.version}"
            )
        entity.bump_version()
        self._store[entity.id] = entity.copy_with_version()

    def _values(self) -> list[T]:
        return [entity.copy_with_version() for entity in self._store.values()]

    # ── Test helpers ─────────────────────────────────────────────

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class InMemoryProfileRepository(_VersionedStore[TwoFactorProfile], IProfileRepository):
    async def get(self, user_id: str) -> TwoFactorProfile | None:
        return self._get(user_id)

    async def save(self, profile: TwoFactorProfile) -> None:
        self._save(profile)


class InMemoryHardwareCredentialRepository(
    _VersionedStore[HardwareCredential], IHardwareCredentialRepository
):
    async def get(self, credential_id: str) -> HardwareCredential | None:
        return self._get(credential_id)

    async def list_for_user(self, user_id: str) -> list[HardwareCredential]:
        return sorted(
            (c for c in self._values() if c.user_id == user_id),
            key=lambda c: c.created_at,
        )

    async def save(self, credential: HardwareCredential) -> None:
        self._save(credential)

    async def compare_and_set_sign_count(
        self,
        credential_id: str,
        expected: int,
        new: int,
        used_at: datetime,
    ) -> bool:
        # No await between the check and the write, so this is atomic on the loop.
        stored = self._store.get(credential_id)
        if stored is None or not stored.is_active or stored.sign_count != expected:
            return False
        updated = stored.copy_with_version()
        updated.sign_count = new
        updated.last_used_at = used_at
        updated.bump_version()
        self._store[credential_id] = updated
        return True


class InMemoryTrustedDeviceRepository(
    _VersionedStore[TrustedDevice], ITrustedDeviceRepository
):
    async def get(self, device_id: str) -> TrustedDevice | None:
        return self._get(device_id)

    async def find_active(self, user_id: str, fingerprint: str) -> TrustedDevice | None:
        matches = [
            d
            for d in self._store.values()
            if d.user_id == user_id and d.fingerprint == fingerprint and d.is_active
        ]
        if not matches:
            return None
        newest = max(matches, key=lambda d: d.created_at)
        return newest.copy_with_version()

    async def list_for_user(self, user_id: str) -> list[TrustedDevice]:
        return sorted(
            (d for d in self._values() if d.user_id == user_id),
            key=lambda d: d.created_at,
        )

    async def save(self, device: TrustedDevice) -> None:
        self._save(device)


class InMemoryRecoveryCodeRepository(
    _VersionedStore[RecoveryCodeSet], IRecoveryCodeRepository
):
    async def get(self, user_id: str) -> RecoveryCodeSet | None:
        return self._get(user_id)

    async def save(self, code_set: RecoveryCodeSet) -> None:
        self._save(code_set)

    async def replace(self, code_set: RecoveryCodeSet) -> None:
        stored = self._store.get(code_set.id)
        clone = code_set.copy_with_version()
        clone._version = (stored.version if stored is not None else 0) + 1
        self._store[code_set.id] = clone
        code_set._version = clone.version

    async def delete(self, user_id: str) -> None:
        self._store.pop(user_id, None)


class InMemorySessionStore(_VersionedStore[VerificationSession], ISessionStore):
    def __init__(self) -> None:
        super().__init__()
        self._pending: dict[tuple[str, TwoFactorMethod], str] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> VerificationSession | None:
        return self._get(session_id)

    async def get_pending(
        self, user_id: str, method: TwoFactorMethod
    ) -> VerificationSession | None:
        session_id = self._pending.get((user_id, method))
        return self._get(session_id) if session_id is not None else None

    async def save(self, session: VerificationSession) -> None:
        async with self._lock:
            self._save(session)
            key = (session.user_id, session.method)
            if session.is_pending:
                self._pending[key] = session.id
            elif self._pending.get(key) == session.id:
                del self._pending[key]

    async def replace_pending(
        self, session: VerificationSession, now: datetime
    ) -> VerificationSession | None:
        async with self._lock:
            key = (session.user_id, session.method)
            superseded: VerificationSession | None = None
            previous_id = self._pending.pop(key, None)
            if previous_id is not None:
                previous = self._get(previous_id)
                if previous is not None and previous.is_pending:
                    previous.supersede(now)
                    self._save(previous)
                    superseded = previous
            self._save(session)
            if session.is_pending:
                self._pending[key] = session.id
            return superseded


__all__: list[str] = [
    "InMemoryProfileRepository",
    "InMemoryHardwareCredentialRepository",
    "InMemoryTrustedDeviceRepository",
    "InMemoryRecoveryCodeRepository",
    "InMemorySessionStore",
]
