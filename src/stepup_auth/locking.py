"""Keyed locking for single-writer-per-key sections.

Two places need serialisation: issuing a verification session (at most one
pending session per user and method) and the read-check-write of a hardware
credential's signature counter. Both use ``CriticalSection`` over an
``ILockStrategy``; the in-memory strategy covers single-process deployments
and tests, a distributed strategy (Redis, ``SELECT ... FOR UPDATE``) can be
dropped in for multi-worker setups.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from .exceptions import LockAcquisitionError

logger = logging.getLogger("stepup_auth.locking")


@dataclass(frozen=True)
class ResourceIdentifier:
    """
    Identifies a single lockable resource.

    Examples:
        >>> ResourceIdentifier("VerificationSession", "user-1:sms")
        >>> ResourceIdentifier("HardwareCredential", credential_id)
    """

    resource_type: str
    resource_id: str

    def __lt__(self, other: ResourceIdentifier) -> bool:
        # Sorted acquisition prevents deadlocks.
        return (self.resource_type, self.resource_id) < (
            other.resource_type,
            other.resource_id,
        )

    def __str__(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"


@runtime_checkable
class ILockStrategy(Protocol):
    """Lock strategy protocol for pessimistic concurrency control."""

    async def acquire(
        self, resource: ResourceIdentifier, *, timeout: float = 10.0
    ) -> str:
        """Acquire a lock and return an ownership token.

        Raises:
            LockAcquisitionError: If the lock is not obtained within ``timeout``.
        """
        ...

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        """Release a lock previously acquired with ``token``."""
        ...


@dataclass
class _LockState:
    lock: asyncio.Lock
    token: str | None = None
    waiters: int = 0


class InMemoryLockStrategy(ILockStrategy):
    """
    In-memory implementation of ILockStrategy.

    ``asyncio.Lock`` wakes waiters in FIFO order, so no waiter starves.
    Lock state is dropped once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], _LockState] = {}
        self._global_lock = asyncio.Lock()

    async def acquire(
        self, resource: ResourceIdentifier, *, timeout: float = 10.0
    ) -> str:
        key = (resource.resource_type, resource.resource_id)

        async with self._global_lock:
            state = self._locks.get(key)
            if state is None:
                state = _LockState(lock=asyncio.Lock())
                self._locks[key] = state
            state.waiters += 1

        try:
            await asyncio.wait_for(state.lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as err:
            await self._abandon(key, state)
            logger.warning("Lock acquisition timed out after %.1fs: %s", timeout, resource)
            raise LockAcquisitionError(resource, timeout) from err
        except asyncio.CancelledError:
            await self._abandon(key, state)
            logger.debug("Lock acquisition cancelled: %s", resource)
            raise

        token = str(uuid4())
        state.token = token
        logger.debug("Lock acquired: %s", resource)
        return token

    async def release(self, resource: ResourceIdentifier, token: str) -> None:
        key = (resource.resource_type, resource.resource_id)

        async with self._global_lock:
            state = self._locks.get(key)
            if state is None or state.token != token:
                logger.warning("Attempted to release invalid or expired lock: %s", key)
                return

            state.token = None
            state.waiters -= 1
            state.lock.release()
            self._cleanup(key, state)
            logger.debug("Lock released: %s", resource)

    async def _abandon(self, key: tuple[str, str], state: _LockState) -> None:
        async with self._global_lock:
            state.waiters -= 1
            self._cleanup(key, state)

    def _cleanup(self, key: tuple[str, str], state: _LockState) -> None:
        if state.waiters <= 0 and not state.lock.locked():
            self._locks.pop(key, None)

    def active_count(self) -> int:
        """Number of resources currently held or waited on."""
        return len(self._locks)


class CriticalSection:
    """
    Async context manager that acquires locks on multiple resources.

    Resources are deduplicated and sorted before acquisition; if any lock
    fails, the ones already held are released in reverse order.

    Usage:
        ```python
        resource = ResourceIdentifier("HardwareCredential", credential_id)

        async with CriticalSection([resource], lock_strategy):
            credential = await repo.get(credential_id)
            credential.record_assertion(new_counter, now)
            await repo.save(credential)
        ```
    """

    def __init__(
        self,
        resources: list[ResourceIdentifier],
        lock_strategy: ILockStrategy,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._resources = sorted(set(resources))
        self._lock_strategy = lock_strategy
        self._timeout = timeout
        self._acquired: list[tuple[ResourceIdentifier, str]] = []

    async def __aenter__(self) -> CriticalSection:
        start = time.monotonic()
        try:
            for resource in self._resources:
                token = await self._lock_strategy.acquire(
                    resource, timeout=self._timeout
                )
                self._acquired.append((resource, token))
        except Exception:
            await self._rollback()
            raise

        logger.debug(
            "Locks acquired",
            extra={
                "resource_count": len(self._resources),
                "duration_ms": (time.monotonic() - start) * 1000,
            },
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self._rollback()

    async def _rollback(self) -> None:
        for resource, token in reversed(self._acquired):
            try:
                await self._lock_strategy.release(resource, token)
            except Exception as exc:  # noqa: BLE001
                # Keep releasing the rest; a stuck lock is reported, not raised.
                logger.error(
                    "Failed to release lock during rollback: %s (resource=%s)",
                    exc,
                    resource,
                )
        self._acquired.clear()


__all__: list[str] = [
    "ResourceIdentifier",
    "ILockStrategy",
    "InMemoryLockStrategy",
    "CriticalSection",
]
