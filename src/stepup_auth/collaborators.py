"""Bounded calls into external collaborators."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from .exceptions import CollaboratorUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")

logger = logging.getLogger("stepup_auth.collaborators")


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, *, name: str) -> T:
    """Await ``awaitable``, cancelling it after ``timeout`` seconds.

    Raises:
        CollaboratorUnavailableError: The collaborator did not answer in time.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as err:
        logger.error("%s did not respond within %.1fs", name, timeout)
        raise CollaboratorUnavailableError(f"{name} timed out") from err


__all__: list[str] = ["call_with_timeout"]
