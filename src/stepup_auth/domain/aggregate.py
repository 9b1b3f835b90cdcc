"""Aggregate Root base class with Generic ID support."""

from __future__ import annotations

from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, PrivateAttr

ID = TypeVar("ID", str, int, UUID)


class AggregateRoot(BaseModel, Generic[ID]):
    """Base class for all Aggregate Roots.

    Generic over ``ID``. Carries a version number owned by the persistence
    layer: repositories compare it on save (optimistic concurrency) and bump
    it afterwards. Aggregates reference each other by ID only.

    Usage::

        class TrustedDevice(AggregateRoot[str]):
            fingerprint: str
            trust_level: int = 1

        device = TrustedDevice(id="dev-1", fingerprint="abc123")
    """

    model_config = ConfigDict(validate_assignment=True)

    id: ID
    _version: int = PrivateAttr(default=0)

    @property
    def version(self) -> int:
        """Read-only version, managed by the persistence layer."""
        return self._version

    def bump_version(self) -> None:
        """Advance the version after a successful save.

        Only repositories should call this.
        """
        self._version += 1

    def copy_with_version(self: _A) -> _A:
        """Deep copy that keeps the persistence version.

        In-memory repositories hand out copies so callers cannot mutate
        stored state without going through ``save``.
        """
        clone = self.model_copy(deep=True)
        clone._version = self._version
        return clone


_A = TypeVar("_A", bound=AggregateRoot)  # type: ignore[type-arg]


__all__: list[str] = ["ID", "AggregateRoot"]
