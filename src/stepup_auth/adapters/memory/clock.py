"""Clock implementations."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ...ports import IClock


class SystemClock(IClock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(IClock):
    """Manually advanced clock for tests.

    Example:
        ```python
        clock = FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=31)
        ```
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now


__all__: list[str] = ["SystemClock", "FrozenClock"]
