"""Injectable time sources for the job state machine."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Supplies the current time as a timezone-aware datetime."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        >>> clock.advance(seconds=30)
        >>> clock.now().second
        30
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0) -> None:
        self._now = self._now + timedelta(seconds=seconds)
