"""
Clock abstraction supplying "now" to validation and timestamps.

Services take a Clock so tests can pin the current time.
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from carenow.lib.settings import settings


class Clock:
    """Wall clock in the configured booking timezone."""

    def __init__(self, tz_name: str = settings.timezone):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def utcnow(self) -> datetime:
        return self.now().astimezone(timezone.utc)


SystemClock = Clock


class FrozenClock(Clock):
    """Clock that always returns the same instant until advanced."""

    def __init__(self, frozen_at: datetime, tz_name: str = settings.timezone):
        super().__init__(tz_name)
        if frozen_at.tzinfo is None:
            frozen_at = frozen_at.replace(tzinfo=self.tz)
        self._now = frozen_at

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta
