"""
Time sources for the promotion engine.

Everything that needs "now" or "today" asks a Clock instead of calling
datetime directly, so scans and sweeps can be replayed against a fixed date
in tests and in the CLI.

Domain datetimes are naive and expressed in the configured timezone.
"""

from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


class Clock:
    """Interface for wall-clock access."""

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock in a given timezone, returned as naive local time."""

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = ZoneInfo(timezone) if timezone else None

    def now(self) -> datetime:
        if self.timezone is None:
            return datetime.now()
        return datetime.now(self.timezone).replace(tzinfo=None)


class FixedClock(Clock):
    """
    Clock frozen at a given instant.

    Used by tests and by `cli.py job --at`. advance() moves it forward,
    which is how the tests simulate consecutive daily runs.
    """

    def __init__(self, at: datetime):
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, at: datetime) -> None:
        self._now = at
