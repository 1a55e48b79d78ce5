"""Clock abstraction shared by request handlers and background passes."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from .config import settings


class Clock:
    """
    Wall clock for the venue.

    `now()` returns naive UTC timestamps, matching how hold expiries are
    stored. `today()` is the calendar date in the venue's timezone, which is
    what maintenance windows, reservations and bookings are expressed in.
    """

    def __init__(self, timezone_name: str | None = None):
        self.tz = ZoneInfo(timezone_name or settings.venue_timezone)

    def now(self) -> datetime:
        """Current naive UTC time."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        """Current calendar date at the venue."""
        return self.to_local(self.now()).date()

    def to_local(self, moment: datetime) -> datetime:
        """Convert a naive UTC timestamp to aware venue-local time."""
        return moment.replace(tzinfo=timezone.utc).astimezone(self.tz)

    def to_utc(self, moment: datetime) -> datetime:
        """Convert a timestamp to naive UTC; naive input is venue-local."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self.tz)
        return moment.astimezone(timezone.utc).replace(tzinfo=None)


class FrozenClock(Clock):
    """Clock that only moves when told to. Used by tests and manual runs."""

    def __init__(self, now: datetime, timezone_name: str | None = None):
        super().__init__(timezone_name)
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta given as keyword arguments."""
        self._now = self._now + timedelta(**kwargs)
        return self._now


# Global clock instance
system_clock = Clock()
