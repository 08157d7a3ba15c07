"""
Wall clock pinned to a fixed civil timezone.

Counter windows roll over on civil boundaries (IST by default), so every
boundary string is computed from the civil date, never from UTC.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional


@dataclass(frozen=True)
class WindowBoundary:
    day: str
    week: str
    month: str
    year: str

    @classmethod
    def for_date(cls, civil_date: date) -> "WindowBoundary":
        # weeks start on Sunday
        week_start = civil_date - timedelta(days=(civil_date.weekday() + 1) % 7)
        return cls(
            day=civil_date.isoformat(),
            week=week_start.isoformat(),
            month=civil_date.replace(day=1).isoformat(),
            year=civil_date.replace(month=1, day=1).isoformat(),
        )


class CivilClock:
    def __init__(self, offset_minutes: int = 330):
        self.tz = timezone(timedelta(minutes=offset_minutes))

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def utcnow(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def boundary(self, at: Optional[datetime] = None) -> WindowBoundary:
        moment = at.astimezone(self.tz) if at is not None else self.now()
        return WindowBoundary.for_date(moment.date())

    def year(self) -> int:
        return self.now().year


class FixedClock(CivilClock):
    """Clock frozen at a given instant; tests move it explicitly."""

    def __init__(self, current: datetime, offset_minutes: int = 330):
        super().__init__(offset_minutes)
        self.set(current)

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=self.tz)
        self._current = current.astimezone(self.tz)

    def advance(self, **delta) -> None:
        self._current = self._current + timedelta(**delta)

    def now(self) -> datetime:
        return self._current


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a timestamp read back from the store; naive values are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
