# backend/agenda/services/slots/timeslot.py
"""
Time slot model.

All slot arithmetic happens on local wall-clock minutes since midnight.
Absolute instants (aware UTC datetimes) only appear when candidates are
compared with bookings, which are stored in UTC.

Day of week follows the agenda convention: 0 = Sunday … 6 = Saturday.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Union
from zoneinfo import ZoneInfo

from ...errors import ValidationError
from .config import minutes_to_time_str, time_str_to_minutes

INSTANT_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True, order=True)
class TimeRange:
    """Half-open interval [start, end) in minutes since midnight."""
    start: int
    end: int

    @classmethod
    def parse(cls, start: str, end: str) -> "TimeRange":
        return cls(time_str_to_minutes(start), time_str_to_minutes(end))

    @property
    def duration(self) -> int:
        return self.end - self.start

    def contains(self, other: "TimeRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and other.start < self.end

    def intersection(self, other: "TimeRange") -> "TimeRange | None":
        if not self.overlaps(other):
            return None
        return TimeRange(max(self.start, other.start), min(self.end, other.end))

    def subtract(self, other: "TimeRange") -> list["TimeRange"]:
        """Remove `other` from this range: zero, one or two pieces remain."""
        if not self.overlaps(other):
            return [self]
        pieces = []
        if self.start < other.start:
            pieces.append(TimeRange(self.start, other.start))
        if other.end < self.end:
            pieces.append(TimeRange(other.end, self.end))
        return pieces

    def to_dict(self) -> dict:
        return {"start": minutes_to_time_str(self.start), "end": minutes_to_time_str(self.end)}


@dataclass(frozen=True)
class ForMember:
    """Per-member agenda."""
    member_id: int


@dataclass(frozen=True)
class ForLocationOnly:
    """Location-level agenda, aggregating every member of the location."""


Scope = Union[ForMember, ForLocationOnly]


def scope_for(member_id: int | None) -> Scope:
    return ForMember(member_id) if member_id is not None else ForLocationOnly()


def day_of_week(d: date) -> int:
    """0 = Sunday … 6 = Saturday (Python's weekday() starts on Monday)."""
    return (d.weekday() + 1) % 7


def daterange(start: date, end: date) -> Iterator[date]:
    """Inclusive date iteration; empty when start > end."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def to_instant(d: date, minutes: int, tz: ZoneInfo) -> datetime:
    """Local date + minutes since midnight -> aware UTC instant."""
    local = datetime.combine(d, time.min) + timedelta(minutes=minutes)
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def to_local(instant: datetime, tz: ZoneInfo) -> tuple[date, int]:
    """Aware instant -> (local date, minutes since local midnight)."""
    local = as_utc(instant).astimezone(tz)
    return local.date(), local.hour * 60 + local.minute


def wall_clock_exists(d: date, minutes: int, tz: ZoneInfo) -> bool:
    """False for local times skipped when the clocks go forward."""
    return to_local(to_instant(d, minutes, tz), tz) == (d, minutes)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize(value: datetime, tz: ZoneInfo) -> datetime:
    """Client input -> aware UTC; naive values are wall-clock time in `tz`."""
    if value.tzinfo is None:
        if not wall_clock_exists(value.date(), value.hour * 60 + value.minute, tz):
            raise ValidationError(f"{value:%Y-%m-%d %H:%M} does not exist in {tz.key} (clock change)")
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    """Aware datetime -> UTC storage string."""
    return as_utc(value).strftime(INSTANT_FORMAT)


def parse_instant(value: str) -> datetime:
    """UTC storage string -> aware UTC datetime."""
    return datetime.strptime(value, INSTANT_FORMAT).replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def instants_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return start1 < end2 and start2 < end1


def get_now() -> datetime:
    """FastAPI dependency for the current instant, overridden in tests."""
    return utcnow()
