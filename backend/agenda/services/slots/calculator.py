# backend/agenda/services/slots/calculator.py
"""
Per-day slot calculation.

Produces per-slot data:
  (time_str "HH:MM", start_ts float)

start_ts is the absolute start instant of the candidate. Redis filters
with ZRANGEBYSCORE (threshold_ts +inf, so candidates that are too close
to "now" drop out without recomputation.

Contains:
✓ effective day template (exception, else the weekly record in force)
✓ grid discretization at the provider's slot interval
✓ blocked periods
✓ starts skipped by a forward clock change

Does NOT contain:
✗ Bookings (checked per request, never cached)
✗ Minimum notice / horizon (applied at read time)

The predicates below are the only place where overlap with blocked
periods and bookings is decided; listing and single-slot checks both
go through them.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from .blocked import BlockedPeriod, blocked_period_applies, blocked_period_overlaps
from .config import BookingConfig, minutes_to_time_str
from .schedule import DayTemplate
from .timeslot import TimeRange, day_of_week, instants_overlap, to_instant, to_local, wall_clock_exists


@dataclass(frozen=True)
class BookedInterval:
    """An active booking as seen by slot computation."""
    booking_id: int
    start: datetime
    end: datetime
    buffer_time: int = 0

    @property
    def occupied_until(self) -> datetime:
        # Buffer only trails the booking; nothing is reserved before it
        return self.end + timedelta(minutes=self.buffer_time)


# ── Day template ─────────────────────────────────────────────────────────


def weekly_record_on(target_date: date, records: Iterable[DayTemplate]) -> Optional[DayTemplate]:
    """Last record in force on the date; records come current first, then by effective_from."""
    current = None
    for record in records:
        if record.effective_from is None or record.effective_from <= target_date:
            current = record
    return current


def effective_template(
    target_date: date,
    weekly: dict[int, list[DayTemplate]],
    exceptions: dict[date, DayTemplate],
) -> Optional[DayTemplate]:
    """Exception for the date if any, otherwise the weekly record in force that day."""
    exception = exceptions.get(target_date)
    if exception is not None:
        return exception
    return weekly_record_on(target_date, weekly.get(day_of_week(target_date), ()))


def open_ranges(template: Optional[DayTemplate]) -> tuple[TimeRange, ...]:
    if template is None or not template.is_open:
        return ()
    return template.slots


def fits_template(template: Optional[DayTemplate], candidate: TimeRange) -> bool:
    return any(r.contains(candidate) for r in open_ranges(template))


# ── Predicates ───────────────────────────────────────────────────────────


def is_blocked(
    candidate: TimeRange,
    target_date: date,
    periods: Iterable[BlockedPeriod],
    member_id: Optional[int],
    location_id: int,
) -> bool:
    return any(
        blocked_period_applies(period, target_date, member_id, location_id)
        and blocked_period_overlaps(period, candidate)
        for period in periods
    )


def is_booked(start: datetime, end: datetime, bookings: Iterable[BookedInterval]) -> bool:
    """Candidate [start, end) against every [b.start, b.end + b.buffer)."""
    return any(instants_overlap(start, end, b.start, b.occupied_until) for b in bookings)


def earliest_start(now: datetime, config: BookingConfig) -> datetime:
    """Candidates must start strictly after this instant."""
    return now + timedelta(hours=config.min_advance_hours)


def last_bookable_date(now: datetime, config: BookingConfig) -> date:
    today, _ = to_local(now, config.tz)
    return today + timedelta(days=config.horizon_days)


def is_bookable_time(start: datetime, now: datetime, config: BookingConfig) -> bool:
    """Strictly in the future (plus notice) and inside the booking horizon."""
    if start <= earliest_start(now, config):
        return False
    local_date, _ = to_local(start, config.tz)
    return local_date <= last_bookable_date(now, config)


# ── Candidates ───────────────────────────────────────────────────────────


def day_candidates(template: Optional[DayTemplate], duration: int, step: int) -> list[TimeRange]:
    """Grid starts of every open range such that start + duration <= range end."""
    candidates = []
    for time_range in open_ranges(template):
        t = time_range.start
        while t + duration <= time_range.end:
            candidates.append(TimeRange(t, t + duration))
            t += step
    return candidates


def calculate_day_slots(
    target_date: date,
    template: Optional[DayTemplate],
    periods: Iterable[BlockedPeriod],
    member_id: Optional[int],
    location_id: int,
    duration: int,
    config: BookingConfig,
) -> list[tuple[str, float]]:
    """
    Candidates of one agenda day, blocked periods removed.

    Starts that do not exist on the local clock (spring forward) are dropped,
    so start_ts is strictly increasing.

    Returns:
        List of (time_str, start_ts) pairs, ascending. Empty list = no slots.
    """
    periods = list(periods)
    slots: list[tuple[str, float]] = []
    for candidate in day_candidates(template, duration, config.slot_step_minutes):
        if is_blocked(candidate, target_date, periods, member_id, location_id):
            continue
        if not wall_clock_exists(target_date, candidate.start, config.tz):
            continue
        start = to_instant(target_date, candidate.start, config.tz)
        slots.append((minutes_to_time_str(candidate.start), start.timestamp()))
    return slots
