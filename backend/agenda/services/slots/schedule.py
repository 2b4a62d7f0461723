# backend/agenda/services/slots/schedule.py
"""
Availability store (weekly template) and exception store (per-date overrides).

A weekly schedule is 7 records, one per day of week, keyed by
(provider, member, location, day_of_week); member None is the
location-level agenda. Missing days read as closed.

A weekly record may carry an effective_from date: a scheduled change.
On a given date the latest record whose effective_from is on or before
that date applies; the record without one applies before any of them.
Due changes are folded into the current record by
apply_due_scheduled_changes.

Exceptions have the same shape, keyed by a concrete date, and replace
the weekly record of that date for slot computation.

Slot ranges are validated on write (end > start, no overlap) and stored
sorted, so readers never need to re-check them.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...database import commit_or_raise, transaction
from ...errors import ValidationError
from ...models.generated import (
    Availability as DBAvailability,
    AvailabilityExceptions as DBExceptions,
)
from ...schemas.availability import (
    AvailabilitySet,
    DayScheduleIn,
    ExceptionSet,
    ScheduledAvailabilitySet,
    TimeSlotIn,
)
from ..catalog import get_agenda_owner
from .timeslot import TimeRange, format_instant, utcnow

logger = logging.getLogger(__name__)

DAYS_IN_WEEK = 7


@dataclass(frozen=True)
class DayTemplate:
    """Open hours of one agenda day, either weekly or a dated exception."""
    location_id: int
    is_open: bool
    slots: tuple[TimeRange, ...]
    member_id: Optional[int] = None
    day_of_week: Optional[int] = None
    effective_from: Optional[date] = None
    date: Optional[date] = None
    id: Optional[int] = None
    reason: Optional[str] = None


# ── Validation ───────────────────────────────────────────────────────────


def validate_day_slots(slots: Iterable[TimeSlotIn]) -> list[TimeRange]:
    """Parse, check and sort the ranges of one day."""
    ranges = []
    for slot in slots:
        try:
            time_range = TimeRange.parse(slot.start, slot.end)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        if time_range.end <= time_range.start:
            raise ValidationError(f"Invalid slot: {slot.start} must be before {slot.end}")
        ranges.append(time_range)

    ranges.sort()
    for previous, current in zip(ranges, ranges[1:]):
        if previous.overlaps(current):
            raise ValidationError("Slots cannot overlap")
    return ranges


def dump_slots(ranges: Iterable[TimeRange]) -> str:
    return json.dumps([r.to_dict() for r in ranges])


def load_slots(raw: str | None) -> tuple[TimeRange, ...]:
    return tuple(TimeRange.parse(s["start"], s["end"]) for s in json.loads(raw or "[]"))


def _member_filter(column, member_id: Optional[int]):
    return column.is_(None) if member_id is None else column == member_id


def _effective_filter(column, effective_from: Optional[date]):
    return column.is_(None) if effective_from is None else column == effective_from.isoformat()


def _to_template(row) -> DayTemplate:
    is_exception = isinstance(row, DBExceptions)
    effective_from = None if is_exception else row.effective_from
    return DayTemplate(
        id=row.id,
        member_id=row.member_id,
        location_id=row.location_id,
        is_open=bool(row.is_open),
        slots=load_slots(row.slots),
        day_of_week=None if is_exception else row.day_of_week,
        effective_from=date.fromisoformat(effective_from) if effective_from else None,
        date=date.fromisoformat(row.date) if is_exception else None,
        reason=row.reason if is_exception else None,
    )


# ── Weekly availability ──────────────────────────────────────────────────


def _upsert_day(
    db: Session,
    provider_id: int,
    member_id: Optional[int],
    location_id: int,
    day_of_week: int,
    ranges: list[TimeRange],
    is_open: bool,
    effective_from: Optional[date] = None,
) -> DBAvailability:
    row = (
        db.query(DBAvailability)
        .filter(
            DBAvailability.provider_id == provider_id,
            _member_filter(DBAvailability.member_id, member_id),
            DBAvailability.location_id == location_id,
            DBAvailability.day_of_week == day_of_week,
            _effective_filter(DBAvailability.effective_from, effective_from),
        )
        .first()
    )
    if row is None:
        row = DBAvailability(
            provider_id=provider_id,
            member_id=member_id,
            location_id=location_id,
            day_of_week=day_of_week,
            effective_from=effective_from.isoformat() if effective_from else None,
        )
        db.add(row)
    row.is_open = int(is_open)
    row.slots = dump_slots(ranges)
    row.updated_at = format_instant(utcnow())
    return row


def set_availability(db: Session, provider_id: int, data: AvailabilitySet) -> DayTemplate:
    """Create or replace a single day of the weekly template."""
    ranges = validate_day_slots(data.slots)
    get_agenda_owner(db, provider_id, data.location_id, data.member_id)

    row = _upsert_day(
        db, provider_id, data.member_id, data.location_id,
        data.day_of_week, ranges, data.is_open,
    )
    commit_or_raise(db)
    db.refresh(row)

    logger.info(
        f"Availability set: provider={provider_id} member={data.member_id} "
        f"location={data.location_id} day={data.day_of_week} open={data.is_open}"
    )
    return _to_template(row)


def set_weekly_schedule(
    db: Session,
    provider_id: int,
    member_id: Optional[int],
    location_id: int,
    schedule: list[DayScheduleIn],
) -> list[DayTemplate]:
    """Replace all 7 days in one transaction."""
    if len(schedule) != DAYS_IN_WEEK:
        raise ValidationError(f"A weekly schedule needs {DAYS_IN_WEEK} days, got {len(schedule)}")
    if {day.day_of_week for day in schedule} != set(range(DAYS_IN_WEEK)):
        raise ValidationError("A weekly schedule needs each day of week exactly once")

    validated = [(day, validate_day_slots(day.slots)) for day in schedule]
    get_agenda_owner(db, provider_id, location_id, member_id)

    with transaction(db):
        rows = [
            _upsert_day(
                db, provider_id, member_id, location_id,
                day.day_of_week, ranges, day.is_open,
            )
            for day, ranges in validated
        ]

    logger.info(
        f"Weekly schedule set: provider={provider_id} member={member_id} location={location_id}"
    )
    return sorted((_to_template(row) for row in rows), key=lambda t: t.day_of_week)


def get_weekly_schedule(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int] = None,
) -> list[DayTemplate]:
    """
    The current template: up to 7 days sorted by day of week; absent days
    are closed. Scheduled changes are not included.
    """
    rows = (
        db.query(DBAvailability)
        .filter(
            DBAvailability.provider_id == provider_id,
            DBAvailability.location_id == location_id,
            _member_filter(DBAvailability.member_id, member_id),
            DBAvailability.effective_from.is_(None),
        )
        .order_by(DBAvailability.day_of_week)
        .all()
    )
    return [_to_template(row) for row in rows]


def get_weekly_timeline(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int] = None,
) -> dict[int, list[DayTemplate]]:
    """
    Every weekly record of an agenda by day of week.

    Per day the current record (if any) comes first, then scheduled
    changes by effective date, so the last record in force on a date wins.
    """
    rows = (
        db.query(DBAvailability)
        .filter(
            DBAvailability.provider_id == provider_id,
            DBAvailability.location_id == location_id,
            _member_filter(DBAvailability.member_id, member_id),
        )
        .all()
    )
    timeline: dict[int, list[DayTemplate]] = {}
    for template in sorted(
        (_to_template(row) for row in rows),
        key=lambda t: (t.effective_from is not None, t.effective_from or date.min),
    ):
        timeline.setdefault(template.day_of_week, []).append(template)
    return timeline


# ── Scheduled changes ────────────────────────────────────────────────────


def set_scheduled_availability(
    db: Session,
    provider_id: int,
    data: ScheduledAvailabilitySet,
    today: date,
) -> DayTemplate:
    """
    Create or replace the change of one weekday taking effect on a future date.

    `today` is the provider's local date; changes effective today or
    earlier go through set_availability instead.
    """
    if data.effective_from <= today:
        raise ValidationError("effective_from must be after today")
    ranges = validate_day_slots(data.slots)
    get_agenda_owner(db, provider_id, data.location_id, data.member_id)

    row = _upsert_day(
        db, provider_id, data.member_id, data.location_id,
        data.day_of_week, ranges, data.is_open, effective_from=data.effective_from,
    )
    commit_or_raise(db)
    db.refresh(row)

    logger.info(
        f"Availability change scheduled: provider={provider_id} member={data.member_id} "
        f"location={data.location_id} day={data.day_of_week} from={data.effective_from}"
    )
    return _to_template(row)


def _pending_query(db: Session, provider_id: int, today: date):
    return (
        db.query(DBAvailability)
        .filter(
            DBAvailability.provider_id == provider_id,
            DBAvailability.effective_from > today.isoformat(),
        )
        .order_by(DBAvailability.effective_from, DBAvailability.day_of_week, DBAvailability.id)
    )


def get_scheduled_changes(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int],
    today: date,
) -> list[DayTemplate]:
    """Pending changes of one agenda (effective after `today`)."""
    rows = _pending_query(db, provider_id, today).filter(
        DBAvailability.location_id == location_id,
        _member_filter(DBAvailability.member_id, member_id),
    )
    return [_to_template(row) for row in rows]


def get_all_scheduled_changes(db: Session, provider_id: int, today: date) -> list[DayTemplate]:
    return [_to_template(row) for row in _pending_query(db, provider_id, today)]


def delete_scheduled_change(db: Session, provider_id: int, change_id: int) -> None:
    """Idempotent; current (non-scheduled) records are never deleted here."""
    row = db.get(DBAvailability, change_id)
    if row is None or row.provider_id != provider_id or row.effective_from is None:
        return
    db.delete(row)
    commit_or_raise(db)
    logger.info(f"Scheduled availability change {change_id} deleted (provider={provider_id})")


def apply_due_scheduled_changes(db: Session, provider_id: int, today: date) -> int:
    """
    Fold changes effective on or before `today` into the current template.

    Slot computation already honours due changes; this only compacts the
    records. Returns the number of changes applied.
    """
    due = (
        db.query(DBAvailability)
        .filter(
            DBAvailability.provider_id == provider_id,
            DBAvailability.effective_from.is_not(None),
            DBAvailability.effective_from <= today.isoformat(),
        )
        .order_by(DBAvailability.effective_from, DBAvailability.id)
        .all()
    )
    if not due:
        return 0

    with transaction(db):
        # Oldest first, so the latest due change of a weekday wins
        for row in due:
            _upsert_day(
                db, provider_id, row.member_id, row.location_id,
                row.day_of_week, list(load_slots(row.slots)), bool(row.is_open),
            )
            db.delete(row)
            db.flush()

    logger.info(f"Applied {len(due)} scheduled availability changes (provider={provider_id})")
    return len(due)


# ── Exceptions ───────────────────────────────────────────────────────────


def set_exception(db: Session, provider_id: int, data: ExceptionSet) -> DayTemplate:
    """Create or replace the override of one concrete date."""
    ranges = validate_day_slots(data.slots)
    get_agenda_owner(db, provider_id, data.location_id, data.member_id)

    date_str = data.date.isoformat()
    row = (
        db.query(DBExceptions)
        .filter(
            DBExceptions.provider_id == provider_id,
            _member_filter(DBExceptions.member_id, data.member_id),
            DBExceptions.location_id == data.location_id,
            DBExceptions.date == date_str,
        )
        .first()
    )
    if row is None:
        row = DBExceptions(
            provider_id=provider_id,
            member_id=data.member_id,
            location_id=data.location_id,
            date=date_str,
        )
        db.add(row)
    row.is_open = int(data.is_open)
    row.slots = dump_slots(ranges)
    row.reason = data.reason
    row.updated_at = format_instant(utcnow())
    commit_or_raise(db)
    db.refresh(row)

    logger.info(
        f"Exception set: provider={provider_id} member={data.member_id} "
        f"location={data.location_id} date={date_str} open={data.is_open}"
    )
    return _to_template(row)


def delete_exception(db: Session, provider_id: int, exception_id: int) -> None:
    """Idempotent: deleting a missing exception is not an error."""
    row = db.get(DBExceptions, exception_id)
    if row is None or row.provider_id != provider_id:
        return
    db.delete(row)
    commit_or_raise(db)
    logger.info(f"Exception {exception_id} deleted (provider={provider_id})")


def get_exceptions(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int],
    start_date: date,
    end_date: date,
) -> list[DayTemplate]:
    """Exceptions of one agenda whose date falls in [start_date, end_date]."""
    rows = (
        db.query(DBExceptions)
        .filter(
            DBExceptions.provider_id == provider_id,
            DBExceptions.location_id == location_id,
            _member_filter(DBExceptions.member_id, member_id),
            DBExceptions.date >= start_date.isoformat(),
            DBExceptions.date <= end_date.isoformat(),
        )
        .order_by(DBExceptions.date)
        .all()
    )
    return [_to_template(row) for row in rows]
