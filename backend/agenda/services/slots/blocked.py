# backend/agenda/services/slots/blocked.py
"""
Blocked-period store.

A blocked period closes an agenda over [start_date, end_date] (inclusive),
all day or between a daily start_time/end_time, optionally only on some
weekdays. member_id / location_id None means "every member" / "every
location".

The two predicates at the bottom are shared by slot listing and single
slot checks.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...database import commit_or_raise
from ...errors import ValidationError
from ...models.generated import BlockedPeriods as DBBlockedPeriods
from ...schemas.availability import BlockedPeriodCreate
from ..catalog import get_location, get_member
from .config import time_str_to_minutes
from .timeslot import TimeRange, day_of_week

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockedPeriod:
    id: int
    provider_id: int
    start_date: date
    end_date: date
    all_day: bool
    is_recurring: bool
    member_id: Optional[int] = None
    location_id: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    recurring_days: Optional[tuple[int, ...]] = None
    reason: Optional[str] = None

    @property
    def time_range(self) -> Optional[TimeRange]:
        """Daily closed range, None for an all-day period."""
        if self.all_day:
            return None
        return TimeRange.parse(self.start_time, self.end_time)


def _to_blocked(row: DBBlockedPeriods) -> BlockedPeriod:
    recurring_days = json.loads(row.recurring_days) if row.recurring_days else None
    return BlockedPeriod(
        id=row.id,
        provider_id=row.provider_id,
        member_id=row.member_id,
        location_id=row.location_id,
        start_date=date.fromisoformat(row.start_date),
        end_date=date.fromisoformat(row.end_date),
        all_day=bool(row.all_day),
        start_time=row.start_time,
        end_time=row.end_time,
        is_recurring=bool(row.is_recurring),
        recurring_days=tuple(recurring_days) if recurring_days is not None else None,
        reason=row.reason,
    )


def _validate(data: BlockedPeriodCreate) -> None:
    if data.end_date < data.start_date:
        raise ValidationError("end_date must be on or after start_date")

    if not data.all_day:
        if not data.start_time or not data.end_time:
            raise ValidationError("start_time and end_time are required unless all_day")
        if time_str_to_minutes(data.end_time) <= time_str_to_minutes(data.start_time):
            raise ValidationError("end_time must be after start_time")

    if data.is_recurring:
        if not data.recurring_days:
            raise ValidationError("recurring_days are required for a recurring period")
        if any(day < 0 or day > 6 for day in data.recurring_days):
            raise ValidationError("recurring_days must be between 0 (Sunday) and 6 (Saturday)")


# ── Store ────────────────────────────────────────────────────────────────


def block_period(db: Session, provider_id: int, data: BlockedPeriodCreate) -> int:
    """Validate and persist a blocked period. Returns its id."""
    _validate(data)
    if data.location_id is not None:
        get_location(db, provider_id, data.location_id)
    if data.member_id is not None:
        get_member(db, provider_id, data.member_id)

    row = DBBlockedPeriods(
        provider_id=provider_id,
        member_id=data.member_id,
        location_id=data.location_id,
        start_date=data.start_date.isoformat(),
        end_date=data.end_date.isoformat(),
        all_day=int(data.all_day),
        start_time=None if data.all_day else data.start_time,
        end_time=None if data.all_day else data.end_time,
        is_recurring=int(data.is_recurring),
        recurring_days=json.dumps(sorted(set(data.recurring_days))) if data.is_recurring else None,
        reason=data.reason,
    )
    db.add(row)
    commit_or_raise(db)
    db.refresh(row)

    logger.info(
        f"Blocked period {row.id} created: provider={provider_id} "
        f"{row.start_date}..{row.end_date} member={row.member_id} location={row.location_id}"
    )
    return row.id


def unblock_period(db: Session, provider_id: int, blocked_id: int) -> None:
    """Idempotent delete: a missing id is not an error, so retries are safe."""
    row = db.get(DBBlockedPeriods, blocked_id)
    if row is None or row.provider_id != provider_id:
        return
    db.delete(row)
    commit_or_raise(db)
    logger.info(f"Blocked period {blocked_id} removed (provider={provider_id})")


def get_blocked_slots(db: Session, provider_id: int) -> list[BlockedPeriod]:
    rows = (
        db.query(DBBlockedPeriods)
        .filter(DBBlockedPeriods.provider_id == provider_id)
        .order_by(DBBlockedPeriods.start_date, DBBlockedPeriods.id)
        .all()
    )
    return [_to_blocked(row) for row in rows]


def get_blocked_period(db: Session, provider_id: int, blocked_id: int) -> Optional[BlockedPeriod]:
    row = db.get(DBBlockedPeriods, blocked_id)
    if row is None or row.provider_id != provider_id:
        return None
    return _to_blocked(row)


# ── Predicates ───────────────────────────────────────────────────────────


def blocked_period_applies(
    period: BlockedPeriod,
    target_date: date,
    member_id: Optional[int],
    location_id: int,
) -> bool:
    """Does the period close this agenda on target_date? None scopes match everything."""
    if not (period.start_date <= target_date <= period.end_date):
        return False
    if period.location_id is not None and period.location_id != location_id:
        return False
    if period.member_id is not None and period.member_id != member_id:
        return False
    if period.is_recurring and day_of_week(target_date) not in (period.recurring_days or ()):
        return False
    return True


def blocked_period_overlaps(period: BlockedPeriod, candidate: TimeRange) -> bool:
    time_range = period.time_range
    if time_range is None:
        return True
    return time_range.overlaps(candidate)
