# backend/agenda/services/slots/availability.py
"""
Slot computation engine.

Lists bookable slots for a service on an agenda (member, or location
only) over a date range, and checks a single slot before a booking is
written.

Per date:
1. effective template (exception, else weekly record)
2. grid candidates with start + duration <= range end
3. minus blocked periods
   (1-3 cached in Redis Sorted Sets per provider/scope/date/duration/step)
4. minus active bookings, buffer counted after each booking only
5. minus starts not strictly after now + notice, or past the horizon

Listing and single-slot checks share the predicates of calculator.py.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ...errors import NotFoundError, ValidationError
from ...models.generated import Bookings as DBBookings, Members as DBMembers, Services as DBServices
from ...schemas.availability import DayScheduleIn, ScheduledAvailabilitySet
from ..catalog import (
    ACTIVE_STATUSES,
    check_service_offered,
    get_agenda_owner,
    get_provider,
    resolve_bookable,
)
from .blocked import BlockedPeriod, get_blocked_slots
from .calculator import (
    BookedInterval,
    calculate_day_slots,
    earliest_start,
    effective_template,
    fits_template,
    is_blocked,
    is_bookable_time,
    is_booked,
    last_bookable_date,
)
from .config import BookingConfig, get_booking_config, minutes_to_time_str, time_str_to_minutes
from .redis_store import SlotsRedisStore
from .schedule import (
    DayTemplate,
    get_exceptions,
    get_weekly_timeline,
    set_scheduled_availability,
    validate_day_slots,
)
from .timeslot import (
    ForLocationOnly,
    ForMember,
    Scope,
    TimeRange,
    as_utc,
    day_of_week,
    daterange,
    format_instant,
    localize,
    parse_instant,
    scope_for,
    to_instant,
    to_local,
    utcnow,
)

logger = logging.getLogger(__name__)

MIN_DURATION = 5
MAX_DURATION = 480

# Bookings ending this long before a window can still reach it with their buffer
BUFFER_LOOKBACK = timedelta(days=1)


@dataclass(frozen=True)
class AvailableSlot:
    date: date
    start: str
    end: str
    datetime: datetime
    end_datetime: datetime

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "start": self.start,
            "end": self.end,
            "datetime": format_instant(self.datetime),
            "end_datetime": format_instant(self.end_datetime),
        }


@dataclass(frozen=True)
class NextAvailableSlot:
    member_id: int
    location_id: int
    service_id: int
    slot: AvailableSlot


@dataclass(frozen=True)
class ScheduleConflict:
    booking_id: int
    booking_date: datetime
    service_name: str
    conflict_type: str  # "day_closed" | "reduced_hours"
    client_name: Optional[str] = None


# ── Bookings ─────────────────────────────────────────────────────────────


def load_active_bookings(
    db: Session,
    provider_id: int,
    location_id: int,
    scope: Scope,
    window_start: datetime,
    window_end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> list[BookedInterval]:
    """
    Active bookings whose occupied interval (buffer included) meets the window.

    A member agenda sees the member's bookings; a location agenda sees
    every booking of the location.
    """
    query = db.query(DBBookings).filter(
        DBBookings.provider_id == provider_id,
        DBBookings.status.in_(ACTIVE_STATUSES),
        DBBookings.date_start < format_instant(window_end),
        DBBookings.date_end > format_instant(window_start - BUFFER_LOOKBACK),
    )
    if isinstance(scope, ForMember):
        query = query.filter(DBBookings.member_id == scope.member_id)
    elif isinstance(scope, ForLocationOnly):
        query = query.filter(DBBookings.location_id == location_id)
    else:
        raise TypeError(f"Unknown agenda scope {scope!r}")
    if exclude_booking_id is not None:
        query = query.filter(DBBookings.id != exclude_booking_id)

    intervals = [
        BookedInterval(
            booking_id=row.id,
            start=parse_instant(row.date_start),
            end=parse_instant(row.date_end),
            buffer_time=row.buffer_time or 0,
        )
        for row in query.all()
    ]
    return [b for b in intervals if b.occupied_until > window_start]


# ── Agenda loading ───────────────────────────────────────────────────────


def _exception_templates(db, provider_id, location_id, member_id, start, end) -> dict[date, DayTemplate]:
    return {
        t.date: t
        for t in get_exceptions(db, provider_id, location_id, member_id, start, end)
    }


def _scope_periods(db, provider_id, location_id, member_id) -> list[BlockedPeriod]:
    return [
        p for p in get_blocked_slots(db, provider_id)
        if (p.location_id is None or p.location_id == location_id)
        and (p.member_id is None or p.member_id == member_id)
    ]


# ── Listing ──────────────────────────────────────────────────────────────


class AvailableSlots:
    """
    Bookable slots of one agenda over [start_date, end_date].

    Lazy: the stores are read when iteration starts and bookings one day
    at a time. Restartable: every iter() recomputes from scratch.
    """

    def __init__(
        self,
        db: Session,
        provider_id: int,
        location_id: int,
        member_id: Optional[int],
        duration: int,
        start_date: date,
        end_date: date,
        config: BookingConfig,
        now: datetime,
        redis: Redis | None = None,
    ):
        self.db = db
        self.provider_id = provider_id
        self.location_id = location_id
        self.member_id = member_id
        self.duration = duration
        self.start_date = start_date
        self.end_date = end_date
        self.config = config
        self.now = now
        self.redis = redis

    def __iter__(self) -> Iterator[AvailableSlot]:
        return self._generate()

    def _generate(self) -> Iterator[AvailableSlot]:
        today, _ = to_local(self.now, self.config.tz)
        first_date = max(self.start_date, today)
        last_date = min(self.end_date, last_bookable_date(self.now, self.config))
        if first_date > last_date:
            return

        threshold = earliest_start(self.now, self.config)
        weekly = get_weekly_timeline(self.db, self.provider_id, self.location_id, self.member_id)
        exceptions = _exception_templates(
            self.db, self.provider_id, self.location_id, self.member_id,
            first_date, last_date,
        )
        periods = _scope_periods(self.db, self.provider_id, self.location_id, self.member_id)
        tz = self.config.tz
        length = timedelta(minutes=self.duration)

        for d in daterange(first_date, last_date):
            template = effective_template(d, weekly, exceptions)
            starts = self._day_starts(d, template, periods, threshold)
            if not starts:
                continue

            bookings = load_active_bookings(
                self.db, self.provider_id, self.location_id, scope_for(self.member_id),
                to_instant(d, 0, tz), to_instant(d + timedelta(days=1), 0, tz),
            )
            for minutes in starts:
                start = to_instant(d, minutes, tz)
                end = start + length
                if start <= threshold or is_booked(start, end, bookings):
                    continue
                _, end_minutes = to_local(end, tz)
                yield AvailableSlot(
                    date=d,
                    start=minutes_to_time_str(minutes),
                    end=minutes_to_time_str(end_minutes),
                    datetime=start,
                    end_datetime=end,
                )

    def _day_starts(
        self,
        d: date,
        template: Optional[DayTemplate],
        periods: list[BlockedPeriod],
        threshold: datetime,
    ) -> list[int]:
        """Candidate starts (minutes) of steps 1-3, cached when Redis is available."""
        store = SlotsRedisStore(self.redis, self.config) if self.redis is not None else None
        if store is not None:
            try:
                cached = store.get_day_slots(
                    self.provider_id, self.location_id, self.member_id,
                    d, self.duration, threshold,
                )
            except RedisError as e:
                logger.warning(f"Slots cache read failed, computing: {e}")
                store, cached = None, None
            if cached is not None:
                return [time_str_to_minutes(t) for t in cached]

        slots = calculate_day_slots(
            d, template, periods, self.member_id, self.location_id,
            self.duration, self.config,
        )
        if store is not None:
            try:
                store.store_day_slots(
                    self.provider_id, self.location_id, self.member_id,
                    d, self.duration, slots,
                )
            except RedisError as e:
                logger.warning(f"Slots cache write failed: {e}")

        threshold_ts = threshold.timestamp()
        return [time_str_to_minutes(t) for t, start_ts in slots if start_ts > threshold_ts]


def get_available_slots(
    db: Session,
    provider_id: int,
    service_id: int,
    location_id: int,
    member_id: Optional[int],
    start_date: date,
    end_date: date,
    now: datetime | None = None,
    redis: Redis | None = None,
) -> AvailableSlots:
    """
    Bookable slots for a service. start_date > end_date yields nothing.

    Raises:
        NotFoundError: provider/service/location/member missing, inactive
            or not belonging together (raised here, before iteration).
    """
    provider, service, location, member = resolve_bookable(
        db, provider_id, service_id, location_id, member_id
    )
    config = get_booking_config().for_provider(provider)
    return AvailableSlots(
        db,
        provider_id=provider.id,
        location_id=location.id,
        member_id=member.id if member else None,
        duration=service.duration,
        start_date=start_date,
        end_date=end_date,
        config=config,
        now=as_utc(now or utcnow()),
        redis=redis,
    )


def get_slots_calendar(
    db: Session,
    provider_id: int,
    service_id: int,
    location_id: int,
    member_id: Optional[int],
    start_date: date,
    end_date: date,
    now: datetime | None = None,
    redis: Redis | None = None,
) -> list[tuple[date, int]]:
    """Number of bookable slots per date, zero days included."""
    slots = get_available_slots(
        db, provider_id, service_id, location_id, member_id,
        start_date, end_date, now=now, redis=redis,
    )
    counts = {d: 0 for d in daterange(start_date, end_date)}
    for slot in slots:
        counts[slot.date] += 1
    return list(counts.items())


# ── Single slot check ────────────────────────────────────────────────────


def check_slot(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int],
    start: datetime,
    duration: int,
    config: BookingConfig,
    now: datetime,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """Same predicates as the listing, for one aware candidate start."""
    if not is_bookable_time(start, now, config):
        return False

    local_date, minutes = to_local(start, config.tz)
    candidate = TimeRange(minutes, minutes + duration)

    weekly = get_weekly_timeline(db, provider_id, location_id, member_id)
    exceptions = _exception_templates(db, provider_id, location_id, member_id, local_date, local_date)
    if not fits_template(effective_template(local_date, weekly, exceptions), candidate):
        return False

    periods = _scope_periods(db, provider_id, location_id, member_id)
    if is_blocked(candidate, local_date, periods, member_id, location_id):
        return False

    end = start + timedelta(minutes=duration)
    bookings = load_active_bookings(
        db, provider_id, location_id, scope_for(member_id), start, end, exclude_booking_id
    )
    return not is_booked(start, end, bookings)


def validate_duration(duration: int) -> None:
    if not MIN_DURATION <= duration <= MAX_DURATION:
        raise ValidationError(f"duration must be between {MIN_DURATION} and {MAX_DURATION} minutes")


def is_slot_available(
    db: Session,
    provider_id: int,
    member_id: Optional[int],
    location_id: int,
    start: datetime,
    duration: int,
    exclude_booking_id: Optional[int] = None,
    now: datetime | None = None,
) -> bool:
    """
    Is [start, start + duration) bookable on this agenda right now?

    Naive `start` is wall-clock time in the provider's timezone. Never
    reads the cache.
    """
    validate_duration(duration)
    provider = get_provider(db, provider_id)
    get_agenda_owner(db, provider_id, location_id, member_id)
    config = get_booking_config().for_provider(provider)
    return check_slot(
        db, provider_id, location_id, member_id,
        localize(start, config.tz), duration, config,
        as_utc(now or utcnow()), exclude_booking_id,
    )


# ── Next available slot ──────────────────────────────────────────────────


def _next_slot_payload(result: NextAvailableSlot) -> dict:
    return {
        "member_id": result.member_id,
        "location_id": result.location_id,
        "service_id": result.service_id,
        **result.slot.to_dict(),
    }


def _next_slot_from_payload(payload: dict) -> NextAvailableSlot:
    slot = AvailableSlot(
        date=date.fromisoformat(payload["date"]),
        start=payload["start"],
        end=payload["end"],
        datetime=parse_instant(payload["datetime"]),
        end_datetime=parse_instant(payload["end_datetime"]),
    )
    return NextAvailableSlot(
        member_id=payload["member_id"],
        location_id=payload["location_id"],
        service_id=payload["service_id"],
        slot=slot,
    )


def _agenda_member(db: Session, provider_id: int) -> Optional[DBMembers]:
    """Default member if active, else the first active member."""
    return (
        db.query(DBMembers)
        .filter(DBMembers.provider_id == provider_id, DBMembers.is_active == 1)
        .order_by(DBMembers.is_default.desc(), DBMembers.id)
        .first()
    )


def _shortest_service(db: Session, provider_id: int, member: DBMembers) -> Optional[DBServices]:
    services = (
        db.query(DBServices)
        .filter(DBServices.provider_id == provider_id, DBServices.is_active == 1)
        .order_by(DBServices.duration, DBServices.id)
        .all()
    )
    for service in services:
        try:
            check_service_offered(service, member.location, member)
        except NotFoundError:
            continue
        return service
    return None


def find_next_available_slot(
    db: Session,
    provider_id: int,
    now: datetime | None = None,
    redis: Redis | None = None,
) -> Optional[NextAvailableSlot]:
    """
    First bookable slot of the provider within the horizon.

    Uses the default (or first active) member and the shortest active
    service they perform. Cached in Redis until a schedule or booking
    change of the provider.
    """
    provider = get_provider(db, provider_id)
    config = get_booking_config().for_provider(provider)
    now = as_utc(now or utcnow())

    store = SlotsRedisStore(redis, config) if redis is not None else None
    if store is not None:
        try:
            cached = store.get_next_slot(provider_id)
        except RedisError as e:
            logger.warning(f"Next slot cache read failed: {e}")
            cached = None
        if cached is not None:
            result = _next_slot_from_payload(cached)
            if result.slot.datetime > earliest_start(now, config):
                return result

    member = _agenda_member(db, provider_id)
    if member is None:
        return None
    service = _shortest_service(db, provider_id, member)
    if service is None:
        return None

    today, _ = to_local(now, config.tz)
    slots = get_available_slots(
        db, provider_id, service.id, member.location_id, member.id,
        today, last_bookable_date(now, config), now=now, redis=redis,
    )
    slot = next(iter(slots), None)
    if slot is None:
        return None

    result = NextAvailableSlot(
        member_id=member.id,
        location_id=member.location_id,
        service_id=service.id,
        slot=slot,
    )
    if store is not None:
        try:
            store.store_next_slot(provider_id, _next_slot_payload(result))
        except RedisError as e:
            logger.warning(f"Next slot cache write failed: {e}")
    return result


# ── Schedule change preview ──────────────────────────────────────────────


def provider_today(db: Session, provider_id: int, now: datetime | None = None) -> date:
    """The provider's local date at `now`."""
    config = get_booking_config().for_provider(get_provider(db, provider_id))
    today, _ = to_local(as_utc(now or utcnow()), config.tz)
    return today


def find_schedule_conflicts(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int],
    day: DayScheduleIn,
    now: datetime | None = None,
    effective_from: Optional[date] = None,
) -> list[ScheduleConflict]:
    """
    Future active bookings a proposed weekday record would no longer contain.

    effective_from None proposes a new current record, otherwise a change
    taking effect on that date. Only dates the proposed record would govern
    are checked: dates before effective_from, dates with an exception and
    dates taken over by a later scheduled change are skipped.
    """
    ranges = validate_day_slots(day.slots)
    provider = get_provider(db, provider_id)
    get_agenda_owner(db, provider_id, location_id, member_id)
    config = get_booking_config().for_provider(provider)
    now = as_utc(now or utcnow())

    query = db.query(DBBookings).filter(
        DBBookings.provider_id == provider_id,
        DBBookings.location_id == location_id,
        DBBookings.status.in_(ACTIVE_STATUSES),
        DBBookings.date_start > format_instant(now),
    )
    if member_id is not None:
        query = query.filter(DBBookings.member_id == member_id)
    else:
        query = query.filter(DBBookings.member_id.is_(None))
    bookings = query.order_by(DBBookings.date_start).all()
    if not bookings:
        return []

    today, _ = to_local(now, config.tz)
    exception_dates = set(
        _exception_templates(db, provider_id, location_id, member_id, today, date.max)
    )
    later_changes = [
        record.effective_from
        for record in get_weekly_timeline(db, provider_id, location_id, member_id).get(day.day_of_week, [])
        if record.effective_from is not None
        and (effective_from is None or record.effective_from > effective_from)
    ]

    conflicts = []
    for booking in bookings:
        start = parse_instant(booking.date_start)
        local_date, minutes = to_local(start, config.tz)
        if day_of_week(local_date) != day.day_of_week or local_date in exception_dates:
            continue
        if effective_from is not None and local_date < effective_from:
            continue
        if any(change <= local_date for change in later_changes):
            continue

        if not day.is_open or not ranges:
            conflict_type = "day_closed"
        elif not any(r.contains(TimeRange(minutes, minutes + booking.duration)) for r in ranges):
            conflict_type = "reduced_hours"
        else:
            continue

        conflicts.append(ScheduleConflict(
            booking_id=booking.id,
            booking_date=start,
            client_name=booking.client_name,
            service_name=booking.service_name,
            conflict_type=conflict_type,
        ))
    return conflicts


def schedule_availability_change(
    db: Session,
    provider_id: int,
    data: ScheduledAvailabilitySet,
    now: datetime | None = None,
) -> tuple[DayTemplate, list[ScheduleConflict]]:
    """
    Write a weekday change taking effect on data.effective_from.

    The change is written even when bookings conflict with it; the
    conflicts are returned so the caller can contact those clients.
    """
    today = provider_today(db, provider_id, now)
    day = DayScheduleIn(day_of_week=data.day_of_week, slots=data.slots, is_open=data.is_open)
    if data.effective_from <= today:
        raise ValidationError("effective_from must be after today")
    conflicts = find_schedule_conflicts(
        db, provider_id, data.location_id, data.member_id, day,
        now=now, effective_from=data.effective_from,
    )
    change = set_scheduled_availability(db, provider_id, data, today)
    if conflicts:
        logger.warning(
            f"Scheduled change {change.id} leaves {len(conflicts)} bookings outside open hours "
            f"(provider={provider_id})"
        )
    return change, conflicts
