# backend/agenda/services/bookings.py
"""
Booking store and status lifecycle.

    pending   → confirmed | cancelled
    confirmed → cancelled | completed | noshow
    cancelled, completed, noshow: terminal

Bookings are never deleted. Creation and reschedule re-check the slot
and commit through the agenda version guard (agenda_lock.py), so two
writers racing for the same time cannot both succeed.

Every lookup is scoped by provider_id. Notifications are the caller's
job: routers emit events after these functions return.
"""

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database import commit_or_raise, transaction
from ..errors import InvalidStateError, NotFoundError, SlotUnavailableError, ValidationError
from ..models.generated import Bookings as DBBookings, Providers as DBProviders
from ..schemas.bookings import BookingCreate
from .agenda_lock import bump_versions, guard_keys, read_versions, touched_dates
from .catalog import ACTIVE_STATUSES, format_location_address, get_provider, resolve_bookable
from .slots.availability import check_slot, validate_duration
from .slots.config import get_booking_config
from .slots.timeslot import as_utc, format_instant, localize, parse_instant, scope_for, utcnow

logger = logging.getLogger(__name__)

STATUSES = ("pending", "confirmed", "cancelled", "completed", "noshow")

TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("cancelled", "completed", "noshow"),
}

CANCELLED_BY = ("client", "provider")


@dataclass(frozen=True)
class RescheduleResult:
    booking: DBBookings
    old_datetime: datetime
    new_datetime: datetime


# ── Helpers ──────────────────────────────────────────────────────────────


def get_booking(db: Session, provider_id: int, booking_id: int) -> DBBookings:
    booking = db.get(DBBookings, booking_id)
    if not booking or booking.provider_id != provider_id:
        raise NotFoundError("Booking not found")
    return booking


def _check_transition(booking: DBBookings, target: str) -> None:
    if target not in TRANSITIONS.get(booking.status, ()):
        raise InvalidStateError(f"Cannot change booking status from {booking.status} to {target}")


def _set_status(
    db: Session,
    booking: DBBookings,
    target: str,
    actor_id: str,
    now: datetime | None = None,
) -> DBBookings:
    _check_transition(booking, target)
    previous = booking.status
    booking.status = target
    booking.updated_at = format_instant(as_utc(now or utcnow()))
    commit_or_raise(db)
    db.refresh(booking)
    logger.info(f"Booking {booking.id}: {previous} -> {target} (actor={actor_id})")
    return booking


def _check_client_cancellation(db: Session, booking: DBBookings, now: datetime) -> None:
    """Clients cancel future bookings only, within the provider's policy."""
    provider = db.get(DBProviders, booking.provider_id)
    start = parse_instant(booking.date_start)
    if start <= now:
        raise InvalidStateError("A past booking cannot be cancelled")
    if not provider.allow_client_cancellation:
        raise InvalidStateError("This provider does not allow online cancellation")
    deadline = start - timedelta(hours=provider.cancellation_deadline or 0)
    if now > deadline:
        raise InvalidStateError(
            f"Bookings must be cancelled at least {provider.cancellation_deadline} hours in advance"
        )


def _apply_cancellation(
    db: Session,
    booking: DBBookings,
    cancelled_by: str,
    actor_id: str,
    reason: Optional[str],
    now: datetime,
) -> DBBookings:
    _check_transition(booking, "cancelled")
    booking.status = "cancelled"
    booking.cancelled_at = format_instant(now)
    booking.cancelled_by = cancelled_by
    booking.cancel_reason = reason
    booking.updated_at = format_instant(now)
    commit_or_raise(db)
    db.refresh(booking)
    logger.info(f"Booking {booking.id} cancelled by {cancelled_by} (actor={actor_id})")
    return booking


# ── Creation ─────────────────────────────────────────────────────────────


def create_booking(db: Session, data: BookingCreate, now: datetime | None = None) -> DBBookings:
    """
    Validate, re-check the slot and write the booking with its snapshot.

    Raises:
        ValidationError: client identity missing or doubled, time not in the future
        NotFoundError: provider/service/location/member missing or unrelated
        SlotUnavailableError: the slot is taken, or was taken by a concurrent writer
    """
    if bool(data.client_id) == (data.client_info is not None):
        raise ValidationError("Exactly one of client_id or client_info is required")

    provider, service, location, member = resolve_bookable(
        db, data.provider_id, data.service_id, data.location_id, data.member_id
    )
    validate_duration(service.duration)

    config = get_booking_config().for_provider(provider)
    now = as_utc(now or utcnow())
    start = localize(data.datetime, config.tz)
    if start <= now:
        raise ValidationError("Booking time must be in the future")

    # Snapshot, never re-derived from the catalog afterwards
    provider_id = provider.id
    member_id = member.id if member else None
    duration = service.duration
    end = start + timedelta(minutes=duration)
    buffer_time = service.buffer_time or provider.default_buffer_time or 0
    booking = DBBookings(
        provider_id=provider_id,
        location_id=location.id,
        service_id=service.id,
        member_id=member_id,
        date_start=format_instant(start),
        date_end=format_instant(end),
        duration=duration,
        buffer_time=buffer_time,
        price=service.price,
        status="pending" if provider.requires_confirmation else "confirmed",
        cancel_token=secrets.token_urlsafe(32),
        provider_name=provider.business_name,
        service_name=service.name,
        location_name=location.name,
        location_address=format_location_address(location),
        member_name=member.name if member else None,
        client_id=data.client_id or None,
        client_name=data.client_info.name if data.client_info else None,
        client_email=data.client_info.email if data.client_info else None,
        client_phone=data.client_info.phone if data.client_info else None,
        notes=data.notes,
        reminders_sent="[]",
        created_at=format_instant(now),
        updated_at=format_instant(now),
    )

    keys = guard_keys(db, provider_id, booking.location_id, scope_for(member_id))
    snapshot = read_versions(db, provider_id, keys, touched_dates(start, end, buffer_time, config.tz))

    if not check_slot(db, provider_id, booking.location_id, member_id, start, duration, config, now):
        logger.info(
            f"Booking rejected, slot unavailable: provider={provider_id} "
            f"member={member_id} location={booking.location_id} start={booking.date_start}"
        )
        raise SlotUnavailableError("This slot is no longer available")

    with transaction(db):
        db.add(booking)
        bump_versions(db, provider_id, snapshot)
    db.refresh(booking)

    logger.info(
        f"Booking {booking.id} created: provider={provider_id} member={member_id} "
        f"location={booking.location_id} {booking.date_start}..{booking.date_end} "
        f"status={booking.status}"
    )
    return booking


# ── Transitions ──────────────────────────────────────────────────────────


def confirm_booking(
    db: Session,
    provider_id: int,
    booking_id: int,
    actor_id: str,
    now: datetime | None = None,
) -> DBBookings:
    booking = get_booking(db, provider_id, booking_id)
    return _set_status(db, booking, "confirmed", actor_id, now=now)


def complete_booking(
    db: Session,
    provider_id: int,
    booking_id: int,
    actor_id: str,
    now: datetime | None = None,
) -> DBBookings:
    booking = get_booking(db, provider_id, booking_id)
    return _set_status(db, booking, "completed", actor_id, now=now)


def mark_no_show(
    db: Session,
    provider_id: int,
    booking_id: int,
    actor_id: str,
    now: datetime | None = None,
) -> DBBookings:
    booking = get_booking(db, provider_id, booking_id)
    return _set_status(db, booking, "noshow", actor_id, now=now)


def cancel_booking(
    db: Session,
    provider_id: int,
    booking_id: int,
    cancelled_by: str,
    actor_id: str,
    reason: Optional[str] = None,
    now: datetime | None = None,
) -> DBBookings:
    """Cancel a pending or confirmed booking. Not idempotent."""
    if cancelled_by not in CANCELLED_BY:
        raise ValidationError(f"cancelled_by must be one of {CANCELLED_BY}")
    now = as_utc(now or utcnow())
    booking = get_booking(db, provider_id, booking_id)
    _check_transition(booking, "cancelled")
    if cancelled_by == "client":
        _check_client_cancellation(db, booking, now)
    return _apply_cancellation(db, booking, cancelled_by, actor_id, reason, now)


def cancel_booking_by_token(
    db: Session,
    token: str,
    reason: Optional[str] = None,
    now: datetime | None = None,
) -> DBBookings:
    """
    Self-service cancellation, authorized by the cancel token alone.

    Unknown token and already cancelled/finished booking look the same
    to the caller: NotFoundError.
    """
    now = as_utc(now or utcnow())
    booking = (
        db.query(DBBookings)
        .filter(DBBookings.cancel_token == token)
        .first()
    ) if token else None
    if booking is None or booking.status not in ACTIVE_STATUSES:
        raise NotFoundError("No active booking matches this link")
    _check_client_cancellation(db, booking, now)
    return _apply_cancellation(db, booking, "client", "token", reason, now)


def reschedule_booking(
    db: Session,
    provider_id: int,
    booking_id: int,
    new_datetime: datetime,
    actor_id: str,
    now: datetime | None = None,
) -> RescheduleResult:
    """
    Move an active booking, same agenda and duration.

    Only date_start/date_end change: id, token, client and price stay.
    """
    booking = get_booking(db, provider_id, booking_id)
    if booking.status not in ACTIVE_STATUSES:
        raise InvalidStateError(f"A {booking.status} booking cannot be rescheduled")

    provider = get_provider(db, provider_id)
    config = get_booking_config().for_provider(provider)
    now = as_utc(now or utcnow())
    new_start = localize(new_datetime, config.tz)
    if new_start <= now:
        raise ValidationError("New booking time must be in the future")

    old_start = parse_instant(booking.date_start)
    new_end = new_start + timedelta(minutes=booking.duration)
    location_id, member_id = booking.location_id, booking.member_id

    keys = guard_keys(db, provider_id, location_id, scope_for(member_id))
    snapshot = read_versions(
        db, provider_id, keys,
        touched_dates(new_start, new_end, booking.buffer_time, config.tz),
    )

    if not check_slot(
        db, provider_id, location_id, member_id, new_start, booking.duration,
        config, now, exclude_booking_id=booking.id,
    ):
        raise SlotUnavailableError("The new time is not available")

    with transaction(db):
        booking.date_start = format_instant(new_start)
        booking.date_end = format_instant(new_end)
        booking.updated_at = format_instant(now)
        bump_versions(db, provider_id, snapshot)
    db.refresh(booking)

    logger.info(
        f"Booking {booking.id} rescheduled: {format_instant(old_start)} -> "
        f"{booking.date_start} (actor={actor_id})"
    )
    return RescheduleResult(booking=booking, old_datetime=old_start, new_datetime=new_start)


# ── Follow-ups ───────────────────────────────────────────────────────────


def mark_review_request_sent(
    db: Session,
    provider_id: int,
    booking_id: int,
    now: datetime | None = None,
) -> DBBookings:
    """Set once, on completed bookings only."""
    booking = get_booking(db, provider_id, booking_id)
    if booking.status != "completed":
        raise InvalidStateError("Review requests are sent for completed bookings only")
    if booking.review_request_sent_at:
        raise InvalidStateError("Review request already sent")
    booking.review_request_sent_at = format_instant(as_utc(now or utcnow()))
    commit_or_raise(db)
    db.refresh(booking)
    logger.info(f"Review request recorded for booking {booking.id}")
    return booking


def mark_reminder_sent(db: Session, provider_id: int, booking_id: int, reminder: str) -> DBBookings:
    """Record a sent reminder ("24h", "2h", ...); recording it twice is a no-op."""
    booking = get_booking(db, provider_id, booking_id)
    if booking.status not in ACTIVE_STATUSES:
        raise InvalidStateError(f"No reminders for a {booking.status} booking")
    sent = json.loads(booking.reminders_sent or "[]")
    if reminder in sent:
        return booking
    sent.append(reminder)
    booking.reminders_sent = json.dumps(sent)
    commit_or_raise(db)
    db.refresh(booking)
    logger.info(f"Reminder {reminder} recorded for booking {booking.id}")
    return booking


# ── Queries ──────────────────────────────────────────────────────────────


def list_provider_bookings(
    db: Session,
    provider_id: int,
    status: Optional[str] = None,
    member_id: Optional[int] = None,
    location_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[DBBookings]:
    """Bookings of a provider by start time; start/end bound date_start."""
    get_provider(db, provider_id)
    if status is not None and status not in STATUSES:
        raise ValidationError(f"Unknown status {status!r}")

    query = db.query(DBBookings).filter(DBBookings.provider_id == provider_id)
    if status is not None:
        query = query.filter(DBBookings.status == status)
    if member_id is not None:
        query = query.filter(DBBookings.member_id == member_id)
    if location_id is not None:
        query = query.filter(DBBookings.location_id == location_id)
    if start is not None:
        query = query.filter(DBBookings.date_start >= format_instant(start))
    if end is not None:
        query = query.filter(DBBookings.date_start < format_instant(end))

    return (
        query.order_by(DBBookings.date_start, DBBookings.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_statistics(db: Session, provider_id: int, now: datetime | None = None) -> dict:
    get_provider(db, provider_id)
    now = as_utc(now or utcnow())

    counts = dict(
        db.query(DBBookings.status, func.count(DBBookings.id))
        .filter(DBBookings.provider_id == provider_id)
        .group_by(DBBookings.status)
        .all()
    )
    upcoming = (
        db.query(func.count(DBBookings.id))
        .filter(
            DBBookings.provider_id == provider_id,
            DBBookings.status.in_(ACTIVE_STATUSES),
            DBBookings.date_start > format_instant(now),
        )
        .scalar()
    )
    revenue = (
        db.query(func.coalesce(func.sum(DBBookings.price), 0))
        .filter(DBBookings.provider_id == provider_id, DBBookings.status == "completed")
        .scalar()
    )

    stats = {status: counts.get(status, 0) for status in STATUSES}
    stats["total"] = sum(counts.values())
    stats["upcoming"] = upcoming or 0
    stats["revenue"] = revenue or 0
    return stats
