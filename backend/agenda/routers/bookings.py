# backend/agenda/routers/bookings.py
# API.md: PATCH = 405, DELETE = 405 (status changes go through the transition endpoints)

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..redis_client import get_redis
from ..schemas.bookings import (
    ActorRequest,
    BookingCreate,
    BookingCreated,
    BookingRead,
    BookingStats,
    CancelByTokenRequest,
    CancelRequest,
    ReminderRequest,
    RescheduleRead,
    RescheduleRequest,
)
from ..services import bookings as booking_service
from ..services.events import booking_payload, emit_event
from ..services.slots import invalidate_next_slot
from ..services.slots.timeslot import format_instant, get_now

# Public surface: client booking and self-service cancellation
public_router = APIRouter(prefix="/bookings", tags=["bookings"])

# Provider back office
router = APIRouter(prefix="/providers/{provider_id}/bookings", tags=["bookings"])


def _notify(redis: Redis, event_type: str, booking, **extra) -> None:
    emit_event(redis, event_type, {**booking_payload(booking), **extra})


# ── Public ───────────────────────────────────────────────────────────────


@public_router.post("/", response_model=BookingCreated, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    booking = booking_service.create_booking(db, data, now=now)
    invalidate_next_slot(redis, booking.provider_id)
    _notify(redis, "booking_created", booking)
    return booking


@public_router.post("/cancel/{token}", response_model=BookingRead)
def cancel_booking_by_token(
    token: str,
    data: Optional[CancelByTokenRequest] = None,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    reason = data.reason if data else None
    booking = booking_service.cancel_booking_by_token(db, token, reason=reason, now=now)
    invalidate_next_slot(redis, booking.provider_id)
    _notify(redis, "booking_cancelled", booking)
    return booking


# ── Provider ─────────────────────────────────────────────────────────────


@router.get("/", response_model=list[BookingRead])
def list_bookings(
    provider_id: int,
    status: Optional[str] = None,
    member_id: Optional[int] = None,
    location_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return booking_service.list_provider_bookings(
        db, provider_id,
        status=status,
        member_id=member_id,
        location_id=location_id,
        start=start,
        end=end,
        limit=min(limit, 500),
        offset=offset,
    )


@router.get("/stats", response_model=BookingStats)
def booking_stats(
    provider_id: int,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return booking_service.get_statistics(db, provider_id, now=now)


@router.get("/{id}", response_model=BookingRead)
def get_booking(provider_id: int, id: int, db: Session = Depends(get_db)):
    return booking_service.get_booking(db, provider_id, id)


@router.post("/{id}/confirm", response_model=BookingRead)
def confirm_booking(
    provider_id: int,
    id: int,
    data: ActorRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    booking = booking_service.confirm_booking(db, provider_id, id, data.actor_id, now=now)
    _notify(redis, "booking_confirmed", booking)
    return booking


@router.post("/{id}/cancel", response_model=BookingRead)
def cancel_booking(
    provider_id: int,
    id: int,
    data: CancelRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    booking = booking_service.cancel_booking(
        db, provider_id, id, data.cancelled_by, data.actor_id, reason=data.reason, now=now
    )
    invalidate_next_slot(redis, provider_id)
    _notify(redis, "booking_cancelled", booking)
    return booking


@router.post("/{id}/reschedule", response_model=RescheduleRead)
def reschedule_booking(
    provider_id: int,
    id: int,
    data: RescheduleRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    result = booking_service.reschedule_booking(
        db, provider_id, id, data.new_datetime, data.actor_id, now=now
    )
    invalidate_next_slot(redis, provider_id)
    _notify(
        redis, "booking_rescheduled", result.booking,
        old_datetime=format_instant(result.old_datetime),
        new_datetime=format_instant(result.new_datetime),
    )
    return RescheduleRead(
        booking=BookingRead.model_validate(result.booking),
        old_datetime=result.old_datetime,
        new_datetime=result.new_datetime,
    )


@router.post("/{id}/complete", response_model=BookingRead)
def complete_booking(
    provider_id: int,
    id: int,
    data: ActorRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    booking = booking_service.complete_booking(db, provider_id, id, data.actor_id, now=now)
    _notify(redis, "booking_completed", booking)
    return booking


@router.post("/{id}/noshow", response_model=BookingRead)
def mark_no_show(
    provider_id: int,
    id: int,
    data: ActorRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    booking = booking_service.mark_no_show(db, provider_id, id, data.actor_id, now=now)
    _notify(redis, "booking_noshow", booking)
    return booking


@router.post("/{id}/review_request", response_model=BookingRead)
def mark_review_request_sent(
    provider_id: int,
    id: int,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return booking_service.mark_review_request_sent(db, provider_id, id, now=now)


@router.post("/{id}/reminders", response_model=BookingRead)
def mark_reminder_sent(
    provider_id: int,
    id: int,
    data: ReminderRequest,
    db: Session = Depends(get_db),
):
    return booking_service.mark_reminder_sent(db, provider_id, id, data.reminder)


@router.patch("/{id}")
def patch_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )


@router.delete("/{id}")
def delete_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )
