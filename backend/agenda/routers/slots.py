# backend/agenda/routers/slots.py
"""
Slots API endpoints.

GET  /slots           - Bookable slots of a service over a date range
GET  /slots/calendar  - Per-day slot counts (date picker)
GET  /slots/check     - Is one start time still free
GET  /slots/next      - First free slot of a provider
POST /slots/invalidate - Drop the provider's cached candidates (admin)
"""

from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..redis_client import get_redis
from ..schemas.slots import (
    InvalidateResponse,
    NextSlotResponse,
    SlotCheckResponse,
    SlotRead,
    SlotsCalendarResponse,
    SlotsDayStatus,
    SlotsResponse,
)
from ..services.catalog import get_provider
from ..services.slots import get_booking_config, invalidate_provider_cache
from ..services.slots.availability import (
    find_next_available_slot,
    get_available_slots,
    get_slots_calendar as compute_slots_calendar,
    is_slot_available,
)
from ..services.slots.timeslot import get_now, to_local


router = APIRouter(prefix="/slots", tags=["slots"])

MAX_RANGE_DAYS = 62


def _date_range(
    db: Session,
    provider_id: int,
    start_date: date | None,
    end_date: date | None,
    now: datetime,
) -> tuple[date, date]:
    """
    Default to today .. today + horizon in the provider's timezone.

    The default end is capped at MAX_RANGE_DAYS; only an explicit end_date
    beyond it is rejected.
    """
    config = get_booking_config().for_provider(get_provider(db, provider_id))
    today, _ = to_local(now, config.tz)
    if start_date is None:
        start_date = today
    if end_date is None:
        end_date = start_date + timedelta(days=min(config.horizon_days, MAX_RANGE_DAYS))
    elif (end_date - start_date).days > MAX_RANGE_DAYS:
        raise HTTPException(status_code=400, detail=f"Date range cannot exceed {MAX_RANGE_DAYS} days")
    return start_date, end_date


@router.get("/", response_model=SlotsResponse)
def list_slots(
    provider_id: int,
    service_id: int,
    location_id: int,
    member_id: Optional[int] = None,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    start_date, end_date = _date_range(db, provider_id, start_date, end_date, now)
    slots = get_available_slots(
        db, provider_id, service_id, location_id, member_id,
        start_date, end_date, now=now, redis=redis,
    )
    return SlotsResponse(
        provider_id=provider_id,
        service_id=service_id,
        location_id=location_id,
        member_id=member_id,
        start_date=start_date,
        end_date=end_date,
        slots=[SlotRead.model_validate(s) for s in slots],
    )


@router.get("/calendar", response_model=SlotsCalendarResponse)
def get_slots_calendar(
    provider_id: int,
    service_id: int,
    location_id: int,
    member_id: Optional[int] = None,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    """Get calendar of available days for an agenda."""
    start_date, end_date = _date_range(db, provider_id, start_date, end_date, now)
    counts = compute_slots_calendar(
        db, provider_id, service_id, location_id, member_id,
        start_date, end_date, now=now, redis=redis,
    )
    config = get_booking_config().for_provider(get_provider(db, provider_id))

    return SlotsCalendarResponse(
        provider_id=provider_id,
        service_id=service_id,
        location_id=location_id,
        member_id=member_id,
        start_date=start_date,
        end_date=end_date,
        days=[
            SlotsDayStatus(date=d, has_slots=count > 0, open_slots_count=count)
            for d, count in counts
        ],
        horizon_days=config.horizon_days,
        min_advance_hours=config.min_advance_hours,
        slot_step_minutes=config.slot_step_minutes,
        timezone=config.timezone,
    )


@router.get("/check", response_model=SlotCheckResponse)
def check_slot(
    provider_id: int,
    location_id: int,
    start: datetime,
    duration: int,
    member_id: Optional[int] = None,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Last-instant check before booking; never served from cache."""
    available = is_slot_available(
        db, provider_id, member_id, location_id, start, duration, now=now
    )
    return SlotCheckResponse(available=available)


@router.get("/next", response_model=Optional[NextSlotResponse])
def get_next_slot(
    provider_id: int,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    return find_next_available_slot(db, provider_id, now=now, redis=redis)


@router.post("/invalidate", response_model=InvalidateResponse)
def invalidate_slots_cache(
    provider_id: int,
    redis: Redis = Depends(get_redis),
):
    """Manually invalidate slots cache for a provider (admin endpoint)."""
    deleted = invalidate_provider_cache(redis, provider_id)
    return InvalidateResponse(provider_id=provider_id, deleted_keys=deleted)
