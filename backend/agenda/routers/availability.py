# backend/agenda/routers/availability.py
# Weekly template of an agenda (member, or location level when member_id is omitted)

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..redis_client import get_redis
from ..schemas.availability import (
    AppliedChangesRead,
    AvailabilitySet,
    DayTemplateRead,
    ScheduleConflictRead,
    ScheduleConflictsRequest,
    ScheduledAvailabilitySet,
    ScheduledChangeRead,
    WeeklyScheduleSet,
)
from ..services.slots import invalidate_provider_cache
from ..services.slots.availability import (
    find_schedule_conflicts,
    provider_today,
    schedule_availability_change,
)
from ..services.slots.schedule import (
    DayTemplate,
    apply_due_scheduled_changes,
    delete_scheduled_change,
    get_all_scheduled_changes,
    get_scheduled_changes,
    get_weekly_schedule,
    set_availability,
    set_weekly_schedule,
)
from ..services.slots.timeslot import get_now

router = APIRouter(prefix="/providers/{provider_id}/availability", tags=["availability"])


def to_read(template: DayTemplate) -> DayTemplateRead:
    return DayTemplateRead(
        id=template.id,
        member_id=template.member_id,
        location_id=template.location_id,
        day_of_week=template.day_of_week,
        effective_from=template.effective_from,
        date=template.date,
        is_open=template.is_open,
        slots=[r.to_dict() for r in template.slots],
        reason=template.reason,
    )


@router.get("/", response_model=list[DayTemplateRead])
def read_weekly_schedule(
    provider_id: int,
    location_id: int,
    member_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return [to_read(t) for t in get_weekly_schedule(db, provider_id, location_id, member_id)]


@router.put("/", response_model=DayTemplateRead)
def put_availability_day(
    provider_id: int,
    data: AvailabilitySet,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    template = set_availability(db, provider_id, data)
    invalidate_provider_cache(redis, provider_id)
    return to_read(template)


@router.put("/week", response_model=list[DayTemplateRead])
def put_weekly_schedule(
    provider_id: int,
    data: WeeklyScheduleSet,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    templates = set_weekly_schedule(
        db, provider_id, data.member_id, data.location_id, data.schedule
    )
    invalidate_provider_cache(redis, provider_id)
    return [to_read(t) for t in templates]


@router.post("/conflicts", response_model=list[ScheduleConflictRead])
def preview_schedule_conflicts(
    provider_id: int,
    data: ScheduleConflictsRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Bookings a proposed day would leave outside open hours (nothing is written)."""
    return find_schedule_conflicts(
        db, provider_id, data.location_id, data.member_id, data.day,
        now=now, effective_from=data.effective_from,
    )


# ── Scheduled changes ────────────────────────────────────────────────────


@router.post("/scheduled", response_model=ScheduledChangeRead, status_code=status.HTTP_201_CREATED)
def schedule_change(
    provider_id: int,
    data: ScheduledAvailabilitySet,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    change, conflicts = schedule_availability_change(db, provider_id, data, now=now)
    invalidate_provider_cache(redis, provider_id)
    return ScheduledChangeRead(
        change=to_read(change),
        conflicts=[ScheduleConflictRead.model_validate(c) for c in conflicts],
    )


@router.get("/scheduled", response_model=list[DayTemplateRead])
def list_scheduled_changes(
    provider_id: int,
    location_id: Optional[int] = None,
    member_id: Optional[int] = None,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Pending changes of one agenda, or of the whole provider without location_id."""
    today = provider_today(db, provider_id, now)
    if location_id is None:
        changes = get_all_scheduled_changes(db, provider_id, today)
    else:
        changes = get_scheduled_changes(db, provider_id, location_id, member_id, today)
    return [to_read(t) for t in changes]


@router.post("/scheduled/apply", response_model=AppliedChangesRead)
def apply_scheduled_changes(
    provider_id: int,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    today = provider_today(db, provider_id, now)
    return AppliedChangesRead(applied=apply_due_scheduled_changes(db, provider_id, today))


@router.delete("/scheduled/{change_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_scheduled_change(
    provider_id: int,
    change_id: int,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    delete_scheduled_change(db, provider_id, change_id)
    invalidate_provider_cache(redis, provider_id)
