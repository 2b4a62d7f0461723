# backend/agenda/routers/planning.py
# Read-only staff planning, reached with a member access code

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.bookings import PlanningBookingRead
from ..services.planning import list_member_upcoming_bookings
from ..services.slots.timeslot import get_now

router = APIRouter(prefix="/planning", tags=["planning"])


@router.get("/{access_code}/bookings", response_model=list[PlanningBookingRead])
def list_planning_bookings(
    access_code: str,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return list_member_upcoming_bookings(db, access_code, now=now)
