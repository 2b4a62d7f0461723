# backend/agenda/services/planning.py
"""
Staff planning: read-only view of a member's upcoming bookings,
reached with the member's access code instead of an account.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.generated import Bookings as DBBookings, Members as DBMembers
from .catalog import ACTIVE_STATUSES
from .slots.timeslot import as_utc, format_instant, utcnow

logger = logging.getLogger(__name__)


def resolve_access_code(db: Session, access_code: str) -> DBMembers:
    """Access code -> active member (carries provider_id and id)."""
    member = (
        db.query(DBMembers)
        .filter(DBMembers.access_code == access_code.strip().upper())
        .first()
    )
    if not member or not member.is_active:
        raise NotFoundError("Unknown access code")
    return member


def list_member_upcoming_bookings(
    db: Session,
    access_code: str,
    now: datetime | None = None,
    limit: int = 200,
) -> list[DBBookings]:
    member = resolve_access_code(db, access_code)
    now = as_utc(now or utcnow())
    return (
        db.query(DBBookings)
        .filter(
            DBBookings.provider_id == member.provider_id,
            DBBookings.member_id == member.id,
            DBBookings.status.in_(ACTIVE_STATUSES),
            DBBookings.date_end > format_instant(now),
        )
        .order_by(DBBookings.date_start)
        .limit(limit)
        .all()
    )
