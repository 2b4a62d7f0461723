# backend/agenda/services/catalog.py
"""
Catalog lookups used by the scheduling engine.

Providers, locations, members and services are owned by the catalog
CRUD layer; the engine only reads them, except for two member
operations that must keep the agenda consistent:

- change_location: moves a member and re-keys their availability,
  exceptions and blocked periods in one transaction
- delete_member: refused while the member has future active bookings
"""

import json
import logging
import re
import secrets
import unicodedata
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..database import commit_or_raise, transaction
from ..errors import InvalidStateError, NotFoundError
from ..models.generated import (
    Availability as DBAvailability,
    AvailabilityExceptions as DBExceptions,
    BlockedPeriods as DBBlockedPeriods,
    Bookings as DBBookings,
    Locations as DBLocations,
    Members as DBMembers,
    Providers as DBProviders,
    Services as DBServices,
)
from .slots.timeslot import format_instant, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "confirmed")
ACCESS_CODE_ATTEMPTS = 100


# ── Lookups ──────────────────────────────────────────────────────────────


def get_provider(db: Session, provider_id: int) -> DBProviders:
    provider = db.get(DBProviders, provider_id)
    if not provider or not provider.is_active:
        raise NotFoundError("Provider not found")
    return provider


def get_location(db: Session, provider_id: int, location_id: int) -> DBLocations:
    location = db.get(DBLocations, location_id)
    if not location or location.provider_id != provider_id:
        raise NotFoundError("Location not found")
    return location


def get_member(db: Session, provider_id: int, member_id: int) -> DBMembers:
    member = db.get(DBMembers, member_id)
    if not member or member.provider_id != provider_id:
        raise NotFoundError("Member not found")
    return member


def get_service(db: Session, provider_id: int, service_id: int) -> DBServices:
    service = db.get(DBServices, service_id)
    if not service or service.provider_id != provider_id or not service.is_active:
        raise NotFoundError("Service not found")
    return service


def get_agenda_owner(
    db: Session,
    provider_id: int,
    location_id: int,
    member_id: Optional[int],
) -> tuple[DBLocations, Optional[DBMembers]]:
    """Resolve the (location, member) pair an agenda belongs to."""
    location = get_location(db, provider_id, location_id)
    member = None
    if member_id is not None:
        member = get_member(db, provider_id, member_id)
        if member.location_id != location.id:
            raise NotFoundError("Member does not work at this location")
    return location, member


def resolve_bookable(
    db: Session,
    provider_id: int,
    service_id: int,
    location_id: int,
    member_id: Optional[int],
) -> tuple[DBProviders, DBServices, DBLocations, Optional[DBMembers]]:
    """Everything a slot query or a booking refers to: active and belonging together."""
    provider = get_provider(db, provider_id)
    service = get_service(db, provider_id, service_id)
    location, member = get_agenda_owner(db, provider_id, location_id, member_id)
    if not location.is_active:
        raise NotFoundError("Location not found")
    if member is not None and not member.is_active:
        raise NotFoundError("Member not found")
    check_service_offered(service, location, member)
    return provider, service, location, member


def service_location_ids(service: DBServices) -> list[int]:
    return json.loads(service.location_ids or "[]")


def service_member_ids(service: DBServices) -> Optional[list[int]]:
    """None means every member may perform the service."""
    if service.member_ids is None:
        return None
    return json.loads(service.member_ids)


def check_service_offered(
    service: DBServices,
    location: DBLocations,
    member: Optional[DBMembers],
) -> None:
    """Raise NotFoundError when the service is not offered by this location/member."""
    if location.id not in service_location_ids(service):
        raise NotFoundError("Service is not offered at this location")
    member_ids = service_member_ids(service)
    if member is not None and member_ids is not None and member.id not in member_ids:
        raise NotFoundError("Service is not offered by this member")


def location_member_ids(db: Session, provider_id: int, location_id: int) -> list[int]:
    rows = (
        db.query(DBMembers.id)
        .filter(
            DBMembers.provider_id == provider_id,
            DBMembers.location_id == location_id,
        )
        .all()
    )
    return [row.id for row in rows]


def format_location_address(location: DBLocations) -> str:
    if location.city_only or not location.address:
        return location.city
    postal = f"{location.postal_code} " if location.postal_code else ""
    return f"{location.address}, {postal}{location.city}"


# ── Member orchestration ─────────────────────────────────────────────────


def change_location(
    db: Session,
    provider_id: int,
    member_id: int,
    new_location_id: int,
) -> DBMembers:
    """
    Move a member to another location.

    Updates the member and re-keys every availability day, exception and
    blocked period of that member to the new location. Either everything
    is written or nothing is.
    """
    member = get_member(db, provider_id, member_id)
    new_location = get_location(db, provider_id, new_location_id)

    old_location_id = member.location_id
    if old_location_id == new_location.id:
        return member

    rekeyed = {}
    with transaction(db):
        # Records the member may already have at the target location are superseded
        for model in (DBAvailability, DBExceptions):
            (
                db.query(model)
                .filter(
                    model.provider_id == provider_id,
                    model.member_id == member_id,
                    model.location_id == new_location.id,
                )
                .delete(synchronize_session=False)
            )

        for name, model in (
            ("availability", DBAvailability),
            ("exceptions", DBExceptions),
            ("blocked_periods", DBBlockedPeriods),
        ):
            rekeyed[name] = (
                db.query(model)
                .filter(
                    model.provider_id == provider_id,
                    model.member_id == member_id,
                    model.location_id == old_location_id,
                )
                .update({model.location_id: new_location.id}, synchronize_session=False)
            )

        member.location_id = new_location.id
        member.updated_at = format_instant(utcnow())
    db.refresh(member)

    logger.info(
        f"Member {member_id} moved: location {old_location_id} -> {new_location.id} "
        f"(re-keyed {rekeyed})"
    )
    return member


def delete_member(
    db: Session,
    provider_id: int,
    member_id: int,
    now: datetime | None = None,
) -> None:
    """Delete a member and their agenda; refused while future active bookings exist."""
    member = get_member(db, provider_id, member_id)
    if member.is_default:
        raise InvalidStateError("The default member cannot be deleted")

    now = now or utcnow()
    future_active = (
        db.query(DBBookings.id)
        .filter(
            DBBookings.provider_id == provider_id,
            DBBookings.member_id == member_id,
            DBBookings.status.in_(ACTIVE_STATUSES),
            DBBookings.date_start > format_instant(now),
        )
        .first()
    )
    if future_active:
        raise InvalidStateError(
            "Member has future bookings; cancel or reassign them first"
        )

    with transaction(db):
        for model in (DBAvailability, DBExceptions, DBBlockedPeriods):
            (
                db.query(model)
                .filter(model.provider_id == provider_id, model.member_id == member_id)
                .delete(synchronize_session=False)
            )
        db.delete(member)
    logger.info(f"Member {member_id} deleted (provider={provider_id})")


# ── Access codes (planning page) ─────────────────────────────────────────


def _access_code_prefix(name: str) -> str:
    first = (name or "").split(" ")[0].upper()
    ascii_only = unicodedata.normalize("NFD", first).encode("ascii", "ignore").decode()
    return re.sub(r"[^A-Z]", "", ascii_only)[:6] or "MEMBER"


def generate_access_code(db: Session, name: str) -> str:
    prefix = _access_code_prefix(name)
    for _ in range(ACCESS_CODE_ATTEMPTS):
        code = f"{prefix}-{secrets.token_hex(2).upper()}"
        exists = db.query(DBMembers.id).filter(DBMembers.access_code == code).first()
        if not exists:
            return code
    return f"{prefix}-{secrets.token_hex(6).upper()}"


def regenerate_access_code(db: Session, provider_id: int, member_id: int) -> str:
    member = get_member(db, provider_id, member_id)
    member.access_code = generate_access_code(db, member.name)
    member.updated_at = format_instant(utcnow())
    commit_or_raise(db)
    logger.info(f"Access code regenerated for member {member_id}")
    return member.access_code
