from datetime import datetime
from types import SimpleNamespace

import pytest

from agenda.errors import InvalidStateError, NotFoundError
from agenda.models import Availability, AvailabilityExceptions, BlockedPeriods, Members
from agenda.schemas.availability import BlockedPeriodCreate, ExceptionSet
from agenda.schemas.bookings import BookingCreate, ClientInfo
from agenda.services.bookings import cancel_booking, create_booking
from agenda.services.catalog import (
    _access_code_prefix,
    change_location,
    delete_member,
    format_location_address,
    regenerate_access_code,
)
from agenda.services.planning import list_member_upcoming_bookings, resolve_access_code
from agenda.services.slots.blocked import block_period
from agenda.services.slots.schedule import get_weekly_schedule, set_exception

from conftest import MONDAY, MONDAY_HOURS, NOW, make_location, make_member, set_day


def book_member(db, agenda, member, hhmm="10:00"):
    hour, minute = map(int, hhmm.split(":"))
    return create_booking(db, BookingCreate(
        provider_id=agenda.provider.id,
        service_id=agenda.service.id,
        location_id=member.location_id,
        member_id=member.id,
        datetime=datetime(2030, 1, 7, hour, minute),
        client_info=ClientInfo(name="Claire Dubois", phone="0601020304"),
    ), now=NOW)


# ── Change location ──────────────────────────────────────────────────────


def test_change_location_rekeys_the_member_agenda(db, agenda):
    annexe = make_location(db, agenda.provider, name="Annexe", city="Villeurbanne")
    set_exception(db, agenda.provider.id, ExceptionSet(
        member_id=agenda.member.id, location_id=agenda.location.id, date=MONDAY, is_open=False,
    ))
    block_period(db, agenda.provider.id, BlockedPeriodCreate(
        member_id=agenda.member.id, location_id=agenda.location.id,
        start_date=MONDAY, end_date=MONDAY, all_day=True,
    ))

    member = change_location(db, agenda.provider.id, agenda.member.id, annexe.id)

    assert member.location_id == annexe.id
    for model in (Availability, AvailabilityExceptions, BlockedPeriods):
        rows = db.query(model).filter(model.member_id == agenda.member.id).all()
        assert rows and all(row.location_id == annexe.id for row in rows), model.__name__
    assert get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id) == []


def test_change_location_supersedes_records_at_the_target(db, agenda):
    annexe = make_location(db, agenda.provider, name="Annexe", city="Villeurbanne")
    set_day(db, agenda.provider, annexe, agenda.member, 1, [("08:00", "09:00")])

    change_location(db, agenda.provider.id, agenda.member.id, annexe.id)

    [monday] = get_weekly_schedule(db, agenda.provider.id, annexe.id, agenda.member.id)
    assert [r.to_dict() for r in monday.slots] == [
        {"start": start, "end": end} for start, end in MONDAY_HOURS
    ]


def test_change_location_leaves_other_agendas_alone(db, agenda):
    annexe = make_location(db, agenda.provider, name="Annexe", city="Villeurbanne")
    colleague = make_member(db, agenda.provider, agenda.location, name="Bruno Petit")
    set_day(db, agenda.provider, agenda.location, colleague, 1, MONDAY_HOURS)
    set_day(db, agenda.provider, agenda.location, None, 1, MONDAY_HOURS)

    change_location(db, agenda.provider.id, agenda.member.id, annexe.id)

    assert len(get_weekly_schedule(db, agenda.provider.id, agenda.location.id, colleague.id)) == 1
    assert len(get_weekly_schedule(db, agenda.provider.id, agenda.location.id, None)) == 1


def test_change_location_to_unknown_location(db, agenda):
    with pytest.raises(NotFoundError):
        change_location(db, agenda.provider.id, agenda.member.id, 999)


# ── Delete member ────────────────────────────────────────────────────────


def test_default_member_cannot_be_deleted(db, agenda):
    with pytest.raises(InvalidStateError):
        delete_member(db, agenda.provider.id, agenda.member.id, now=NOW)


def test_member_with_future_bookings_cannot_be_deleted(db, agenda):
    colleague = make_member(db, agenda.provider, agenda.location, name="Bruno Petit")
    set_day(db, agenda.provider, agenda.location, colleague, 1, MONDAY_HOURS)
    booking = book_member(db, agenda, colleague)

    with pytest.raises(InvalidStateError):
        delete_member(db, agenda.provider.id, colleague.id, now=NOW)

    cancel_booking(db, agenda.provider.id, booking.id, "provider", "admin", now=NOW)
    delete_member(db, agenda.provider.id, colleague.id, now=NOW)

    assert db.get(Members, colleague.id) is None
    assert db.query(Availability).filter(Availability.member_id == colleague.id).count() == 0


# ── Access codes and planning ────────────────────────────────────────────


def test_access_code_prefix():
    assert _access_code_prefix("Émilie Durand") == "EMILIE"
    assert _access_code_prefix("Jean-Baptiste Roux") == "JEANBA"
    assert _access_code_prefix("") == "MEMBER"


def test_regenerate_access_code(db, agenda):
    code = regenerate_access_code(db, agenda.provider.id, agenda.member.id)
    assert code.startswith("ALICE-")
    assert len(code) == len("ALICE-") + 4
    assert resolve_access_code(db, f"  {code.lower()} ").id == agenda.member.id


def test_planning_lists_upcoming_active_bookings(db, agenda):
    first = book_member(db, agenda, agenda.member, "09:00")
    second = book_member(db, agenda, agenda.member, "14:00")
    third = book_member(db, agenda, agenda.member, "16:00")
    cancel_booking(db, agenda.provider.id, third.id, "provider", "admin", now=NOW)

    planning = list_member_upcoming_bookings(db, agenda.member.access_code, now=NOW)
    assert [b.id for b in planning] == [first.id, second.id]


def test_unknown_or_inactive_access_code(db, agenda):
    with pytest.raises(NotFoundError):
        resolve_access_code(db, "NOBODY-0000")

    agenda.member.is_active = 0
    db.commit()
    with pytest.raises(NotFoundError):
        resolve_access_code(db, agenda.member.access_code)


def test_location_address():
    full = SimpleNamespace(city_only=0, address="3 quai Saint-Antoine", postal_code="69002", city="Lyon")
    assert format_location_address(full) == "3 quai Saint-Antoine, 69002 Lyon"
    assert format_location_address(SimpleNamespace(**{**vars(full), "city_only": 1})) == "Lyon"
