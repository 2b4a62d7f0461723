# backend/agenda/services/agenda_lock.py
"""
Compare-and-commit guard for booking writes.

Every (agenda scope, local date) pair has a version row. A writer:

1. reads the versions of the pairs its booking window touches
2. checks the slot
3. writes the booking and, in the same transaction,
   UPDATE ... SET version = version + 1 WHERE version = <seen>

If any update matches no row, another writer committed on the same
agenda day in between: the transaction is rolled back and the caller
gets SlotUnavailableError. Different members or days use different
rows and never wait on each other.

Scope keys:
- member agenda:   "member:{id}"
- location agenda: "location:{id}" plus "member:{id}" of every member
  of the location, since a location agenda sees all their bookings
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import SlotUnavailableError
from ..models.generated import AgendaVersions as DBAgendaVersions
from .catalog import location_member_ids
from .slots.timeslot import ForLocationOnly, ForMember, Scope, daterange, to_local

logger = logging.getLogger(__name__)

VersionSnapshot = dict[tuple[str, str], int]


def guard_keys(db: Session, provider_id: int, location_id: int, scope: Scope) -> list[str]:
    if isinstance(scope, ForMember):
        return [f"member:{scope.member_id}"]
    if isinstance(scope, ForLocationOnly):
        return [f"location:{location_id}"] + [
            f"member:{mid}" for mid in location_member_ids(db, provider_id, location_id)
        ]
    raise TypeError(f"Unknown agenda scope {scope!r}")


def touched_dates(start: datetime, end: datetime, buffer_time: int, tz: ZoneInfo) -> list[date]:
    """Local dates covered by [start, end + buffer)."""
    first, _ = to_local(start, tz)
    last, _ = to_local(end + timedelta(minutes=buffer_time) - timedelta(minutes=1), tz)
    return list(daterange(first, max(first, last)))


def _ensure_rows(db: Session, provider_id: int, pairs: list[tuple[str, str]]) -> None:
    """Create missing version rows, each in its own short transaction."""
    keys = {key for key, _ in pairs}
    dates = {d for _, d in pairs}
    existing = {
        (row.scope_key, row.date)
        for row in db.query(DBAgendaVersions.scope_key, DBAgendaVersions.date).filter(
            DBAgendaVersions.provider_id == provider_id,
            DBAgendaVersions.scope_key.in_(keys),
            DBAgendaVersions.date.in_(dates),
        )
    }
    for key, d in pairs:
        if (key, d) in existing:
            continue
        db.add(DBAgendaVersions(provider_id=provider_id, scope_key=key, date=d, version=0))
        try:
            db.commit()
        except IntegrityError:
            # created by a concurrent writer
            db.rollback()


def read_versions(
    db: Session,
    provider_id: int,
    keys: Iterable[str],
    dates: Iterable[date],
) -> VersionSnapshot:
    """Versions of every (key, date) pair, creating the rows on first use."""
    pairs = [(key, d.isoformat()) for key in keys for d in dates]
    _ensure_rows(db, provider_id, pairs)

    rows = db.query(DBAgendaVersions).filter(
        DBAgendaVersions.provider_id == provider_id,
        DBAgendaVersions.scope_key.in_({key for key, _ in pairs}),
        DBAgendaVersions.date.in_({d for _, d in pairs}),
    )
    versions = {(row.scope_key, row.date): row.version for row in rows}
    return {pair: versions[pair] for pair in pairs}


def bump_versions(db: Session, provider_id: int, snapshot: VersionSnapshot) -> None:
    """
    Conditionally increment every version of the snapshot.

    Must run inside the transaction that writes the booking; the caller
    rolls back on SlotUnavailableError.
    """
    for (key, d), seen in snapshot.items():
        result = db.execute(
            update(DBAgendaVersions)
            .where(
                DBAgendaVersions.provider_id == provider_id,
                DBAgendaVersions.scope_key == key,
                DBAgendaVersions.date == d,
                DBAgendaVersions.version == seen,
            )
            .values(version=DBAgendaVersions.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                f"Agenda write conflict: provider={provider_id} scope={key} date={d} "
                f"seen_version={seen}"
            )
            raise SlotUnavailableError("This slot is no longer available")
