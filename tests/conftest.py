import fnmatch
import json
import os
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

from agenda.database import enable_sqlite_fk  # noqa: E402
from agenda.models import (  # noqa: E402
    Availability,
    Base,
    Locations,
    Members,
    Providers,
    Services,
)
from agenda.services.slots.schedule import dump_slots  # noqa: E402
from agenda.services.slots.timeslot import TimeRange  # noqa: E402

# Sunday 2030-01-06 08:00 UTC; the Monday below is the next day
NOW = datetime(2030, 1, 6, 8, 0, tzinfo=timezone.utc)
SUNDAY = date(2030, 1, 6)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)

MONDAY_HOURS = [("09:00", "12:00"), ("14:00", "18:00")]


# ── Redis double ─────────────────────────────────────────────────────────


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.calls = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return record

    def execute(self):
        results = [getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.calls]
        self.calls = []
        return results


class FakeRedis:
    """The handful of Redis commands the agenda uses, in memory."""

    def __init__(self):
        self.zsets: dict[str, dict[str, float]] = {}
        self.strings: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}

    def _all_keys(self):
        return list(self.zsets) + list(self.strings) + list(self.lists)

    def pipeline(self):
        return FakePipeline(self)

    def ping(self):
        return True

    def exists(self, key):
        return int(key in self._all_keys())

    def keys(self, pattern):
        return [k for k in self._all_keys() if fnmatch.fnmatchcase(k, pattern)]

    def delete(self, *keys):
        deleted = 0
        for key in keys:
            for store in (self.zsets, self.strings, self.lists):
                if key in store:
                    del store[key]
                    deleted += 1
            self.ttls.pop(key, None)
        return deleted

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def zadd(self, key, mapping):
        zset = self.zsets.setdefault(key, {})
        added = len(set(mapping) - set(zset))
        zset.update(mapping)
        return added

    def zrangebyscore(self, key, min, max):
        def bound(value, default):
            value = str(value)
            if value in ("-inf", "+inf"):
                return float(value), False
            if value.startswith("("):
                return float(value[1:]), True
            return float(value), False

        low, low_exclusive = bound(min, "-inf")
        high, high_exclusive = bound(max, "+inf")
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: (item[1], item[0]))
        return [
            member for member, score in members
            if (score > low if low_exclusive else score >= low)
            and (score < high if high_exclusive else score <= high)
        ]

    def set(self, key, value, ex=None):
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def get(self, key):
        return self.strings.get(key)

    def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    def events(self, queue="events:p2p"):
        return [json.loads(raw) for raw in self.lists.get(queue, [])]


# ── Database ─────────────────────────────────────────────────────────────


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_fk)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


# ── Factories ────────────────────────────────────────────────────────────


def make_provider(db, **overrides):
    values = dict(
        business_name="Salon Lumière",
        requires_confirmation=0,
        default_buffer_time=0,
        timezone="UTC",
    )
    values.update(overrides)
    provider = Providers(**values)
    db.add(provider)
    db.commit()
    return provider


def make_location(db, provider, **overrides):
    values = dict(
        provider_id=provider.id,
        name="Centre",
        city="Lyon",
        address="12 rue de la République",
        postal_code="69002",
    )
    values.update(overrides)
    location = Locations(**values)
    db.add(location)
    db.commit()
    return location


def make_member(db, provider, location, name="Alice Martin", **overrides):
    values = dict(
        provider_id=provider.id,
        location_id=location.id,
        name=name,
        access_code=f"{name.split()[0].upper()}-{len(name)}{location.id}{provider.id}",
    )
    values.update(overrides)
    member = Members(**values)
    db.add(member)
    db.commit()
    return member


def make_service(db, provider, locations, duration=60, buffer_time=0, price=4500, **overrides):
    values = dict(
        provider_id=provider.id,
        name=f"Soin {duration} min",
        duration=duration,
        buffer_time=buffer_time,
        price=price,
        location_ids=json.dumps([loc.id for loc in locations]),
    )
    values.update(overrides)
    service = Services(**values)
    db.add(service)
    db.commit()
    return service


def set_day(db, provider, location, member, day_of_week, hours, is_open=True):
    db.add(Availability(
        provider_id=provider.id,
        member_id=member.id if member else None,
        location_id=location.id,
        day_of_week=day_of_week,
        is_open=int(is_open),
        slots=dump_slots(TimeRange.parse(start, end) for start, end in hours),
    ))
    db.commit()


class Agenda:
    """A provider with one location, one default member and a Monday template."""

    def __init__(self, db, **provider_overrides):
        self.provider = make_provider(db, **provider_overrides)
        self.location = make_location(db, self.provider)
        self.member = make_member(db, self.provider, self.location, is_default=1)
        self.service = make_service(db, self.provider, [self.location])
        set_day(db, self.provider, self.location, self.member, 1, MONDAY_HOURS)


@pytest.fixture
def agenda(db):
    return Agenda(db)


def starts(slots):
    return [slot.start for slot in slots]
